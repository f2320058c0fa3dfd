"""Operational state pipeline: extraction, normalization, storage and queries."""

from .extractor import FactExtractor
from .locks import KeyedLocks
from .manager import StateManager
from .models import (
    Discard,
    ExtractionFailure,
    Fact,
    FailureReason,
    RawFact,
    RawMessage,
    StateRecord,
    Status,
)
from .normalizer import AdmissionPolicy, FactNormalizer
from .snapshot import SnapshotQuery
from .store import StateMode, StateStore

__all__ = [
    "AdmissionPolicy",
    "Discard",
    "ExtractionFailure",
    "Fact",
    "FactExtractor",
    "FactNormalizer",
    "FailureReason",
    "KeyedLocks",
    "RawFact",
    "RawMessage",
    "SnapshotQuery",
    "StateManager",
    "StateMode",
    "StateRecord",
    "StateStore",
    "Status",
]
