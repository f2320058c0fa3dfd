"""Ingestion pipeline: message storage, extraction and fact reconciliation."""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from ..errors import StoreWriteError
from ..logging import JSONLLogger, get_logger
from .locks import KeyedLocks
from .models import Discard, ExtractionFailure, Fact, RawMessage
from .normalizer import FactNormalizer
from .store import StateStore

if TYPE_CHECKING:
    from .extractor import FactExtractor

logger = logging.getLogger(__name__)


class StateManager:
    """Runs every inbound message through the fact pipeline.

    The raw message is always stored first. Extraction, normalization and the
    fact write may each fail or decline without affecting that, and nothing on
    this path is reported back to the chat.
    """

    def __init__(
        self,
        store: StateStore,
        extractor: FactExtractor,
        normalizer: FactNormalizer | None = None,
        locks: KeyedLocks | None = None,
        json_logger: JSONLLogger | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: The StateStore for persistence.
            extractor: FactExtractor used to classify message text.
            normalizer: FactNormalizer applying synonyms and admission.
            locks: Per-entity write locks, shared by every ingest task.
            json_logger: Structured event log.
        """
        self.store = store
        self.extractor = extractor
        self.normalizer = normalizer or FactNormalizer()
        self.locks = locks or KeyedLocks()
        self.json_logger = json_logger or get_logger()

    async def ingest(self, message: RawMessage) -> Fact | None:
        """Store a message and record the fact it carries, if any.

        Args:
            message: The inbound message.

        Returns:
            The recorded fact, or None when no fact was stored.
        """
        try:
            message = self.store.save_message(message)
        except StoreWriteError as e:
            logger.exception("Could not store inbound message")
            self.json_logger.log_store_error(str(e))
            return None

        self.json_logger.log_message(message.channel, message.id, len(message.text))

        start = time.monotonic()
        raw = await self.extractor.extract(message.text)
        if isinstance(raw, ExtractionFailure):
            self.json_logger.log_extraction_failure(
                raw.reason.value,
                message_id=message.id,
                error=raw.detail,
                duration_ms=(time.monotonic() - start) * 1000,
            )
            return None

        fact = self.normalizer.normalize(raw, message)
        if isinstance(fact, Discard):
            self.json_logger.log_discard(fact.reason, message_id=message.id)
            return None

        return await self.record(fact)

    async def record(self, fact: Fact) -> Fact | None:
        """Write a fact while holding its entity's lock."""
        async with self.locks.hold(fact.entity_key):
            try:
                stored = self.store.record(fact)
            except StoreWriteError as e:
                logger.exception(f"Could not record fact for {fact.entity_key!r}")
                self.json_logger.log_store_error(str(e), entity_key=fact.entity_key)
                return None

        self.json_logger.log_fact(
            stored.entity_key,
            message_id=stored.message_id,
            status=stored.status.value if stored.status else None,
            blocked=stored.blocked,
        )
        return stored
