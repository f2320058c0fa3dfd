"""Data models for the operational state pipeline."""

from dataclasses import dataclass
from enum import Enum


class Status(str, Enum):
    """Closed set of production statuses."""

    DELIVERED = "delivered"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    WAITING = "waiting"


class FailureReason(Enum):
    """Why the extraction oracle produced no fact."""

    ORACLE_UNAVAILABLE = "oracle_unavailable"
    MALFORMED_RESPONSE = "malformed_response"


@dataclass(frozen=True)
class RawMessage:
    """An inbound chat message, stored whether or not a fact comes out of it.

    Attributes:
        author: Who sent the message.
        channel: Conversation identity (chat title, username or id).
        text: The message body.
        sent_at: POSIX timestamp reported by the transport.
        id: Database ID, None until stored.
    """

    author: str
    channel: str
    text: str
    sent_at: float
    id: int | None = None


@dataclass(frozen=True)
class RawFact:
    """The oracle's structured guess, before normalization."""

    client: str | None = None
    editor: str | None = None
    status: str | None = None
    blocked: bool | None = None


@dataclass(frozen=True)
class ExtractionFailure:
    """Typed failure returned instead of a RawFact."""

    reason: FailureReason
    detail: str = ""


@dataclass(frozen=True)
class Discard:
    """Normalizer verdict for a fact that must not reach the store."""

    reason: str


@dataclass(frozen=True)
class Fact:
    """One normalized observation about a tracked entity.

    Attributes:
        entity_key: Identity the fact is reconciled against.
        client: Client named by the oracle, if any.
        editor: Editor named by the oracle, if any.
        status: Normalized status, or None when no signal was found.
        blocked: Blocked flag, independent of status.
        source_text: Text of the message the fact came from.
        sent_at: POSIX timestamp of that message.
        message_id: ID of the stored RawMessage.
        id: Store sequence ID, None until recorded.
    """

    entity_key: str
    client: str | None
    editor: str | None
    status: Status | None
    blocked: bool | None
    source_text: str
    sent_at: float
    message_id: int | None = None
    id: int | None = None

    def to_row(self) -> dict:
        """Plain dict used when handing the snapshot to the oracle."""
        return {
            "entity": self.entity_key,
            "client": self.client,
            "editor": self.editor,
            "status": self.status.value if self.status else None,
            "blocked": self.blocked,
            "text": self.source_text,
            "sent_at": self.sent_at,
        }


@dataclass(frozen=True)
class StateRecord:
    """The fact currently considered true for one entity."""

    entity_key: str
    fact: Fact

    @property
    def display_state(self) -> str:
        if self.fact.blocked is True:
            return "BLOCKED"
        if self.fact.status is not None:
            return self.fact.status.value
        return "unknown"

    @property
    def blocked(self) -> bool:
        return self.fact.blocked is True
