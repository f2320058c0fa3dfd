"""Normalization of raw oracle output into storable facts."""

import re
from enum import Enum

from .models import Discard, Fact, RawFact, RawMessage, Status

STATUS_SYNONYMS: dict[str, Status] = {
    # delivered
    "delivered": Status.DELIVERED,
    "done": Status.DELIVERED,
    "finished": Status.DELIVERED,
    "completed": Status.DELIVERED,
    "complete": Status.DELIVERED,
    "shipped": Status.DELIVERED,
    # blocked
    "blocked": Status.BLOCKED,
    "stuck": Status.BLOCKED,
    "issue": Status.BLOCKED,
    "problem": Status.BLOCKED,
    # waiting
    "waiting": Status.WAITING,
    "pending": Status.WAITING,
    "awaiting": Status.WAITING,
    "reviewing": Status.WAITING,
    "in review": Status.WAITING,
    "on hold": Status.WAITING,
    # in_progress
    "in progress": Status.IN_PROGRESS,
    "working": Status.IN_PROGRESS,
    "ongoing": Status.IN_PROGRESS,
    "started": Status.IN_PROGRESS,
}

_SEPARATORS = re.compile(r"[\s_\-]+")


class AdmissionPolicy(str, Enum):
    """Rule deciding which normalized facts reach the store.

    EITHER admits a fact with a status signal or a named entity, SIGNAL
    requires a status or ``blocked=True``, ENTITY requires the oracle to
    have named a client or editor.
    """

    EITHER = "either"
    SIGNAL = "signal"
    ENTITY = "entity"


def normalize_status(value: str | None) -> Status | None:
    """Map informal status vocabulary onto the closed Status set."""
    if not value:
        return None
    folded = _SEPARATORS.sub(" ", value.strip().lower())
    return STATUS_SYNONYMS.get(folded)


def _clean_name(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    if not value or value.lower() in ("null", "none", "n/a"):
        return None
    return value


class FactNormalizer:
    """Applies synonyms, entity fallback and the admission policy."""

    def __init__(
        self,
        policy: AdmissionPolicy = AdmissionPolicy.EITHER,
        default_entity: str | None = None,
    ) -> None:
        self.policy = policy
        self.default_entity = _clean_name(default_entity)

    def normalize(self, raw: RawFact, message: RawMessage) -> Fact | Discard:
        """Turn a RawFact into a Fact, or decide to discard it.

        Args:
            raw: The oracle output for the message.
            message: The stored message the fact came from.

        Returns:
            A Fact ready for the store, or a Discard with the reason.
        """
        client = _clean_name(raw.client)
        editor = _clean_name(raw.editor)
        status = normalize_status(raw.status)
        blocked = raw.blocked
        if blocked is None and status is Status.BLOCKED:
            blocked = True

        named = client is not None or editor is not None
        signal = status is not None or blocked is True

        if not named and status is None and blocked is None:
            return Discard("no entity and no signal")
        if not self._admits(named, signal):
            return Discard(f"rejected by '{self.policy.value}' admission policy")

        entity_key = client or editor
        if entity_key is None:
            # Fallback identity only applies when the oracle named nobody
            entity_key = _clean_name(message.channel) or self.default_entity
        if entity_key is None:
            return Discard("no entity key")

        return Fact(
            entity_key=entity_key,
            client=client,
            editor=editor,
            status=status,
            blocked=blocked,
            source_text=message.text,
            sent_at=message.sent_at,
            message_id=message.id,
        )

    def _admits(self, named: bool, signal: bool) -> bool:
        if self.policy is AdmissionPolicy.SIGNAL:
            return signal
        if self.policy is AdmissionPolicy.ENTITY:
            return named
        return named or signal
