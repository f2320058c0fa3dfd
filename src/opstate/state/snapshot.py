"""Read-side queries over the state store."""

from .models import Fact, RawMessage, StateRecord
from .store import StateStore


class SnapshotQuery:
    """Answers snapshot questions from the store.

    Every method is a pure read. Records come back ordered by entity key,
    messages newest first. Empty stores give empty lists, and store failures
    surface as ``StoreReadError``.
    """

    def __init__(self, store: StateStore) -> None:
        self.store = store

    def full_snapshot(self) -> list[StateRecord]:
        """Current state of every known entity."""
        return self.store.latest_per_entity()

    def blocked_entities(self) -> list[StateRecord]:
        """Entities whose current fact has blocked set to True."""
        return [record for record in self.store.latest_per_entity() if record.blocked]

    def recent_raw(self, n: int) -> list[RawMessage]:
        """The last n stored messages, most recent first."""
        return self.store.recent_messages(n)

    def entity_history(self, entity_key: str, limit: int = 5) -> list[Fact]:
        """The last facts recorded for one entity, most recent first."""
        return self.store.history(entity_key, limit)
