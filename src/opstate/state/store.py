"""SQLite storage for raw messages and operational facts."""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from enum import Enum
from pathlib import Path

from ..errors import StoreError, StoreReadError, StoreWriteError
from .models import Fact, RawMessage, StateRecord, Status

logger = logging.getLogger(__name__)

_FACT_COLUMNS = "id, entity_key, client, editor, status, blocked, original_text, sent_at, message_id"
_STATE_COLUMNS = (
    "entity_key, client, editor, status, blocked, original_text, "
    "last_update AS sent_at, message_id"
)


class StateMode(str, Enum):
    """How current state is kept.

    HISTORY appends every fact to ``operations`` and reduces to the latest
    per entity at read time. LATEST overwrites one ``production_state`` row
    per entity and keeps no history.
    """

    HISTORY = "history"
    LATEST = "latest"


class StateStore:
    """Persistent storage for messages and facts using SQLite.

    Messages are always stored in ``messages``. Facts go to exactly one of
    ``operations`` or ``production_state`` depending on the mode, which is
    fixed for the lifetime of the database file.
    """

    def __init__(self, db_path: Path, mode: StateMode = StateMode.HISTORY) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
            mode: Fact storage shape for this deployment.
        """
        self.db_path = db_path
        self.mode = StateMode(mode)
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.db_path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    @contextmanager
    def _writing(self, action: str) -> Iterator[sqlite3.Connection]:
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreWriteError(f"{action} failed: {e}") from e

    @contextmanager
    def _reading(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            yield self._get_connection()
        except sqlite3.Error as e:
            raise StoreReadError(f"{action} failed: {e}") from e

    def init_db(self) -> None:
        """Create tables if they don't exist and pin the state mode.

        Raises:
            StoreError: If the database was created with the other mode.
        """
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS meta (
                key    TEXT PRIMARY KEY,
                value  TEXT NOT NULL
            )
        """)
        row = conn.execute("SELECT value FROM meta WHERE key = 'state_mode'").fetchone()
        if row is None:
            conn.execute(
                "INSERT INTO meta (key, value) VALUES ('state_mode', ?)",
                (self.mode.value,),
            )
        elif row["value"] != self.mode.value:
            conn.rollback()
            raise StoreError(
                f"{self.db_path} stores state in '{row['value']}' mode, "
                f"refusing to open it in '{self.mode.value}' mode"
            )

        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id       INTEGER PRIMARY KEY AUTOINCREMENT,
                author   TEXT NOT NULL,
                channel  TEXT NOT NULL,
                text     TEXT NOT NULL,
                sent_at  REAL NOT NULL
            )
        """)

        if self.mode is StateMode.HISTORY:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS operations (
                    id             INTEGER PRIMARY KEY AUTOINCREMENT,
                    entity_key     TEXT NOT NULL,
                    client         TEXT,
                    editor         TEXT,
                    status         TEXT,
                    blocked        INTEGER,
                    original_text  TEXT NOT NULL,
                    sent_at        REAL NOT NULL,
                    message_id     INTEGER REFERENCES messages(id)
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_operations_entity "
                "ON operations(entity_key, sent_at, id)"
            )
        else:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS production_state (
                    entity_key     TEXT PRIMARY KEY,
                    client         TEXT,
                    editor         TEXT,
                    status         TEXT,
                    blocked        INTEGER,
                    original_text  TEXT NOT NULL,
                    last_update    REAL NOT NULL,
                    message_id     INTEGER REFERENCES messages(id)
                )
            """)
        conn.commit()

    # Messages

    def save_message(self, message: RawMessage) -> RawMessage:
        """Append a raw message.

        Returns:
            The message with its assigned id.
        """
        with self._writing("save_message") as conn:
            cursor = conn.execute(
                "INSERT INTO messages (author, channel, text, sent_at) VALUES (?, ?, ?, ?)",
                (message.author, message.channel, message.text, message.sent_at),
            )
        return RawMessage(
            author=message.author,
            channel=message.channel,
            text=message.text,
            sent_at=message.sent_at,
            id=cursor.lastrowid,
        )

    def recent_messages(self, limit: int) -> list[RawMessage]:
        """Get the most recently stored messages, newest first."""
        if limit <= 0:
            return []
        with self._reading("recent_messages") as conn:
            rows = conn.execute(
                "SELECT id, author, channel, text, sent_at FROM messages "
                "ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            RawMessage(
                author=row["author"],
                channel=row["channel"],
                text=row["text"],
                sent_at=row["sent_at"],
                id=row["id"],
            )
            for row in rows
        ]

    # Facts

    def record(self, fact: Fact) -> Fact:
        """Store a fact using the active mode."""
        if self.mode is StateMode.HISTORY:
            return self.append(fact)
        self.put_latest(fact)
        return fact

    def append(self, fact: Fact) -> Fact:
        """Append a fact to the history.

        Returns:
            The fact with its sequence id.
        """
        self._require(StateMode.HISTORY, "append")
        with self._writing("append") as conn:
            cursor = conn.execute(
                """
                INSERT INTO operations
                    (entity_key, client, editor, status, blocked, original_text, sent_at, message_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                self._fact_params(fact),
            )
            row = cursor.fetchone()
        return Fact(
            entity_key=fact.entity_key,
            client=fact.client,
            editor=fact.editor,
            status=fact.status,
            blocked=fact.blocked,
            source_text=fact.source_text,
            sent_at=fact.sent_at,
            message_id=fact.message_id,
            id=row["id"],
        )

    def put_latest(self, fact: Fact) -> bool:
        """Replace the current state of the fact's entity.

        The row is only overwritten when the fact is not older than the one
        already stored; on equal timestamps the later call wins.

        Returns:
            True if the row was written, False if the stored fact is newer.
        """
        self._require(StateMode.LATEST, "put_latest")
        with self._writing("put_latest") as conn:
            cursor = conn.execute(
                """
                INSERT INTO production_state
                    (entity_key, client, editor, status, blocked, original_text, last_update, message_id)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(entity_key) DO UPDATE SET
                    client = excluded.client,
                    editor = excluded.editor,
                    status = excluded.status,
                    blocked = excluded.blocked,
                    original_text = excluded.original_text,
                    last_update = excluded.last_update,
                    message_id = excluded.message_id
                WHERE excluded.last_update >= production_state.last_update
                RETURNING entity_key
                """,
                self._fact_params(fact),
            )
            applied = cursor.fetchone() is not None
        if not applied:
            logger.debug(f"Ignored stale fact for {fact.entity_key!r}")
        return applied

    def get_latest(self, entity_key: str) -> Fact | None:
        """Get the current fact for an entity, or None if unknown."""
        if self.mode is StateMode.HISTORY:
            sql = (
                f"SELECT {_FACT_COLUMNS} FROM operations WHERE entity_key = ? "
                "ORDER BY sent_at DESC, id DESC LIMIT 1"
            )
        else:
            sql = f"SELECT {_STATE_COLUMNS} FROM production_state WHERE entity_key = ?"
        with self._reading("get_latest") as conn:
            row = conn.execute(sql, (entity_key,)).fetchone()
        return self._row_to_fact(row) if row is not None else None

    def latest_per_entity(self) -> list[StateRecord]:
        """Get the current fact of every known entity, ordered by entity key.

        In history mode the current fact is the one with the greatest
        (sent_at, id) pair for its entity.
        """
        if self.mode is StateMode.HISTORY:
            sql = f"""
                SELECT {_FACT_COLUMNS} FROM operations o
                WHERE o.id = (
                    SELECT o2.id FROM operations o2
                    WHERE o2.entity_key = o.entity_key
                    ORDER BY o2.sent_at DESC, o2.id DESC
                    LIMIT 1
                )
                ORDER BY o.entity_key ASC
            """
        else:
            sql = f"SELECT {_STATE_COLUMNS} FROM production_state ORDER BY entity_key ASC"
        with self._reading("latest_per_entity") as conn:
            rows = conn.execute(sql).fetchall()
        return [StateRecord(row["entity_key"], self._row_to_fact(row)) for row in rows]

    def history(self, entity_key: str, limit: int = 5) -> list[Fact]:
        """Get the most recent facts for an entity, newest first.

        In latest mode only the current fact exists.
        """
        if limit <= 0:
            return []
        if self.mode is StateMode.LATEST:
            latest = self.get_latest(entity_key)
            return [latest] if latest is not None else []
        with self._reading("history") as conn:
            rows = conn.execute(
                f"SELECT {_FACT_COLUMNS} FROM operations WHERE entity_key = ? "
                "ORDER BY sent_at DESC, id DESC LIMIT ?",
                (entity_key, limit),
            ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _require(self, mode: StateMode, action: str) -> None:
        if self.mode is not mode:
            raise StoreWriteError(f"{action} is not available in '{self.mode.value}' mode")

    @staticmethod
    def _fact_params(fact: Fact) -> tuple:
        return (
            fact.entity_key,
            fact.client,
            fact.editor,
            fact.status.value if fact.status else None,
            None if fact.blocked is None else int(fact.blocked),
            fact.source_text,
            fact.sent_at,
            fact.message_id,
        )

    def _row_to_fact(self, row: sqlite3.Row) -> Fact:
        """Convert a database row to a Fact."""
        keys = row.keys()
        return Fact(
            entity_key=row["entity_key"],
            client=row["client"],
            editor=row["editor"],
            status=Status(row["status"]) if row["status"] else None,
            blocked=None if row["blocked"] is None else bool(row["blocked"]),
            source_text=row["original_text"],
            sent_at=row["sent_at"],
            message_id=row["message_id"],
            id=row["id"] if "id" in keys else None,
        )
