"""Tests for StateManager."""

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from opstate.errors import StoreWriteError
from opstate.logging import JSONLLogger
from opstate.state import (
    AdmissionPolicy,
    ExtractionFailure,
    FactExtractor,
    FactNormalizer,
    FailureReason,
    RawFact,
    RawMessage,
    SnapshotQuery,
    StateManager,
    StateMode,
    StateStore,
    Status,
)


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    """Create a StateStore with a temporary database."""
    store = StateStore(tmp_path / "state.db")
    store.init_db()
    yield store
    store.close()


@pytest.fixture
def json_logger(tmp_path: Path) -> JSONLLogger:
    return JSONLLogger(log_dir=tmp_path / "logs")


@pytest.fixture
def extractor() -> Mock:
    """A FactExtractor whose results are set per test."""
    extractor = Mock(spec=FactExtractor)
    extractor.extract = AsyncMock()
    return extractor


@pytest.fixture
def manager(store: StateStore, extractor: Mock, json_logger: JSONLLogger) -> StateManager:
    return StateManager(store, extractor, FactNormalizer(), json_logger=json_logger)


def message(text: str, sent_at: float = 100.0, channel: str = "ops") -> RawMessage:
    return RawMessage(author="ana", channel=channel, text=text, sent_at=sent_at)


class TestStateManagerIngest:
    """Tests for the ingestion pipeline."""

    @pytest.mark.asyncio
    async def test_records_fact(
        self, manager: StateManager, extractor: Mock, store: StateStore
    ):
        extractor.extract.return_value = RawFact(client="Acme", status="done")

        fact = await manager.ingest(message("Acme is done"))

        assert fact is not None
        assert fact.id is not None
        assert fact.message_id is not None
        assert store.get_latest("Acme").status is Status.DELIVERED
        extractor.extract.assert_awaited_once_with("Acme is done")

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure",
        [
            ExtractionFailure(FailureReason.ORACLE_UNAVAILABLE, "timeout"),
            ExtractionFailure(FailureReason.MALFORMED_RESPONSE, "bad json"),
        ],
    )
    async def test_message_stored_when_extraction_fails(
        self, manager: StateManager, extractor: Mock, store: StateStore, failure
    ):
        """Ingestion is fail-open with respect to extraction."""
        extractor.extract.return_value = failure

        assert await manager.ingest(message("hello")) is None

        assert [m.text for m in store.recent_messages(5)] == ["hello"]
        assert store.latest_per_entity() == []

    @pytest.mark.asyncio
    async def test_non_actionable_fact_not_stored(
        self, manager: StateManager, extractor: Mock, store: StateStore
    ):
        extractor.extract.return_value = RawFact()

        assert await manager.ingest(message("lunch?")) is None

        assert len(store.recent_messages(5)) == 1
        assert store.latest_per_entity() == []

    @pytest.mark.asyncio
    async def test_admission_policy_applied(
        self, store: StateStore, extractor: Mock, json_logger: JSONLLogger
    ):
        manager = StateManager(
            store,
            extractor,
            FactNormalizer(AdmissionPolicy.SIGNAL),
            json_logger=json_logger,
        )
        extractor.extract.return_value = RawFact(client="Acme")

        assert await manager.ingest(message("Acme called")) is None
        assert store.get_latest("Acme") is None

    @pytest.mark.asyncio
    async def test_message_store_failure_is_silent(
        self, extractor: Mock, json_logger: JSONLLogger
    ):
        broken = Mock(spec=StateStore)
        broken.save_message.side_effect = StoreWriteError("disk full")
        manager = StateManager(broken, extractor, json_logger=json_logger)

        assert await manager.ingest(message("hi")) is None
        extractor.extract.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fact_store_failure_is_silent(
        self, extractor: Mock, json_logger: JSONLLogger
    ):
        broken = Mock(spec=StateStore)
        broken.save_message.side_effect = lambda m: m
        broken.record.side_effect = StoreWriteError("disk full")
        extractor.extract.return_value = RawFact(client="Acme", blocked=True)
        manager = StateManager(broken, extractor, json_logger=json_logger)

        assert await manager.ingest(message("Acme blocked")) is None
        assert len(manager.locks) == 0

    @pytest.mark.asyncio
    async def test_events_logged(
        self, manager: StateManager, extractor: Mock, json_logger: JSONLLogger
    ):
        extractor.extract.return_value = RawFact(client="Acme", status="done")
        await manager.ingest(message("Acme is done"))

        log = json_logger.log_path.read_text()
        assert '"event": "message_ingested"' in log
        assert '"event": "fact_recorded"' in log


class TestConcurrentIngest:
    """Out-of-order extraction must not change which fact is current."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("mode", list(StateMode))
    async def test_slow_older_extraction_does_not_win(
        self, tmp_path: Path, json_logger: JSONLLogger, mode: StateMode
    ):
        store = StateStore(tmp_path / f"{mode.value}.db", mode)
        store.init_db()

        async def extract(text: str):
            if text == "Acme waiting on music":
                await asyncio.sleep(0.05)
                return RawFact(client="Acme", status="pending")
            return RawFact(client="Acme", status="done")

        extractor = Mock(spec=FactExtractor)
        extractor.extract = AsyncMock(side_effect=extract)
        manager = StateManager(store, extractor, json_logger=json_logger)

        await asyncio.gather(
            manager.ingest(message("Acme waiting on music", sent_at=100.0)),
            manager.ingest(message("Acme delivered", sent_at=200.0)),
        )

        assert store.get_latest("Acme").status is Status.DELIVERED
        store.close()


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_blocked_client_shows_up(
        self, manager: StateManager, extractor: Mock, store: StateStore
    ):
        extractor.extract.return_value = RawFact(
            client="ClientA", editor="Jane", status=None, blocked=True
        )

        await manager.ingest(message("ClientA is blocked, editor Jane has not delivered"))

        blocked = SnapshotQuery(store).blocked_entities()
        assert [r.entity_key for r in blocked] == ["ClientA"]
