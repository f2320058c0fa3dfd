"""Wiring of the pipeline components shared by every transport."""

import os
from dataclasses import dataclass

from groq import AsyncGroq

from .config import BotConfig
from .logging import JSONLLogger, get_logger
from .oracle import ReasoningOracle
from .router import CommandRouter
from .state import (
    FactExtractor,
    FactNormalizer,
    KeyedLocks,
    SnapshotQuery,
    StateManager,
    StateStore,
)


@dataclass
class Services:
    """Process-wide handles, created once and passed to the transports."""

    config: BotConfig
    store: StateStore
    manager: StateManager
    snapshot: SnapshotQuery
    router: CommandRouter
    json_logger: JSONLLogger

    def close(self) -> None:
        self.store.close()


def build_services(
    config: BotConfig,
    groq_client: AsyncGroq | None = None,
    json_logger: JSONLLogger | None = None,
) -> Services:
    """Open the store and build the pipeline around it.

    Args:
        config: Runtime configuration.
        groq_client: Client used for extraction and free-form answers.
            Built from GROQ_API_KEY when not given.
        json_logger: Structured event log, the global one by default.
    """
    assert config.db_path is not None
    store = StateStore(config.db_path, config.state_mode)
    store.init_db()

    if groq_client is None:
        groq_client = AsyncGroq(api_key=os.getenv("GROQ_API_KEY"))
    json_logger = json_logger or get_logger()

    extractor = FactExtractor(groq_client, model=config.model, timeout=config.oracle_timeout)
    normalizer = FactNormalizer(config.admission, default_entity=config.default_entity)
    manager = StateManager(
        store,
        extractor,
        normalizer,
        locks=KeyedLocks(),
        json_logger=json_logger,
    )
    snapshot = SnapshotQuery(store)
    router = CommandRouter(
        snapshot,
        oracle=ReasoningOracle(groq_client, model=config.model),
        timeout=config.oracle_timeout,
    )

    return Services(
        config=config,
        store=store,
        manager=manager,
        snapshot=snapshot,
        router=router,
        json_logger=json_logger,
    )
