"""Directive classification, dispatch and reply formatting."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from .errors import StoreError
from .state.models import RawMessage, StateRecord
from .state.snapshot import SnapshotQuery

if TYPE_CHECKING:
    from .oracle import ReasoningOracle

logger = logging.getLogger(__name__)

NO_MESSAGES = "No messages stored yet."
NO_BLOCKED = "No blocked operations found."
NO_OPERATIONS = "No operations found."
DATA_UNAVAILABLE = "Sorry, the operations data is unavailable right now."
FALLBACK_ANSWER = "Sorry, I can't answer that right now."

# Slack-style <@U123> and Telegram-style @username mentions
_MENTION = re.compile(r"<@[^>]+>|(?<!\w)@\w+")
_SLACK_MENTION = re.compile(r"<@[^>]+>")

# "last 5" always means five messages
RECENT_LIMIT = 5


class Intent(Enum):
    """What a directive asks for."""

    RECENT_RAW = "recent_raw"
    BLOCKED = "blocked"
    SNAPSHOT = "snapshot"
    QUESTION = "question"


# Checked in order, first match wins
INTENT_KEYWORDS: list[tuple[str, Intent]] = [
    ("last 5", Intent.RECENT_RAW),
    ("blocked", Intent.BLOCKED),
    ("status", Intent.SNAPSHOT),
]


def normalize_directive(text: str) -> str:
    """Strip mentions, trim and case-fold a directive."""
    return _MENTION.sub("", text).strip().casefold()


def strip_bot_mention(text: str, bot_username: str | None = None) -> str:
    """Remove mentions of the bot from a question, keeping teammate mentions."""
    text = _SLACK_MENTION.sub("", text)
    if bot_username:
        own = re.compile(rf"(?<!\w)@{re.escape(bot_username)}\b", re.IGNORECASE)
        text = own.sub("", text)
    return " ".join(text.split())


def classify(text: str) -> Intent:
    """Classify a directive into an Intent."""
    normalized = normalize_directive(text)
    for keyword, intent in INTENT_KEYWORDS:
        if keyword in normalized:
            return intent
    return Intent.QUESTION


def format_recent(messages: list[RawMessage]) -> str:
    if not messages:
        return NO_MESSAGES
    lines = [f"{index}. {message.text}" for index, message in enumerate(messages, 1)]
    return f"Here are the last {RECENT_LIMIT} messages:\n" + "\n".join(lines)


def format_blocked(records: list[StateRecord]) -> str:
    if not records:
        return NO_BLOCKED
    lines = []
    for record in records:
        fact = record.fact
        if fact.client and fact.client == record.entity_key:
            lines.append(f"Client {fact.client} is blocked")
        elif fact.editor and fact.editor == record.entity_key:
            lines.append(f"Editor {fact.editor} is blocked")
        else:
            lines.append(f"{record.entity_key} is blocked")
    return "Blocked items:\n" + "\n".join(lines)


def format_snapshot(records: list[StateRecord]) -> str:
    if not records:
        return NO_OPERATIONS
    lines = [
        f"{record.entity_key} - {record.display_state} - {record.fact.editor or 'No editor'}"
        for record in records
    ]
    return "OPERATIONS SNAPSHOT:\n\n" + "\n".join(lines)


class CommandRouter:
    """Answers directives from the current snapshot.

    Stateless: every call classifies and answers its directive on its own.
    """

    def __init__(
        self,
        snapshot: SnapshotQuery,
        oracle: ReasoningOracle | None = None,
        clock: Callable[[], float] = time.time,
        timeout: float = 20.0,
    ) -> None:
        """Initialize the router.

        Args:
            snapshot: Query engine over the state store.
            oracle: LLM used for free-form questions. Without one every
                question gets the fallback answer.
            clock: Returns the current POSIX time in seconds.
            timeout: Seconds to wait for the oracle.
        """
        self.snapshot = snapshot
        self.oracle = oracle
        self.clock = clock
        self.timeout = timeout

    async def handle(self, text: str, bot_username: str | None = None) -> str:
        """Answer a directive with a plain-text reply.

        Args:
            text: The directive as the user wrote it.
            bot_username: The bot's own handle, removed from free-form
                questions. Other mentions are kept.
        """
        intent = classify(text)
        try:
            if intent is Intent.RECENT_RAW:
                return format_recent(self.snapshot.recent_raw(RECENT_LIMIT))
            if intent is Intent.BLOCKED:
                return format_blocked(self.snapshot.blocked_entities())
            if intent is Intent.SNAPSHOT:
                return format_snapshot(self.snapshot.full_snapshot())
            return await self._answer_question(strip_bot_mention(text, bot_username))
        except StoreError:
            logger.exception(f"Store failure while handling {intent.value} directive")
            return DATA_UNAVAILABLE

    async def _answer_question(self, question: str) -> str:
        records = self.snapshot.full_snapshot()
        if not records or self.oracle is None:
            return FALLBACK_ANSWER

        try:
            answer = await asyncio.wait_for(
                self.oracle.answer(question, records, int(self.clock() * 1000)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Free-form answer timed out after {self.timeout}s")
            return FALLBACK_ANSWER
        except Exception as e:
            logger.warning(f"Free-form answer failed: {e}")
            return FALLBACK_ANSWER

        return answer if answer.strip() else FALLBACK_ANSWER
