"""Tests for Telegram bot."""

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest
from telegram.error import TelegramError

from opstate.config import BotConfig
from opstate.logging import JSONLLogger
from opstate.router import NO_OPERATIONS
from opstate.services import Services, build_services
from opstate.telegram.bot import (
    MAX_MESSAGE_LENGTH,
    is_directed,
    raw_message_from,
    truncate_message,
)

SENT = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_response(content: str) -> Mock:
    """Create a mock LLM response."""
    response = Mock()
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


def make_message(
    text: str,
    chat_type: str = "group",
    title: str | None = "acme-ops",
    is_bot: bool = False,
) -> Mock:
    message = Mock()
    message.text = text
    message.date = SENT
    message.chat.type = chat_type
    message.chat.title = title
    message.chat.username = None
    message.chat.id = -100
    message.from_user.username = "ana"
    message.from_user.is_bot = is_bot
    message.reply_text = AsyncMock()
    return message


def make_context(username: str = "opstate_bot") -> Mock:
    context = Mock()
    context.bot.username = username
    return context


@pytest.fixture
def groq_client() -> AsyncMock:
    client = AsyncMock()
    client.chat.completions.create = AsyncMock(
        return_value=make_response(
            '{"client": "ClientA", "editor": "Jane", "status": null, "blocked": true}'
        )
    )
    return client


@pytest.fixture
def services(tmp_path: Path, groq_client: AsyncMock) -> Services:
    config = BotConfig(db_path=tmp_path / "state.db", log_dir=tmp_path / "logs")
    services = build_services(
        config, groq_client=groq_client, json_logger=JSONLLogger(config.log_dir)
    )
    yield services
    services.close()


@pytest.fixture
def bot(services: Services):
    from opstate.telegram import TelegramBot

    return TelegramBot(token="test-token", services=services)


class TestTruncateMessage:
    def test_short_message_unchanged(self):
        text = "Short message"
        assert truncate_message(text) == text

    def test_long_message_truncated(self):
        text = "x" * 5000
        result = truncate_message(text)
        assert len(result) <= MAX_MESSAGE_LENGTH
        assert "truncated" in result

    def test_exact_length_unchanged(self):
        text = "x" * MAX_MESSAGE_LENGTH
        assert truncate_message(text) == text


class TestRawMessageFrom:
    def test_fields(self):
        raw = raw_message_from(make_message("hello"))
        assert raw.author == "ana"
        assert raw.channel == "acme-ops"
        assert raw.text == "hello"
        assert raw.sent_at == SENT.timestamp()

    def test_channel_falls_back_to_chat_id(self):
        raw = raw_message_from(make_message("hello", title=None))
        assert raw.channel == "-100"


class TestIsDirected:
    def test_private_chat(self):
        assert is_directed(make_message("status", chat_type="private"), "opstate_bot")

    def test_mention(self):
        assert is_directed(make_message("@OpState_Bot status"), "opstate_bot")

    def test_plain_group_message(self):
        assert not is_directed(make_message("Acme is done"), "opstate_bot")

    def test_unknown_username(self):
        assert not is_directed(make_message("@opstate_bot status"), None)


class TestTelegramBot:
    def test_requires_token(self, monkeypatch):
        from opstate.telegram import TelegramBot

        monkeypatch.delenv("TELEGRAM_TOKEN", raising=False)
        with pytest.raises(ValueError, match="TELEGRAM_TOKEN"):
            TelegramBot(token=None)

    def test_creates_with_token(self, bot):
        assert bot.token == "test-token"
        assert bot.router is not None

    def test_build_app_registers_handlers(self, bot):
        app = bot.build_app()
        assert len(app.handlers[0]) == 3

    @pytest.mark.asyncio
    async def test_group_message_ingested_silently(self, bot, services: Services):
        message = make_message("ClientA is blocked, editor Jane has not delivered")
        update = Mock(message=message)

        await bot._handle_message(update, make_context())

        message.reply_text.assert_not_awaited()
        assert len(services.store.recent_messages(5)) == 1
        blocked = services.snapshot.blocked_entities()
        assert [r.entity_key for r in blocked] == ["ClientA"]

    @pytest.mark.asyncio
    async def test_extraction_failure_still_stores_message(
        self, bot, services: Services, groq_client: AsyncMock
    ):
        groq_client.chat.completions.create.side_effect = Exception("API down")
        message = make_message("Acme is done")

        await bot._handle_message(Mock(message=message), make_context())

        message.reply_text.assert_not_awaited()
        assert [m.text for m in services.store.recent_messages(5)] == ["Acme is done"]
        assert services.snapshot.full_snapshot() == []

    @pytest.mark.asyncio
    async def test_bot_messages_ignored(self, bot, services: Services):
        message = make_message("beep", is_bot=True)

        await bot._handle_message(Mock(message=message), make_context())

        assert services.store.recent_messages(5) == []

    @pytest.mark.asyncio
    async def test_mention_answers_directive(self, bot, services: Services):
        message = make_message("@opstate_bot status")

        await bot._handle_message(Mock(message=message), make_context())

        message.reply_text.assert_awaited_once()
        assert message.reply_text.await_args.args[0] == NO_OPERATIONS
        assert services.store.recent_messages(5) == []

    @pytest.mark.asyncio
    async def test_mention_passes_bot_username_to_router(self, bot):
        message = make_message("@opstate_bot what is @jane_editor working on?")
        bot.router.handle = AsyncMock(return_value="Editing Acme.")

        await bot._handle_message(Mock(message=message), make_context())

        bot.router.handle.assert_awaited_once_with(
            "@opstate_bot what is @jane_editor working on?", "opstate_bot"
        )
        assert message.reply_text.await_args.args[0] == "Editing Acme."

    @pytest.mark.asyncio
    async def test_command_shortcut(self, bot):
        message = make_message("/last5@opstate_bot")

        await bot._handle_command(Mock(message=message), make_context())

        reply = message.reply_text.await_args.args[0]
        assert reply == "No messages stored yet."

    @pytest.mark.asyncio
    async def test_delivery_error_is_logged_not_raised(self, bot, services: Services):
        message = make_message("@opstate_bot blocked")
        message.reply_text.side_effect = TelegramError("Forbidden")

        await bot._handle_message(Mock(message=message), make_context())

        log = services.json_logger.log_path.read_text()
        assert '"event": "transport_error"' in log
