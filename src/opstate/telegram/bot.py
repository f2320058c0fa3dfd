"""Telegram bot integration for opstate."""

import logging
import os
import time

from telegram import Message, Update
from telegram.constants import ChatType, ParseMode
from telegram.error import TelegramError
from telegram.ext import (
    Application,
    CommandHandler,
    ContextTypes,
    MessageHandler,
    filters,
)

from ..config import BotConfig, config_from_env
from ..errors import TransportDeliveryError
from ..router import classify
from ..services import Services, build_services
from ..state import RawMessage

logger = logging.getLogger(__name__)


WELCOME_MESSAGE = """
*opstate*

I read this chat and keep track of which clients and editors are delivered,
in progress, waiting or blocked.

*Ask me by mentioning me:*
`last 5` - Last five messages I stored
`blocked` - Who is blocked right now
`status` - Current state of every client and editor
Anything else - I'll answer from the current snapshot

Shortcuts: /status /blocked /last5
"""

MAX_MESSAGE_LENGTH = 4096

# Command shortcuts mapped to the directive text they stand for
COMMAND_DIRECTIVES = {
    "status": "status",
    "blocked": "blocked",
    "last5": "last 5",
}


def truncate_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> str:
    """Truncate message to fit Telegram limits."""
    if len(text) <= max_length:
        return text
    return text[: max_length - 20] + "\n... [truncated]"


def raw_message_from(message: Message) -> RawMessage:
    """Build the transport-neutral RawMessage from a Telegram message."""
    chat = message.chat
    user = message.from_user
    author = "unknown"
    if user is not None:
        author = user.username or user.full_name or str(user.id)
    channel = chat.title or chat.username or str(chat.id)
    return RawMessage(
        author=author,
        channel=channel,
        text=message.text or "",
        sent_at=message.date.timestamp(),
    )


def is_directed(message: Message, bot_username: str | None) -> bool:
    """Whether a message is addressed to the bot rather than the team."""
    if message.chat.type == ChatType.PRIVATE:
        return True
    if bot_username and message.text:
        return f"@{bot_username.lower()}" in message.text.lower()
    return False


class TelegramBot:
    """Telegram bot that ingests team chat and answers directives."""

    def __init__(
        self,
        token: str | None = None,
        config: BotConfig | None = None,
        services: Services | None = None,
    ) -> None:
        self.token = token or os.getenv("TELEGRAM_TOKEN")
        if not self.token:
            raise ValueError("TELEGRAM_TOKEN not set")

        self.config = config or (services.config if services else config_from_env())
        self.services = services or build_services(self.config)
        self.manager = self.services.manager
        self.router = self.services.router
        self.json_logger = self.services.json_logger
        self._app: Application | None = None

    async def _reply(
        self, message: Message, text: str, parse_mode: str | None = None
    ) -> None:
        """Send a reply, raising TransportDeliveryError if Telegram refuses it."""
        try:
            await message.reply_text(truncate_message(text), parse_mode=parse_mode)
        except TelegramError as e:
            raise TransportDeliveryError(str(e)) from e

    async def _answer(
        self, message: Message, directive: str, bot_username: str | None = None
    ) -> None:
        """Route a directive and send the answer back."""
        channel = raw_message_from(message).channel
        start = time.monotonic()
        reply = await self.router.handle(directive, bot_username)
        self.json_logger.log_directive(
            classify(directive).value,
            channel=channel,
            duration_ms=(time.monotonic() - start) * 1000,
        )

        try:
            await self._reply(message, reply)
        except TransportDeliveryError as e:
            logger.error(f"Could not deliver reply to {channel}: {e}")
            self.json_logger.log("transport_error", channel=channel, error=str(e))

    async def _handle_start(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /start command."""
        assert update.message is not None
        try:
            await self._reply(update.message, WELCOME_MESSAGE, ParseMode.MARKDOWN)
        except TransportDeliveryError as e:
            logger.error(f"Could not deliver welcome message: {e}")

    async def _handle_command(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle /status, /blocked and /last5."""
        message = update.message
        if message is None or not message.text:
            return
        command = message.text.split()[0].lstrip("/").split("@")[0].lower()
        directive = COMMAND_DIRECTIVES.get(command)
        if directive is not None:
            await self._answer(message, directive)

    async def _handle_message(
        self, update: Update, context: ContextTypes.DEFAULT_TYPE
    ) -> None:
        """Handle incoming text: answer directives, ingest everything else."""
        message = update.message
        if message is None or message.text is None:
            return
        if message.from_user is not None and message.from_user.is_bot:
            return

        if is_directed(message, context.bot.username):
            await self._answer(message, message.text, context.bot.username)
            return

        await self.manager.ingest(raw_message_from(message))

    async def _post_shutdown(self, application: Application) -> None:
        """Called after Application.shutdown()."""
        self.services.close()

    def build_app(self) -> Application:
        """Build the Telegram application."""
        self._app = (
            Application.builder()
            .token(self.token)
            .concurrent_updates(True)
            .post_shutdown(self._post_shutdown)
            .build()
        )

        # Add handlers
        self._app.add_handler(CommandHandler("start", self._handle_start))
        self._app.add_handler(
            CommandHandler(list(COMMAND_DIRECTIVES), self._handle_command)
        )
        self._app.add_handler(
            MessageHandler(filters.TEXT & ~filters.COMMAND, self._handle_message)
        )

        return self._app

    def run(self) -> None:
        """Run the bot (blocking)."""
        app = self.build_app()

        logger.info("Starting Telegram bot...")
        app.run_polling()
