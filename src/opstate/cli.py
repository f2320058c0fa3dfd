"""Console transport for opstate."""

import os
import time

from .config import BotConfig, config_from_env
from .errors import StoreError
from .logging import configure_logger
from .router import classify
from .services import Services, build_services
from .state import Fact, RawMessage

BANNER = """
opstate console

Every line you type is stored as a team message from 'cli' in #console.

Commands:
  /ask <directive>     - Ask the bot (e.g. /ask status, /ask blocked, /ask last 5)
  /history <entity>    - Last facts recorded for a client or editor
  /help                - Show this help
  /exit, /quit         - Exit
"""


def format_history(entity_key: str, facts: list[Fact]) -> str:
    """Format an entity's recent facts for display."""
    if not facts:
        return f"No facts recorded for {entity_key}."
    lines = [f"History of {entity_key}:"]
    for fact in facts:
        when = time.strftime("%Y-%m-%d %H:%M", time.localtime(fact.sent_at))
        state = "BLOCKED" if fact.blocked else (fact.status.value if fact.status else "unknown")
        lines.append(f"  [{when}] {state}: {fact.source_text}")
    return "\n".join(lines)


class CLI:
    """Interactive console that feeds the same pipeline as the bot."""

    AUTHOR = "cli"
    CHANNEL = "console"

    def __init__(
        self,
        config: BotConfig | None = None,
        services: Services | None = None,
    ) -> None:
        self.config = config or (services.config if services else config_from_env())
        self.services = services or build_services(self.config)

    async def _ingest(self, text: str) -> None:
        message = RawMessage(
            author=self.AUTHOR,
            channel=self.CHANNEL,
            text=text,
            sent_at=time.time(),
        )
        fact = await self.services.manager.ingest(message)
        if fact is not None:
            print(f"  recorded {fact.entity_key}: {self._describe(fact)}")
        else:
            print("  stored (no fact)")

    @staticmethod
    def _describe(fact: Fact) -> str:
        parts = []
        if fact.status is not None:
            parts.append(fact.status.value)
        if fact.blocked is not None:
            parts.append("blocked" if fact.blocked else "not blocked")
        return ", ".join(parts) or "mentioned"

    async def _ask(self, directive: str) -> None:
        start = time.monotonic()
        reply = await self.services.router.handle(directive)
        self.services.json_logger.log_directive(
            classify(directive).value,
            channel=self.CHANNEL,
            duration_ms=(time.monotonic() - start) * 1000,
        )
        print("\n" + "─" * 40)
        print(reply)
        print("─" * 40)

    async def _handle_command(self, command: str) -> bool:
        """Handle a special command. Returns True if should continue, False to exit."""
        name, _, arg = command.strip().partition(" ")
        name = name.lower()
        arg = arg.strip()

        if name in ("/exit", "/quit"):
            print("\nBye!")
            return False

        if name == "/help":
            print(BANNER)
            return True

        if name == "/ask":
            if not arg:
                print("Usage: /ask <directive>")
            else:
                await self._ask(arg)
            return True

        if name == "/history":
            if not arg:
                print("Usage: /history <entity>")
            else:
                try:
                    facts = self.services.snapshot.entity_history(arg)
                except StoreError as e:
                    print(f"Error: {e}")
                else:
                    print(format_history(arg, facts))
            return True

        print(f"Unknown command: {name}")
        return True

    async def run(self) -> None:
        """Run the interactive console."""
        print(BANNER)

        try:
            while True:
                try:
                    user_input = input("> ").strip()
                except (KeyboardInterrupt, EOFError):
                    print("\nBye!")
                    break

                if not user_input:
                    continue

                if user_input.startswith("/"):
                    if not await self._handle_command(user_input):
                        break
                    continue

                await self._ingest(user_input)
        finally:
            self.services.close()


async def run_cli() -> None:
    """Run the console with configuration from the environment."""
    config = config_from_env()
    configure_logger(config.log_dir)

    if not os.getenv("GROQ_API_KEY"):
        print("Error: GROQ_API_KEY environment variable not set")
        print("Please set it in your .env file or environment")
        return

    await CLI(config=config).run()
