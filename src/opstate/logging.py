"""JSONL logging for observability."""

import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class LogEntry:
    """A single log entry."""

    timestamp: str
    event: str
    channel: str | None = None
    entity_key: str | None = None
    message_id: int | None = None
    intent: str | None = None
    reason: str | None = None
    duration_ms: float | None = None
    error: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict, excluding None values."""
        data = asdict(self)
        return {k: v for k, v in data.items() if v is not None and v != {}}


class JSONLLogger:
    """Logger that writes structured logs in JSONL format."""

    def __init__(
        self,
        log_dir: str | Path | None = None,
        filename: str = "logs.jsonl",
        max_size_mb: float = 10.0,
    ) -> None:
        if log_dir is None:
            log_dir = Path.home() / ".opstate" / "logs"
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.filename = filename
        self.max_size_bytes = int(max_size_mb * 1024 * 1024)

    @property
    def log_path(self) -> Path:
        """Current log file path."""
        return self.log_dir / self.filename

    def _rotate_if_needed(self) -> None:
        """Rotate log file if it exceeds max size."""
        if not self.log_path.exists():
            return

        if self.log_path.stat().st_size >= self.max_size_bytes:
            timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S_%f")
            rotated_name = f"{self.log_path.stem}_{timestamp}.jsonl"
            self.log_path.rename(self.log_dir / rotated_name)

    def _write(self, entry: LogEntry) -> None:
        """Write a log entry to the file."""
        self._rotate_if_needed()

        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry.to_dict(), ensure_ascii=False) + "\n")

    def log(
        self,
        event: str,
        *,
        channel: str | None = None,
        entity_key: str | None = None,
        message_id: int | None = None,
        intent: str | None = None,
        reason: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
        **extra: Any,
    ) -> None:
        """Log an event."""
        entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event=event,
            channel=channel,
            entity_key=entity_key,
            message_id=message_id,
            intent=intent,
            reason=reason,
            duration_ms=duration_ms,
            error=error,
            extra=extra if extra else {},
        )
        self._write(entry)

    def log_message(self, channel: str, message_id: int | None, length: int) -> None:
        """Log a stored inbound message."""
        self.log(
            "message_ingested",
            channel=channel,
            message_id=message_id,
            message_length=length,
        )

    def log_fact(
        self,
        entity_key: str,
        *,
        message_id: int | None = None,
        status: str | None = None,
        blocked: bool | None = None,
    ) -> None:
        """Log a fact written to the state store."""
        self.log(
            "fact_recorded",
            entity_key=entity_key,
            message_id=message_id,
            status=status,
            blocked=blocked,
        )

    def log_discard(self, reason: str, *, message_id: int | None = None) -> None:
        self.log("fact_discarded", reason=reason, message_id=message_id)

    def log_extraction_failure(
        self,
        reason: str,
        *,
        message_id: int | None = None,
        error: str | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """Log an extraction that produced no fact."""
        self.log(
            "extraction_failed",
            reason=reason,
            message_id=message_id,
            error=error or None,
            duration_ms=duration_ms,
        )

    def log_store_error(self, error: str, *, entity_key: str | None = None) -> None:
        self.log("store_error", entity_key=entity_key, error=error)

    def log_directive(
        self,
        intent: str,
        *,
        channel: str | None = None,
        duration_ms: float | None = None,
        error: str | None = None,
    ) -> None:
        """Log a handled directive."""
        self.log(
            "directive",
            intent=intent,
            channel=channel,
            duration_ms=duration_ms,
            error=error,
        )


# Global logger instance
_logger: JSONLLogger | None = None


def get_logger() -> JSONLLogger:
    """Get the global logger instance."""
    global _logger
    if _logger is None:
        _logger = JSONLLogger()
    return _logger


def configure_logger(log_dir: str | Path | None = None, max_size_mb: float = 10.0) -> JSONLLogger:
    """Configure and return the global logger."""
    global _logger
    _logger = JSONLLogger(log_dir=log_dir, max_size_mb=max_size_mb)
    return _logger
