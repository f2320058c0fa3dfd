"""Configuration loaded from environment variables."""

import os
from dataclasses import dataclass
from pathlib import Path

from .state.normalizer import AdmissionPolicy
from .state.store import StateMode

DEFAULT_HOME = Path.home() / ".opstate"


@dataclass
class BotConfig:
    """Runtime configuration shared by every transport."""

    model: str = "llama-3.1-70b-versatile"
    db_path: Path | None = None
    state_mode: StateMode = StateMode.HISTORY
    admission: AdmissionPolicy = AdmissionPolicy.EITHER
    oracle_timeout: float = 20.0
    default_entity: str | None = None
    log_dir: Path | None = None

    def __post_init__(self) -> None:
        if self.db_path is None:
            self.db_path = DEFAULT_HOME / "state.db"
        if self.log_dir is None:
            self.log_dir = DEFAULT_HOME / "logs"


def _enum_from_env(name: str, enum_cls, default):
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        return enum_cls(raw.strip().lower())
    except ValueError:
        choices = ", ".join(m.value for m in enum_cls)
        raise ValueError(f"{name} must be one of: {choices} (got {raw!r})") from None


def _float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number of seconds (got {raw!r})") from None
    if value <= 0:
        raise ValueError(f"{name} must be positive (got {raw!r})")
    return value


def config_from_env() -> BotConfig:
    """Load configuration from environment variables."""
    db_path = os.getenv("OPSTATE_DB")
    log_dir = os.getenv("OPSTATE_LOG_DIR")

    return BotConfig(
        model=os.getenv("GROQ_MODEL", "llama-3.1-70b-versatile"),
        db_path=Path(db_path).expanduser() if db_path else None,
        state_mode=_enum_from_env("OPSTATE_STATE_MODE", StateMode, StateMode.HISTORY),
        admission=_enum_from_env(
            "OPSTATE_ADMISSION", AdmissionPolicy, AdmissionPolicy.EITHER
        ),
        oracle_timeout=_float_from_env("OPSTATE_ORACLE_TIMEOUT", 20.0),
        default_entity=os.getenv("OPSTATE_DEFAULT_ENTITY") or None,
        log_dir=Path(log_dir).expanduser() if log_dir else None,
    )
