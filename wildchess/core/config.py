"""Runtime settings, read from the environment once at process start and passed explicitly to whoever needs them."""

import logging
import os
from dataclasses import dataclass
from typing import Self

logger = logging.getLogger(__name__)

ENV_PREFIX = "WILDCHESS_"


def _env_str(name: str, default: str) -> str:
    return os.getenv(f"{ENV_PREFIX}{name}", default)


def _env_number(name: str, default: float) -> float:
    """Malformed values fall back to the default instead of crashing the process."""
    raw = os.getenv(f"{ENV_PREFIX}{name}")
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            "Ignoring malformed %s%s=%r, using default %s", ENV_PREFIX, name, raw, default
        )
        return default


@dataclass(frozen=True)
class Settings:
    host: str = "0.0.0.0"
    port: int = 3000
    reconnect_grace_seconds: float = 300.0
    room_cleanup_seconds: float = 30.0
    max_spectators: int = 50
    max_chat_length: int = 500
    database_url: str = "sqlite:///:memory:"
    log_level: str = "INFO"
    shutdown_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> Self:
        defaults = cls()
        return cls(
            host=_env_str("HOST", defaults.host),
            port=int(_env_number("PORT", defaults.port)),
            reconnect_grace_seconds=_env_number(
                "RECONNECT_GRACE_SECONDS", defaults.reconnect_grace_seconds
            ),
            room_cleanup_seconds=_env_number(
                "ROOM_CLEANUP_SECONDS", defaults.room_cleanup_seconds
            ),
            max_spectators=int(_env_number("MAX_SPECTATORS", defaults.max_spectators)),
            max_chat_length=int(
                _env_number("MAX_CHAT_LENGTH", defaults.max_chat_length)
            ),
            database_url=_env_str("DATABASE_URL", defaults.database_url),
            log_level=_env_str("LOG_LEVEL", defaults.log_level).upper(),
            shutdown_timeout_seconds=_env_number(
                "SHUTDOWN_TIMEOUT_SECONDS", defaults.shutdown_timeout_seconds
            ),
        )
