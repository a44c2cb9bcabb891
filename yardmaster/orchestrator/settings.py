"""Service configuration loaded from YARD_* environment variables."""

from __future__ import annotations

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from yardmaster.orchestrator.models.enums import EngineKind


class YardSettings(BaseSettings):
    """Yardmaster orchestrator settings.

    All fields are read from environment variables with the ``YARD_`` prefix.
    For example, ``YARD_HANDSHAKE_TIMEOUT=120`` maps to ``handshake_timeout``.
    """

    model_config = SettingsConfigDict(
        env_prefix="YARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # -- Logging ---------------------------------------------------------------
    log_level: str = "INFO"
    log_json: bool = False

    # -- Infrastructure --------------------------------------------------------
    database_url: str | None = None
    """PostgreSQL connection string (psycopg).  Templates and history need it."""

    redis_url: str | None = None
    """Redis connection string.  Enables phase-change publishing."""

    events_stream: str = "yardmaster:workspace-events"
    """Redis stream key that phase changes are appended to."""

    events_stream_maxlen: int = 10_000

    # -- Provisioning engine ---------------------------------------------------
    engine: EngineKind = EngineKind.MEMORY
    engine_url: str | None = None
    """Base URL of the remote engine (only when engine = "http")."""

    engine_token: SecretStr | None = None
    engine_timeout: float = 300.0
    """Seconds to wait for a single engine call."""

    # -- Handshake -------------------------------------------------------------
    handshake_timeout: float = 600.0
    """Seconds an agent has to present its token after the resource is created.

    An agent's own ``connection_timeout`` takes precedence.
    """

    startup_timeout: float = 1800.0
    """Seconds an agent has to report its startup script after connecting."""

    # -- Server ----------------------------------------------------------------
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8000
    graceful_shutdown_timeout: int = 30
    """Seconds to wait for in-flight engine calls during shutdown.

    Handshake waits are cancelled immediately; the affected workspaces are
    marked failed by startup recovery on the next boot.
    """


def get_settings() -> YardSettings:
    """Return a cached settings instance.

    Reads from environment variables and ``.env`` on first call, then returns
    the same object.  Call ``get_settings.cache_clear()`` in tests to force a
    re-read after overriding env vars.
    """
    return _get_settings_cached()


def _get_settings_cached() -> YardSettings:
    """Inner function wrapped by lru_cache (allows type-safe cache_clear)."""
    return YardSettings()


# Apply lru_cache at runtime so the function is only called once.
from functools import lru_cache  # noqa: E402

_get_settings_cached = lru_cache(maxsize=1)(_get_settings_cached)
