"""
Configuration helpers: database location, embedding and backfill settings.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .errors import ConfigurationError
from .retry import BackoffPolicy


DEFAULT_DB_PATH = "~/.qbank_search/questions.duckdb"
ENV_DB_PATH = "QBANK_DB_PATH"
ENV_API_KEY = "GOOGLE_API_KEY"

DEFAULT_EMBEDDING_MODEL = "gemini-embedding-001"
DEFAULT_EMBEDDING_DIM = 1536


def resolve_db_path(override_path: str | None = None) -> str:
    """
    Resolve the DuckDB path from CLI override, env var, or default.

    Precedence:
    1) explicit override_path
    2) QBANK_DB_PATH
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_DB_PATH) or DEFAULT_DB_PATH
    resolved = Path(raw_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)
    return str(resolved)


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def env_int(name: str, default: int) -> int:
    raw = env_str(name)
    if raw == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Env var {name} must be an int, got {raw!r}") from exc


def require_env(name: str) -> str:
    value = env_str(name)
    if not value:
        raise ConfigurationError(
            f"{name} not found. Provide it explicitly or set the environment variable."
        )
    return value


@dataclass(frozen=True)
class Settings:
    """Process-wide settings resolved once at start-up."""

    db_path: str
    embedding_model: str = DEFAULT_EMBEDDING_MODEL
    embedding_dim: int = DEFAULT_EMBEDDING_DIM
    batch_size: int = 64
    group_size: int = 32
    delay_ms: int = 200
    retry_max: int = 5
    retry_base_ms: int = 2000
    retry_cap_ms: int = 10000

    @classmethod
    def from_env(cls, db_path: str | None = None) -> "Settings":
        return cls(
            db_path=resolve_db_path(db_path),
            embedding_model=env_str("QBANK_EMBEDDING_MODEL", DEFAULT_EMBEDDING_MODEL),
            embedding_dim=env_int("QBANK_EMBEDDING_DIM", DEFAULT_EMBEDDING_DIM),
            batch_size=env_int("QBANK_BACKFILL_BATCH", 64),
            group_size=env_int("QBANK_BACKFILL_GROUP", 32),
            delay_ms=env_int("QBANK_BACKFILL_SLEEP_MS", 200),
            retry_max=env_int("QBANK_RETRY_MAX", 5),
            retry_base_ms=env_int("QBANK_RETRY_BASE_MS", 2000),
            retry_cap_ms=env_int("QBANK_RETRY_CAP_MS", 10000),
        )

    def __post_init__(self) -> None:
        if self.embedding_dim <= 0:
            raise ConfigurationError("QBANK_EMBEDDING_DIM must be > 0")
        if self.retry_max < 0:
            raise ConfigurationError("QBANK_RETRY_MAX must be >= 0")

    def backoff_policy(self) -> BackoffPolicy:
        return BackoffPolicy(
            max_retries=self.retry_max,
            base_delay=self.retry_base_ms / 1000.0,
            cap_delay=self.retry_cap_ms / 1000.0,
        )

    def summary(self) -> dict[str, object]:
        """Non-sensitive summary for logging."""
        return {
            "db_path": self.db_path,
            "embedding_model": self.embedding_model,
            "embedding_dim": self.embedding_dim,
            "batch_size": self.batch_size,
            "group_size": self.group_size,
            "delay_ms": self.delay_ms,
        }
