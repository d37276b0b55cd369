from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from functools import lru_cache


def _env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    v = str(raw).strip()
    return v or default


def _env_int(name: str, default: int, *, lo: int, hi: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        v = int(str(raw).strip())
    except ValueError:
        return default
    return max(lo, min(v, hi))


@dataclass(frozen=True)
class SyncSettings:
    """Runtime settings for a sync run.

    Env vars are read once per process (see get_settings); CLI flags take
    precedence over them.
    """

    db_path: str
    batch_size: int
    read_chunk_chars: int
    max_record_chars: int
    log_level: str

    @classmethod
    def from_env(cls) -> "SyncSettings":
        level = _env_str("PERMIT_SYNC_LOG_LEVEL", "INFO").upper()
        if not isinstance(logging.getLevelName(level), int):
            level = "INFO"
        return cls(
            db_path=_env_str("PERMIT_SYNC_DB", "./permits.sqlite"),
            batch_size=_env_int("PERMIT_SYNC_BATCH_SIZE", 5000, lo=1, hi=100_000),
            read_chunk_chars=_env_int("PERMIT_SYNC_READ_CHUNK", 65536, lo=1024, hi=16 * 1024 * 1024),
            max_record_chars=_env_int(
                "PERMIT_SYNC_MAX_RECORD_CHARS", 16 * 1024 * 1024, lo=1024, hi=1024 * 1024 * 1024
            ),
            log_level=level,
        )


@lru_cache(maxsize=1)
def get_settings() -> SyncSettings:
    return SyncSettings.from_env()


def reset_settings_cache() -> None:
    """Test helper to force env re-read."""

    get_settings.cache_clear()
