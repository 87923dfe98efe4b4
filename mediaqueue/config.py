"""Configuration for the upload queue and the Supabase adapters."""
from __future__ import annotations

from dataclasses import dataclass
import os
from pathlib import Path
from typing import Dict, Optional, Tuple

MB = 1024 * 1024


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {value!r}") from exc


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class QueueConfig:
    """Immutable configuration for the upload queue."""
    max_concurrent_uploads: int = 3
    chunk_size: int = 2 * MB
    read_size: int = 256 * 1024
    max_attempts: int = 3
    attempt_timeout: float = 120.0
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    progress_interval: float = 0.25
    speed_window: int = 5
    retry_priority_boost: int = 10
    compression_enabled: bool = True
    image_compression_threshold: int = 1 * MB
    video_compression_threshold: int = 20 * MB
    compression_timeout: float = 300.0
    temp_dir: Optional[Path] = None
    cache_control: str = "3600"
    upsert: bool = False

    def __post_init__(self):
        if self.max_concurrent_uploads < 1:
            raise ValueError("max_concurrent_uploads must be at least 1")
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.chunk_size < 1 or self.read_size < 1:
            raise ValueError("chunk_size and read_size must be positive")
        if self.speed_window < 2:
            raise ValueError("speed_window needs at least 2 samples")

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) failed attempt."""
        return min(self.backoff_max, self.backoff_base * (2 ** (attempt - 1)))

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "QueueConfig":
        """Build a config from MEDIAQUEUE_* environment variables, optionally loading env_file first."""
        if env_file is not None:
            load_env_file(env_file)
        defaults = cls()
        temp_dir = os.getenv("MEDIAQUEUE_TEMP_DIR")
        return cls(
            max_concurrent_uploads=_env_int("MEDIAQUEUE_MAX_CONCURRENT", defaults.max_concurrent_uploads),
            chunk_size=_env_int("MEDIAQUEUE_CHUNK_SIZE", defaults.chunk_size),
            max_attempts=_env_int("MEDIAQUEUE_MAX_ATTEMPTS", defaults.max_attempts),
            attempt_timeout=_env_float("MEDIAQUEUE_ATTEMPT_TIMEOUT", defaults.attempt_timeout),
            backoff_base=_env_float("MEDIAQUEUE_BACKOFF_BASE", defaults.backoff_base),
            backoff_max=_env_float("MEDIAQUEUE_BACKOFF_MAX", defaults.backoff_max),
            progress_interval=_env_float("MEDIAQUEUE_PROGRESS_INTERVAL", defaults.progress_interval),
            compression_enabled=_env_bool("MEDIAQUEUE_COMPRESSION", defaults.compression_enabled),
            temp_dir=Path(temp_dir) if temp_dir else None,
        )


@dataclass(frozen=True)
class SupabaseSettings:
    """Connection settings for the hosted storage and database."""
    url: str
    service_key: str
    bucket: str = "birthday-media"
    media_table: str = "media_files"
    timeout: float = 60.0

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/")

    @classmethod
    def from_env(cls, env_file: Optional[Path] = None) -> "SupabaseSettings":
        if env_file is not None:
            load_env_file(env_file)
        url = os.getenv("SUPABASE_URL")
        key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")
        return cls(
            url=url,
            service_key=key,
            bucket=os.getenv("MEDIAQUEUE_BUCKET", "birthday-media"),
            media_table=os.getenv("MEDIAQUEUE_MEDIA_TABLE", "media_files"),
            timeout=_env_float("MEDIAQUEUE_HTTP_TIMEOUT", 60.0),
        )


def parse_env_line(line: str) -> Optional[Tuple[str, str]]:
    """Split one `KEY=value` line; None for blanks, comments and malformed lines."""
    line = line.strip()
    if line.startswith("export "):
        line = line[7:].lstrip()
    if not line or line.startswith("#"):
        return None
    key, sep, value = line.partition("=")
    key, value = key.strip(), value.strip()
    if not sep or not key:
        return None
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        value = value[1:-1]
    return key, value


def load_env_file(path: Path, override: bool = False) -> Dict[str, str]:
    """
    Load an env file into os.environ.

    Variables already set win unless override is True.
    Returns the variables that were applied.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"env file not found: {path}")

    applied = {}
    for line in path.read_text(encoding="utf-8").splitlines():
        pair = parse_env_line(line)
        if pair is None:
            continue
        key, value = pair
        if override or key not in os.environ:
            os.environ[key] = value
            applied[key] = value
    return applied
