import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_OFFLINE_DB = str(Path.home() / ".budgetbuddy" / "offline.sqlite3")


@dataclass(frozen=True)
class ClientSettings:
    api_url: str
    api_key: str
    offline_db_path: str
    # None keeps the HTTP transport's own default timeout.
    remote_timeout: float | None
    settle_delay: float
    startup_delay: float
    probe_interval: float
    probe_timeout: float
    read_cache_ttl: int
    redis_url: str | None
    redis_prefix: str


def _optional_float(name: str) -> float | None:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return None
    return float(raw)


def load_client_settings() -> ClientSettings:
    api_url = (os.getenv("BUDGETBUDDY_API_URL") or "").strip()
    api_key = (os.getenv("BUDGETBUDDY_API_KEY") or "").strip()
    if not api_url:
        raise RuntimeError("BUDGETBUDDY_API_URL is required")
    if not api_key:
        raise RuntimeError("BUDGETBUDDY_API_KEY is required")

    return ClientSettings(
        api_url=api_url.rstrip("/"),
        api_key=api_key,
        offline_db_path=(os.getenv("OFFLINE_DB_PATH") or "").strip() or DEFAULT_OFFLINE_DB,
        remote_timeout=_optional_float("REMOTE_TIMEOUT"),
        settle_delay=max(0.0, float(os.getenv("SYNC_SETTLE_DELAY", "2"))),
        startup_delay=max(0.0, float(os.getenv("SYNC_STARTUP_DELAY", "3"))),
        probe_interval=max(1.0, float(os.getenv("CONNECTIVITY_PROBE_INTERVAL", "15"))),
        probe_timeout=max(0.1, float(os.getenv("CONNECTIVITY_PROBE_TIMEOUT", "3"))),
        read_cache_ttl=max(1, int(os.getenv("READ_CACHE_TTL", "30"))),
        redis_url=(os.getenv("REDIS_URL") or "").strip() or None,
        redis_prefix=(os.getenv("REDIS_PREFIX") or "budgetbuddy-client").strip() or "budgetbuddy-client",
    )
