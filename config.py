import os
from functools import lru_cache
from pathlib import Path

CACHE_BACKENDS = ("database", "memory")


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        source_url: str,
        source_timeout_secs: float,
        cache_sweep_minutes: int,
        cache_backend: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.source_url = source_url
        self.source_timeout_secs = source_timeout_secs
        self.cache_sweep_minutes = cache_sweep_minutes
        self.cache_backend = cache_backend


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("ANALYTICS_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    database_url = os.getenv("ANALYTICS_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "analytics.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("ANALYTICS_TIMEZONE", "Europe/Paris")
    source_url = os.getenv("ANALYTICS_SOURCE_URL", "http://localhost:3001/api")
    source_timeout_secs = float(os.getenv("ANALYTICS_SOURCE_TIMEOUT_SECS", "15"))
    cache_sweep_minutes = int(os.getenv("ANALYTICS_CACHE_SWEEP_MINUTES", "15"))
    cache_backend = os.getenv("ANALYTICS_CACHE_BACKEND", "database").strip().lower()
    if cache_backend not in CACHE_BACKENDS:
        raise ValueError(
            f"ANALYTICS_CACHE_BACKEND must be one of {', '.join(CACHE_BACKENDS)}"
        )
    return Settings(
        database_url=database_url,
        timezone=timezone,
        source_url=source_url.rstrip("/"),
        source_timeout_secs=source_timeout_secs,
        cache_sweep_minutes=cache_sweep_minutes,
        cache_backend=cache_backend,
    )
