from __future__ import annotations

import os
from dataclasses import dataclass


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


@dataclass(frozen=True)
class Settings:
    app_env: str
    persistence_enabled: bool
    persistence_db_path: str
    database_url: str
    auth_enabled: bool
    jwt_secret: str
    jwt_algorithm: str
    dedup_window_hours: int
    counter_retention_days: int
    fingerprint_salt: str
    ranking_default_max_entries: int
    ranking_max_entries_ceiling: int
    bbs_default_max_messages: int
    bbs_default_page_size: int
    bbs_max_messages_ceiling: int
    store_max_retries: int


def load_settings() -> Settings:
    persistence_db_path = os.getenv("PERSISTENCE_DB_PATH", "data/widgets.sqlite3").strip()
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        database_url = f"sqlite:///{persistence_db_path.replace(chr(92), '/')}"
    ranking_ceiling = max(1, _int_env("RANKING_MAX_ENTRIES_CEILING", 10000))
    bbs_ceiling = max(1, _int_env("BBS_MAX_MESSAGES_CEILING", 10000))
    return Settings(
        app_env=os.getenv("APP_ENV", "development"),
        persistence_enabled=_bool_env("PERSISTENCE_ENABLED", True),
        persistence_db_path=persistence_db_path,
        database_url=database_url,
        auth_enabled=_bool_env("AUTH_ENABLED", False),
        jwt_secret=os.getenv("JWT_SECRET", "dev-only-secret-change-in-prod").strip(),
        jwt_algorithm=os.getenv("JWT_ALGORITHM", "HS256").strip(),
        dedup_window_hours=max(1, _int_env("DEDUP_WINDOW_HOURS", 24)),
        counter_retention_days=max(1, _int_env("COUNTER_RETENTION_DAYS", 365)),
        fingerprint_salt=os.getenv("FINGERPRINT_SALT", "").strip(),
        ranking_default_max_entries=max(
            0, min(ranking_ceiling, _int_env("RANKING_DEFAULT_MAX_ENTRIES", 100))
        ),
        ranking_max_entries_ceiling=ranking_ceiling,
        bbs_default_max_messages=max(
            1, min(bbs_ceiling, _int_env("BBS_DEFAULT_MAX_MESSAGES", 1000))
        ),
        bbs_default_page_size=max(1, min(100, _int_env("BBS_DEFAULT_PAGE_SIZE", 10))),
        bbs_max_messages_ceiling=bbs_ceiling,
        store_max_retries=max(1, _int_env("STORE_MAX_RETRIES", 8)),
    )
