# src/config.py
# Настройки приложения из окружения (.env подхватывается через python-dotenv).
# Всё, что различается между production и development (ретраи, конкурентность
# воркеров, ретеншн очередей), собрано здесь, чтобы не размазывать по модулям.

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


@dataclass(frozen=True)
class QueueSettings:
    """Политика очереди: ретраи, бэкофф, ретеншн и размер пула воркеров."""

    attempts: int
    backoff_delay_ms: int
    remove_on_complete: int
    remove_on_fail: int
    concurrency: int
    poll_interval: float = 0.5

    @classmethod
    def for_env(cls, is_production: bool) -> "QueueSettings":
        if is_production:
            return cls(
                attempts=5,
                backoff_delay_ms=2000,
                remove_on_complete=500,
                remove_on_fail=1000,
                concurrency=20,
            )
        return cls(
            attempts=3,
            backoff_delay_ms=1000,
            remove_on_complete=100,
            remove_on_fail=500,
            concurrency=10,
        )


@dataclass(frozen=True)
class Settings:
    app_env: str
    database_url: str
    redis_url: str
    jwt_access_secret: str
    jwt_access_expiry_minutes: int = 15
    frontend_url: Optional[str] = None
    queue_prefix: str = "thnx"
    notification_retention_days: int = 30
    pipeline_enabled: bool = True
    # окно ежедневной очистки уведомлений (по времени сервера)
    cleanup_hour: int = 2
    cleanup_minute: int = 0
    queue: QueueSettings = field(default_factory=lambda: QueueSettings.for_env(False))

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def cors_origins(self) -> List[str]:
        origins = [
            "http://localhost:5173",
            "http://localhost:3000",
            "http://localhost:8080",
            "http://127.0.0.1:5173",
            "http://127.0.0.1:3000",
            "https://thnxdigital.com",
            "https://www.thnxdigital.com",
        ]
        if self.frontend_url:
            origins.append(self.frontend_url)
        if self.is_production:
            # в проде - только https
            return [o for o in origins if o.startswith("https")]
        return origins

    @classmethod
    def from_env(cls) -> "Settings":
        app_env = (os.getenv("APP_ENV") or "development").strip().lower()

        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL is not set")

        jwt_secret = os.getenv("JWT_ACCESS_SECRET")
        if not jwt_secret:
            raise RuntimeError("JWT_ACCESS_SECRET is not set")

        return cls(
            app_env=app_env,
            database_url=database_url,
            redis_url=os.getenv("REDIS_URL") or "redis://localhost:6379/0",
            jwt_access_secret=jwt_secret,
            jwt_access_expiry_minutes=_env_int("JWT_ACCESS_EXPIRY_MINUTES", 15),
            frontend_url=os.getenv("FRONTEND_URL") or None,
            queue_prefix=os.getenv("QUEUE_PREFIX") or "thnx",
            notification_retention_days=_env_int("NOTIFICATION_RETENTION_DAYS", 30),
            pipeline_enabled=_env_bool("PIPELINE_ENABLED", True),
            queue=QueueSettings.for_env(app_env == "production"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Ленивая инициализация - чтобы тесты успели выставить окружение до первого чтения."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
