# tests/conftest.py
# Окружение выставляется ДО импорта src: настройки читаются лениво, а движок БД
# создаётся при импорте src.db.

import os

os.environ.setdefault("APP_ENV", "test")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("JWT_ACCESS_SECRET", "test-secret")
os.environ["PIPELINE_ENABLED"] = "0"

from datetime import datetime
from typing import Any, Dict, List

import fakeredis
import pytest

from src.config import QueueSettings, get_settings
from src.db import Base, SessionLocal, engine
from src.queues.job_queue import JobOptions, JobQueue
from src.realtime.hub import RealtimeHub


class FakeClock:
    """Управляемое время для очередей (секунды, как time.time)."""

    def __init__(self, start: float | None = None) -> None:
        self.now = start if start is not None else datetime(2026, 10, 19, 12, 0, 0).timestamp()

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeWebSocket:
    def __init__(self, fail: bool = False) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail = fail
        self.closed_code: int | None = None

    async def send_json(self, message: Dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    async def close(self, code: int = 1000) -> None:
        self.closed_code = code


@pytest.fixture(autouse=True)
def tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def redis():
    return fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue_options():
    return JobOptions.from_settings(QueueSettings.for_env(False))


@pytest.fixture
def make_queue(redis, clock, queue_options):
    def _make(name: str = "test-queue", **kwargs) -> JobQueue:
        kwargs.setdefault("default_options", queue_options)
        kwargs.setdefault("clock", clock)
        return JobQueue(name, redis, prefix="test", **kwargs)

    return _make


@pytest.fixture
def hub():
    return RealtimeHub()


@pytest.fixture
def make_ws():
    return FakeWebSocket


@pytest.fixture
def pipeline(settings, redis):
    from src.runtime import Pipeline

    return Pipeline(settings, redis, SessionLocal)


@pytest.fixture
def client(pipeline):
    from fastapi.testclient import TestClient

    from src.main import app

    previous = app.state.pipeline
    app.state.pipeline = pipeline
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.state.pipeline = previous


@pytest.fixture
def auth_header():
    from src.utils.auth_dep import create_access_token

    def _make(user_id: str, role: str) -> Dict[str, str]:
        token = create_access_token(user_id, f"{user_id}@thnx.test", role)
        return {"Authorization": f"Bearer {token}"}

    return _make
