"""
Shared fixtures: in-memory counter store, recording log sink and forwarder,
and an application wired with them instead of Redis/PostgreSQL/HTTP.
"""

from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from starlette.requests import Request

from portal.adapters.configuration.config import Settings
from portal.adapters.outbound.persistence.database import get_db
from portal.application.ports.outbound import ICounterStore, ILogForwarder, ILogSink
from portal.domain.exceptions import UpstreamUnavailableException
from portal.domain.models.log_domain_model import LogEntry, LogLevel
from portal.main import create_app


class InMemoryCounterStore(ICounterStore):

    def __init__(self):
        self.counts: Dict[str, int] = {}
        self.windows: Dict[str, int] = {}
        self.fail = False

    async def get(self, key: str) -> Optional[int]:
        if self.fail:
            raise UpstreamUnavailableException("Counter store read failed", original_error=ConnectionError("down"))
        return self.counts.get(key)

    async def increment(self, key: str, window_seconds: int) -> int:
        if self.fail:
            raise UpstreamUnavailableException("Counter store increment failed")
        self.counts[key] = self.counts.get(key, 0) + 1
        self.windows[key] = window_seconds
        return self.counts[key]


class RecordingSink(ILogSink):

    def __init__(self, fail: bool = False):
        self.entries: List[LogEntry] = []
        self.fail = fail

    async def write(self, entry: LogEntry) -> None:
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.entries.append(entry)

    def at(self, level: LogLevel) -> List[LogEntry]:
        return [e for e in self.entries if e.level is level]

    def outcomes(self) -> List[LogEntry]:
        return [e for e in self.entries if "outcome" in e.metadata]


class RecordingForwarder(ILogForwarder):

    def __init__(self, fail: bool = False):
        self.forwarded: List[LogEntry] = []
        self.fail = fail

    async def forward(self, entry: LogEntry) -> None:
        if self.fail:
            raise RuntimeError("collector unavailable")
        self.forwarded.append(entry)


def make_request(path: str = "/api/v1/thing", ip: str = "10.0.0.1", headers: Optional[Dict[str, str]] = None,
                 method: str = "GET") -> Request:
    raw_headers = [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()]
    return Request({
        "type": "http",
        "method": method,
        "scheme": "http",
        "server": ("testserver", 80),
        "path": path,
        "root_path": "",
        "query_string": b"",
        "headers": raw_headers,
        "client": (ip, 50000),
    })


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        JWT_SECRET="test-secret",
        ENVIRONMENT="testing",
        RATE_LIMIT_RULES={"default": "5/60", "sensitive": "3/60"},
        ALERT_MIN_LEVEL="warn",
        LOG_FORWARD_IN_BACKGROUND=False,
    )


@pytest.fixture
def counter_store():
    return InMemoryCounterStore()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def forwarder():
    return RecordingForwarder()


@pytest.fixture
def db_session():
    return AsyncMock()


@pytest.fixture
def app(settings, counter_store, sink, forwarder, db_session):
    application = create_app(
        settings,
        counter_store=counter_store,
        persistence_sink=sink,
        forwarders=[forwarder],
        session_factory=MagicMock(),
    )

    async def override_get_db():
        yield db_session

    application.dependency_overrides[get_db] = override_get_db
    return application


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def token_for(app):
    def issue(user_id: str = "u1", email: str = "user@example.com", role: str = "student") -> str:
        return app.state.token_codec.issue(user_id, email, role)

    return issue
