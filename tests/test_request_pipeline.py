"""
End-to-end tests for the request pipeline: auth gate, rate limiter,
handler timing and outcome logging.
"""

import asyncio
import time
from unittest.mock import MagicMock

import pytest
from fastapi import APIRouter

from portal.domain.exceptions import DatabaseOperationException
from portal.domain.models.log_domain_model import LogEntry, LogLevel
from portal.shared.middleware import AuthMode, PipelineStage, pipeline_route
from tests.conftest import InMemoryCounterStore, RecordingForwarder, RecordingSink


class HandlerCalls:

    def __init__(self):
        self.count = 0


@pytest.fixture
def calls():
    return HandlerCalls()


@pytest.fixture
def client(app, calls):
    from fastapi.testclient import TestClient

    protected = APIRouter(route_class=pipeline_route(AuthMode.REQUIRED, "default"))
    optional = APIRouter(route_class=pipeline_route(AuthMode.OPTIONAL, None))

    @protected.get("/ok")
    async def ok():
        calls.count += 1
        return {"ok": True}

    @protected.get("/boom")
    async def boom():
        calls.count += 1
        raise RuntimeError("handler exploded")

    @protected.get("/db")
    async def db_down():
        calls.count += 1
        raise DatabaseOperationException(original_error=RuntimeError("connection reset"))

    @optional.get("/whoami")
    async def whoami():
        calls.count += 1
        return {"ok": True}

    app.include_router(protected, prefix="/test")
    app.include_router(optional, prefix="/test")
    return TestClient(app)


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestAuthStage:

    def test_missing_header_is_rejected_before_handler(self, client, calls, sink):
        response = client.get("/test/ok")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized: Missing or invalid Authorization header"}
        assert calls.count == 0

        outcomes = sink.outcomes()
        assert len(outcomes) == 1
        assert outcomes[0].metadata["status"] == 401
        assert outcomes[0].metadata["outcome"] == PipelineStage.REJECTED_401.value

    def test_invalid_token_is_rejected(self, client, calls):
        response = client.get("/test/ok", headers=bearer("garbage"))

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized: Invalid token"}
        assert calls.count == 0

    def test_non_bearer_scheme_is_rejected(self, client, token_for):
        response = client.get("/test/ok", headers={"Authorization": f"Basic {token_for()}"})
        assert response.status_code == 401

    def test_valid_token_reaches_handler(self, client, calls, token_for, sink):
        response = client.get("/test/ok", headers=bearer(token_for("u1")))

        assert response.status_code == 200
        assert calls.count == 1
        outcome = sink.outcomes()[0]
        assert outcome.level is LogLevel.HTTP
        assert outcome.user_id == "u1"
        assert outcome.metadata["role"] == "student"
        assert outcome.message == "GET /test/ok 200"

    def test_optional_route_admits_anonymous_and_bad_tokens(self, client, calls):
        assert client.get("/test/whoami").status_code == 200
        assert client.get("/test/whoami", headers=bearer("garbage")).status_code == 200
        assert calls.count == 2


class TestRateLimitStage:

    def test_sixth_request_gets_429(self, client, calls, sink, token_for):
        headers = bearer(token_for())
        statuses = [client.get("/test/ok", headers=headers).status_code for _ in range(6)]

        assert statuses == [200] * 5 + [429]
        assert calls.count == 5

        rejected = client.get("/test/ok", headers=headers)
        assert rejected.headers["Retry-After"] == "60"
        assert rejected.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"

        outcomes = sink.outcomes()
        assert len(outcomes) == 7
        assert [o.metadata["status"] for o in outcomes[-2:]] == [429, 429]
        assert outcomes[-1].metadata["outcome"] == PipelineStage.REJECTED_429.value

    def test_rate_limit_headers_on_success(self, client, token_for):
        response = client.get("/test/ok", headers=bearer(token_for()))

        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"

    def test_unauthenticated_requests_do_not_consume_quota(self, client, counter_store):
        for _ in range(10):
            client.get("/test/ok")
        assert counter_store.counts == {}

    def test_store_outage_fails_open(self, client, counter_store, sink, forwarder, token_for):
        counter_store.fail = True
        response = client.get("/test/ok", headers=bearer(token_for()))

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
        errors = sink.at(LogLevel.ERROR)
        assert len(errors) == 1
        assert "admitting request" in errors[0].message
        assert len(forwarder.forwarded) == 1


class TestHandlerFault:

    def test_fault_becomes_500_with_one_error_log(self, client, calls, sink, forwarder, token_for):
        response = client.get("/test/boom", headers=bearer(token_for()))

        assert response.status_code == 500
        assert response.json()["code"] == "INTERNAL_SERVER_ERROR"
        assert calls.count == 1

        errors = sink.at(LogLevel.ERROR)
        assert len(errors) == 1
        fault = errors[0]
        assert fault.metadata["status"] == 500
        assert fault.metadata["error"] == "handler exploded"
        assert fault.metadata["error_type"] == "RuntimeError"
        assert fault.metadata["outcome"] == PipelineStage.FAULTED.value
        assert fault.metadata["duration_ms"] >= 0
        assert "RuntimeError" in fault.stack

        assert len(sink.outcomes()) == 1
        assert forwarder.forwarded == [fault]

    def test_http_exceptions_pass_through(self, client, token_for, sink):
        # admin-only listing raises 403 from a dependency
        response = client.get("/api/v1/logs", headers=bearer(token_for(role="student")))

        assert response.status_code == 403
        assert response.json()["code"] == "PERMISSION_DENIED"
        outcome = sink.outcomes()[0]
        assert outcome.metadata["status"] == 403
        assert outcome.level is LogLevel.HTTP

    def test_validation_errors_are_logged_as_outcomes(self, client, sink):
        response = client.post("/api/v1/log/error", json={"message": ""})

        assert response.status_code == 422
        assert sink.outcomes()[0].metadata["status"] == 422


    def test_server_error_from_handler_is_logged_as_fault(self, client, calls, sink, forwarder, token_for):
        response = client.get("/test/db", headers=bearer(token_for()))

        assert response.status_code == 500
        assert response.json()["code"] == "DATABASE_OPERATION_ERROR"
        assert calls.count == 1

        [fault] = sink.at(LogLevel.ERROR)
        assert fault.metadata["status"] == 500
        assert fault.metadata["error_type"] == "DatabaseOperationException"
        assert fault.metadata["outcome"] == PipelineStage.FAULTED.value
        assert "DatabaseOperationException" in fault.stack
        assert len(sink.outcomes()) == 1
        assert forwarder.forwarded == [fault]

    def test_admitted_client_errors_keep_quota_headers(self, client, token_for):
        response = client.get("/api/v1/logs", headers=bearer(token_for(role="student")))

        assert response.status_code == 403
        assert response.headers["X-RateLimit-Limit"] == "5"
        assert response.headers["X-RateLimit-Remaining"] == "4"

    def test_rejected_requests_have_no_quota_headers(self, client):
        response = client.get("/test/ok")

        assert response.status_code == 401
        assert "X-RateLimit-Limit" not in response.headers


class TestRouteChecks:

    def test_known_rules_pass(self, app):
        app.state.pipeline.check_routes(app.routes)

    def test_unknown_rule_is_reported(self, app):
        router = APIRouter(route_class=pipeline_route(AuthMode.REQUIRED, "bulk"))

        @router.get("/export")
        async def export():
            return {}

        app.include_router(router, prefix="/test")

        with pytest.raises(ValueError, match="bulk"):
            app.state.pipeline.check_routes(app.routes)

    def test_create_app_refuses_unknown_rule(self, settings):
        from portal.main import create_app

        strict = settings.model_copy(update={"RATE_LIMIT_RULES": {"default": "5/60"}})
        with pytest.raises(ValueError, match="sensitive"):
            create_app(strict, counter_store=InMemoryCounterStore(), persistence_sink=RecordingSink(),
                       forwarders=[], session_factory=MagicMock())


class SlowForwarder(RecordingForwarder):

    def __init__(self, delay: float):
        super().__init__()
        self.delay = delay

    async def forward(self, entry: LogEntry) -> None:
        await asyncio.sleep(self.delay)
        await super().forward(entry)


class TestObservabilityIsolation:

    def test_slow_forwarder_does_not_delay_response(self, settings, counter_store, sink, db_session):
        from fastapi.testclient import TestClient

        from portal.adapters.outbound.persistence.database import get_db
        from portal.main import create_app

        slow = SlowForwarder(delay=2.0)
        app = create_app(
            settings.model_copy(update={"LOG_FORWARD_IN_BACKGROUND": True}),
            counter_store=counter_store,
            persistence_sink=sink,
            forwarders=[slow],
            session_factory=MagicMock(),
        )

        async def override_get_db():
            yield db_session

        app.dependency_overrides[get_db] = override_get_db
        token = app.state.token_codec.issue("u1", "user@example.com", "student")
        counter_store.fail = True

        with TestClient(app) as client:
            started = time.perf_counter()
            response = client.get("/api/v1/auth/me", headers=bearer(token))
            elapsed = time.perf_counter() - started

            assert response.status_code == 200
            assert elapsed < 1.0
            assert slow.forwarded == []

        # shutdown waits for in-flight forwarding
        assert [e.message for e in slow.forwarded] == ["Rate limit store unavailable, admitting request"]

    def test_store_outage_is_reported_once_per_interval(self, client, counter_store, sink, token_for):
        counter_store.fail = True
        headers = bearer(token_for())

        statuses = [client.get("/test/ok", headers=headers).status_code for _ in range(3)]

        assert statuses == [200, 200, 200]
        assert len(sink.at(LogLevel.ERROR)) == 1


class TestUnpipelinedRoutes:

    def test_health_is_not_rate_limited_or_logged(self, client, counter_store, sink):
        for _ in range(10):
            response = client.get("/api/v1/health")
            assert response.status_code == 200
        assert counter_store.counts == {}
        assert sink.outcomes() == []
