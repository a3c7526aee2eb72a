# portal/shared/middleware/request_pipeline.py

"""
Request pipeline: Auth Gate -> Rate Limiter -> handler, timed and logged.

Routes opt in through ``pipeline_route(...)``, an ``APIRoute`` subclass
factory, so each router declares its authentication mode and rate-limit
rule. The pipeline itself is built once per process and read from
``request.app.state.pipeline``.

Per-request states:
    received -> authenticating -> {rejected_401 | authenticated}
    -> rate_checking -> {rejected_429 | admitted} -> handling
    -> {completed | faulted} -> logged

Each terminal state produces exactly one outcome log record.
"""

import logging
import time
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Type

from fastapi.exceptions import RequestValidationError
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import Response
from starlette.routing import BaseRoute

from portal.application.services.structured_logger import StructuredLogger
from portal.domain.exceptions import HandlerFaultException
from portal.shared.middleware.auth_gate import AuthGate, AuthMode
from portal.shared.middleware.rate_limiting_middleware import (
    RateLimiter,
    RateLimitRule,
    too_many_requests,
)
from portal.shared.utils.request_info import client_ip, user_agent

# Configure logger
logger = logging.getLogger(__name__)

Handler = Callable[[Request], Awaitable[Response]]


class PipelineStage(str, Enum):
    RECEIVED = "received"
    AUTHENTICATING = "authenticating"
    REJECTED_401 = "rejected_401"
    AUTHENTICATED = "authenticated"
    RATE_CHECKING = "rate_checking"
    REJECTED_429 = "rejected_429"
    ADMITTED = "admitted"
    HANDLING = "handling"
    COMPLETED = "completed"
    FAULTED = "faulted"
    LOGGED = "logged"


@dataclass(frozen=True)
class RoutePolicy:
    auth: AuthMode = AuthMode.NONE
    rate_limit: Optional[str] = None


class RequestPipeline:

    def __init__(
            self,
            structured_logger: StructuredLogger,
            auth_gate: AuthGate,
            rate_limiter: RateLimiter,
            rules: Mapping[str, RateLimitRule],
            timer: Callable[[], float] = time.perf_counter,
    ):
        self.structured_logger = structured_logger
        self.auth_gate = auth_gate
        self.rate_limiter = rate_limiter
        self.rules = dict(rules)
        self.timer = timer

    def rule_for(self, policy: RoutePolicy) -> Optional[RateLimitRule]:
        """
        Resolve the rate-limit rule named by ``policy``.

        Raises:
            ValueError: If the rule name is not configured
        """
        if policy.rate_limit is None:
            return None
        try:
            return self.rules[policy.rate_limit]
        except KeyError:
            raise ValueError(f"Unknown rate limit rule: {policy.rate_limit!r}") from None

    def check_routes(self, routes: Iterable[BaseRoute]) -> None:
        """
        Resolve the policy of every pipelined route up front.

        Raises:
            ValueError: If a route names a rate-limit rule that is not configured
        """
        for route in routes:
            policy = getattr(route, "route_policy", None)
            if policy is None:
                continue
            try:
                self.rule_for(policy)
            except ValueError as e:
                raise ValueError(f"{e} on route {getattr(route, 'path', route)!r}") from None

    async def handle(self, request: Request, handler: Handler, policy: RoutePolicy) -> Response:
        """
        Run one request through the pipeline and log its outcome once.

        Args:
            request: Incoming request
            handler: The route handler FastAPI built for the endpoint
            policy: Authentication mode and rate-limit rule of the route

        Returns:
            The 401, 429 or handler response

        Raises:
            HTTPException: Re-raised from the handler after it is logged
            RequestValidationError: Re-raised from the handler after it is logged
            HandlerFaultException: When the handler fails unexpectedly
        """
        started = self.timer()
        request.state.stage = PipelineStage.RECEIVED

        try:
            response = await self._run_stages(request, handler, policy)
        except (StarletteHTTPException, RequestValidationError) as exc:
            status_code = getattr(exc, "status_code", 422)
            if status_code >= 500:
                request.state.stage = PipelineStage.FAULTED
                await self._log_fault(request, started, exc, status_code)
            else:
                # raised on purpose by the handler or its dependencies
                request.state.stage = PipelineStage.COMPLETED
                await self._log_outcome(request, status_code, started)
            raise
        except Exception as exc:
            request.state.stage = PipelineStage.FAULTED
            await self._log_fault(request, started, exc)
            raise HandlerFaultException() from exc

        await self._log_outcome(request, response.status_code, started)
        return response

    async def _run_stages(self, request: Request, handler: Handler, policy: RoutePolicy) -> Response:
        request.state.stage = PipelineStage.AUTHENTICATING
        rejection = self.auth_gate.authenticate(request, policy.auth)
        if rejection is not None:
            request.state.stage = PipelineStage.REJECTED_401
            return rejection
        request.state.stage = PipelineStage.AUTHENTICATED

        decision = None
        rule = self.rule_for(policy)
        if rule is not None:
            request.state.stage = PipelineStage.RATE_CHECKING
            decision = await self.rate_limiter.check(request, rule)
            if not decision.allowed:
                request.state.stage = PipelineStage.REJECTED_429
                return too_many_requests(decision)
            request.state.stage = PipelineStage.ADMITTED

        request.state.stage = PipelineStage.HANDLING
        try:
            response = await handler(request)
        except StarletteHTTPException as exc:
            if decision is not None:
                exc.headers = {**decision.headers(), **(exc.headers or {})}
            raise
        if decision is not None:
            for name, value in decision.headers().items():
                response.headers[name] = value
        request.state.stage = PipelineStage.COMPLETED
        return response

    def _request_metadata(self, request: Request, started: float) -> Dict[str, Any]:
        claims = getattr(request.state, "claims", None)
        meta: Dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "duration_ms": round((self.timer() - started) * 1000, 2),
            "outcome": request.state.stage.value,
            "ip": client_ip(request),
            "user_agent": user_agent(request),
        }
        if claims is not None:
            meta["user_id"] = claims.user_id
            meta["role"] = claims.role
        return meta

    async def _log_outcome(self, request: Request, status_code: int, started: float) -> None:
        meta = self._request_metadata(request, started)
        meta["status"] = status_code
        message = f"{request.method} {request.url.path} {status_code}"
        if status_code >= 500:
            await self.structured_logger.error(message, meta)
        else:
            await self.structured_logger.http(message, meta)
        request.state.stage = PipelineStage.LOGGED

    async def _log_fault(self, request: Request, started: float, exc: Exception, status_code: int = 500) -> None:
        meta = self._request_metadata(request, started)
        meta.update({
            "status": status_code,
            "error": str(exc),
            "error_type": type(exc).__name__,
            "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
        })
        await self.structured_logger.error(f"{request.method} {request.url.path} failed", meta)
        request.state.stage = PipelineStage.LOGGED


def pipeline_route(auth: AuthMode = AuthMode.NONE, rate_limit: Optional[str] = None) -> Type[APIRoute]:
    """
    Build an ``APIRoute`` class that runs every endpoint through the
    application's request pipeline with the given policy.

    Example:
        ```python
        router = APIRouter(route_class=pipeline_route(AuthMode.REQUIRED, "default"))
        ```
    """
    policy = RoutePolicy(auth=auth, rate_limit=rate_limit)

    class PipelineRoute(APIRoute):
        route_policy = policy

        def get_route_handler(self) -> Handler:
            handler = super().get_route_handler()

            async def pipeline_handler(request: Request) -> Response:
                pipeline: RequestPipeline = request.app.state.pipeline
                return await pipeline.handle(request, handler, policy)

            return pipeline_handler

    return PipelineRoute
