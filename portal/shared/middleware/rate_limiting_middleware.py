# portal/shared/middleware/rate_limiting_middleware.py

"""
Request rate limiting backed by the shared counter store.

Each request key (client IP + path by default) gets a counter that lives for
one window. Once the counter reaches the rule's limit the request is
rejected with 429 and a Retry-After hint. If the store cannot be reached the
limiter fails open: the fault is logged and the request is admitted.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from fastapi import status
from fastapi.responses import JSONResponse
from starlette.requests import Request

from portal.application.ports.outbound import ICounterStore
from portal.application.services.structured_logger import StructuredLogger
from portal.shared.utils.request_info import client_ip

# Configure logger
logger = logging.getLogger(__name__)

KeyFn = Callable[[Request], str]


def default_key(request: Request) -> str:
    return f"ratelimit:{client_ip(request)}:{request.url.path}"


@dataclass(frozen=True)
class RateLimitRule:
    limit: int
    window_seconds: int

    @classmethod
    def parse(cls, value: str) -> "RateLimitRule":
        """Parse ``"limit/window_seconds"``, e.g. ``"100/60"``."""
        limit, sep, window = value.partition("/")
        if not sep:
            raise ValueError(f"Rate limit rule must look like 'limit/window', got {value!r}")
        rule = cls(limit=int(limit), window_seconds=int(window))
        if rule.limit < 0 or rule.window_seconds <= 0:
            raise ValueError(f"Invalid rate limit rule: {value!r}")
        return rule


def parse_rules(rules: Mapping[str, str]) -> Dict[str, RateLimitRule]:
    return {name: RateLimitRule.parse(value) for name, value in rules.items()}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    key: str
    limit: int
    window_seconds: int
    current: Optional[int] = None
    degraded: bool = False

    @property
    def remaining(self) -> Optional[int]:
        if self.current is None:
            return None
        # concurrent increments can push this below zero
        return max(self.limit - self.current - 1, 0)

    def headers(self) -> Dict[str, str]:
        if self.degraded or self.current is None:
            return {}
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
        }


def too_many_requests(decision: RateLimitDecision) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={
            "success": False,
            "error": {
                "code": "RATE_LIMIT_EXCEEDED",
                "message": "Too many requests, please try again later",
            },
        },
        headers={"Retry-After": str(decision.window_seconds)},
    )


class RateLimiter:
    """
    Rolling per-key request counter over a shared store.
    """

    def __init__(
            self,
            store: ICounterStore,
            structured_logger: StructuredLogger,
            key_fn: KeyFn = default_key,
            fault_log_interval: float = 60.0,
            clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            store: Shared counter store
            structured_logger: Logger receiving store faults
            key_fn: Maps a request to its counter key
            fault_log_interval: Seconds between error records while the store is failing;
                faults in between only reach the process log
            clock: Monotonic time source for the fault throttle
        """
        self.store = store
        self.structured_logger = structured_logger
        self.key_fn = key_fn
        self.fault_log_interval = fault_log_interval
        self.clock = clock
        self._last_fault_logged: Optional[float] = None
        self._suppressed_faults = 0

    async def check(self, request: Request, rule: RateLimitRule) -> RateLimitDecision:
        """
        Read the counter for this request and, when under the limit,
        increment it and refresh its expiry.

        Args:
            request: Incoming request
            rule: Limit and window to apply

        Returns:
            RateLimitDecision; degraded and allowed when the store failed
        """
        key = self.key_fn(request)
        try:
            current = await self.store.get(key) or 0
            if current >= rule.limit:
                logger.warning(f"Rate limit exceeded | Key: {key} | Limit: {rule.limit} | Current: {current}")
                return RateLimitDecision(
                    allowed=False, key=key, limit=rule.limit,
                    window_seconds=rule.window_seconds, current=current,
                )
            await self.store.increment(key, rule.window_seconds)
        except Exception as e:
            await self._report_fault(key, rule, e)
            return RateLimitDecision(
                allowed=True, key=key, limit=rule.limit,
                window_seconds=rule.window_seconds, degraded=True,
            )

        return RateLimitDecision(
            allowed=True, key=key, limit=rule.limit,
            window_seconds=rule.window_seconds, current=current,
        )

    async def _report_fault(self, key: str, rule: RateLimitRule, error: Exception) -> None:
        now = self.clock()
        if self._last_fault_logged is not None and now - self._last_fault_logged < self.fault_log_interval:
            self._suppressed_faults += 1
            logger.warning(f"Rate limit store unavailable, admitting request | Key: {key} | Error: {error}")
            return

        suppressed, self._suppressed_faults = self._suppressed_faults, 0
        self._last_fault_logged = now
        await self.structured_logger.error(
            "Rate limit store unavailable, admitting request",
            {
                "key": key,
                "limit": rule.limit,
                "error": str(error),
                "error_type": type(error).__name__,
                "suppressed_faults": suppressed,
            },
        )
