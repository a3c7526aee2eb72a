# portal/shared/middleware/__init__.py

from portal.shared.middleware.auth_gate import AuthGate, AuthMode
from portal.shared.middleware.exception_middleware import register_exception_handlers
from portal.shared.middleware.rate_limiting_middleware import RateLimiter, RateLimitRule, parse_rules
from portal.shared.middleware.request_pipeline import (
    PipelineStage,
    RequestPipeline,
    RoutePolicy,
    pipeline_route,
)

# Export all for easy imports
__all__ = [
    "AuthGate",
    "AuthMode",
    "PipelineStage",
    "RateLimiter",
    "RateLimitRule",
    "RequestPipeline",
    "RoutePolicy",
    "parse_rules",
    "pipeline_route",
    "register_exception_handlers",
]
