# portal/adapters/inbound/api/deps.py

"""
Dependencies for injection into API endpoints.

Authentication itself runs in the request pipeline; these functions
expose what the pipeline stored on ``request.state`` and the
process-wide collaborators stored on ``app.state``.
"""

import logging
from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status

from portal.adapters.outbound.persistence.database import get_db
from portal.adapters.outbound.security.token_codec import TokenCodec
from portal.application.services.structured_logger import StructuredLogger
from portal.domain.exceptions import PermissionDeniedException
from portal.domain.models.claims_domain_model import AuthClaims, Role

# Configure logger
logger = logging.getLogger(__name__)

########################################################################
# Database Session Management
########################################################################

# Alias kept so endpoints read the same as the rest of the codebase
get_session = get_db


########################################################################
# Application collaborators
########################################################################

def get_structured_logger(request: Request) -> StructuredLogger:
    return request.app.state.structured_logger


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


########################################################################
# Claims
########################################################################

def get_optional_claims(request: Request) -> Optional[AuthClaims]:
    """Claims attached by the auth gate, or None for anonymous callers."""
    return getattr(request.state, "claims", None)


def get_claims(claims: Optional[AuthClaims] = Depends(get_optional_claims)) -> AuthClaims:
    """
    Claims of the authenticated caller.

    Raises:
        HTTPException: If the route was reached without verified claims
    """
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


def require_role(*roles: Role) -> Callable[..., AuthClaims]:
    """
    Build a dependency that only admits callers holding one of ``roles``.

    Example:
        ```python
        @router.get("/logs")
        async def list_logs(claims: AuthClaims = Depends(require_role(Role.ADMIN))):
            ...
        ```
    """
    allowed = ", ".join(r.value for r in roles)

    def checker(claims: AuthClaims = Depends(get_claims)) -> AuthClaims:
        if not claims.has_role(*roles):
            logger.warning(f"Access denied for user {claims.user_id} with role {claims.role}")
            raise PermissionDeniedException(role=allowed)
        return claims

    return checker
