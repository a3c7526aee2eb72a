# portal/adapters/inbound/api/v1/endpoints/auth_endpoint.py

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from portal.adapters.inbound.api.deps import get_claims, get_session, get_token_codec
from portal.adapters.outbound.security.token_codec import TokenCodec
from portal.application.dtos.auth_dto import ClaimsOutput, LoginRequest, TokenResponse
from portal.application.use_cases.auth_use_cases import AsyncAuthService
from portal.domain.models.claims_domain_model import AuthClaims
from portal.shared.middleware import AuthMode, pipeline_route

logger = logging.getLogger(__name__)

# Login is public but limited by the stricter rule
login_router = APIRouter(route_class=pipeline_route(AuthMode.NONE, "sensitive"))
router = APIRouter(route_class=pipeline_route(AuthMode.REQUIRED, "default"))


@login_router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login - Issues an access token",
    description="Verifies email and password and returns a signed bearer token.",
    responses={
        401: {
            "description": "Invalid credentials",
            "content": {
                "application/json": {
                    "example": {"detail": "Invalid email or password", "code": "INVALID_CREDENTIALS"}
                }
            }
        },
        429: {"description": "Too many login attempts"},
    }
)
async def login(
        credentials: LoginRequest,
        db: AsyncSession = Depends(get_session),
        token_codec: TokenCodec = Depends(get_token_codec),
):
    service = AsyncAuthService(db, token_codec)
    return await service.login(credentials)


@router.get(
    "/me",
    response_model=ClaimsOutput,
    summary="Current identity",
    description="Returns the claims carried by the caller's access token.",
)
async def me(claims: AuthClaims = Depends(get_claims)):
    return ClaimsOutput(
        user_id=claims.user_id,
        email=claims.email,
        role=claims.role,
        issued_at=claims.issued_at,
        expires_at=claims.expires_at,
    )
