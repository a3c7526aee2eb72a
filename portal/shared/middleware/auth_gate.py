# portal/shared/middleware/auth_gate.py

"""
Bearer-token authentication stage of the request pipeline.

Extracts ``Authorization: Bearer <token>``, verifies it with the token codec
and attaches the decoded claims to ``request.state.claims``.
"""

import logging
from enum import Enum
from typing import Optional

from fastapi import status
from fastapi.responses import JSONResponse
from starlette.requests import Request

from portal.adapters.outbound.security.token_codec import TokenCodec
from portal.domain.exceptions import InvalidTokenException
from portal.shared.utils.request_info import client_ip

# Configure logger
logger = logging.getLogger(__name__)

MISSING_HEADER_ERROR = "Unauthorized: Missing or invalid Authorization header"
INVALID_TOKEN_ERROR = "Unauthorized: Invalid token"


class AuthMode(str, Enum):
    NONE = "none"
    OPTIONAL = "optional"
    REQUIRED = "required"


def extract_bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization")
    if not header:
        return None
    scheme, _, token = header.partition(" ")
    if scheme != "Bearer" or not token.strip():
        return None
    return token.strip()


def unauthorized(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_401_UNAUTHORIZED,
        content={"error": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


class AuthGate:

    def __init__(self, token_codec: TokenCodec):
        self.token_codec = token_codec

    def authenticate(self, request: Request, mode: AuthMode) -> Optional[JSONResponse]:
        """
        Run the gate for one request.

        Returns:
            None when the request may proceed, a 401 response otherwise.
        """
        request.state.claims = None
        if mode is AuthMode.NONE:
            return None

        token = extract_bearer_token(request)
        if token is None:
            if mode is AuthMode.REQUIRED:
                logger.warning(f"Missing bearer token | Path: {request.url.path} | Client: {client_ip(request)}")
                return unauthorized(MISSING_HEADER_ERROR)
            return None

        try:
            request.state.claims = self.token_codec.verify(token)
        except InvalidTokenException as e:
            logger.warning(f"Authentication error: {e.detail} | Path: {request.url.path} | Client: {client_ip(request)}")
            if mode is AuthMode.REQUIRED:
                return unauthorized(INVALID_TOKEN_ERROR)
        return None
