# portal/adapters/outbound/security/token_codec.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from jose import jwt, JWTError

from portal.domain.exceptions import InvalidTokenException
from portal.domain.models.claims_domain_model import AuthClaims

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)

# expiry is checked against the codec clock, not jose's
_DECODE_OPTIONS = {"verify_exp": False, "verify_iat": False, "verify_nbf": False}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """
    Signs and verifies JWT access tokens carrying user id, email and role.
    """

    def __init__(
            self,
            secret: str,
            algorithm: str = "HS256",
            default_ttl: timedelta = DEFAULT_TTL,
            clock: Callable[[], datetime] = _utcnow,
    ):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self.secret = secret
        self.algorithm = algorithm
        self.default_ttl = default_ttl
        self.clock = clock

    def issue(self, user_id: str, email: str, role: str, ttl: Optional[timedelta] = None) -> str:
        """
        Create a signed access token.

        - ttl: lifetime of the token, defaults to ``default_ttl`` (24h).
        """
        if ttl is None:
            ttl = self.default_ttl

        issued_at = int(self.clock().timestamp())
        payload = {
            "sub": str(user_id),
            "email": email,
            "role": getattr(role, "value", role),
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
        }
        return jwt.encode(payload, self.secret, algorithm=self.algorithm)

    def issue_for(self, claims: AuthClaims, ttl: Optional[timedelta] = None) -> str:
        return self.issue(claims.user_id, claims.email, claims.role, ttl=ttl)

    def verify(self, token: str) -> AuthClaims:
        """
        Decode a token, checking signature and expiry.

        Raises:
            InvalidTokenException: bad signature, malformed payload or expired token
        """
        if not isinstance(token, str) or not token:
            raise InvalidTokenException("Invalid token: empty or not a string")

        try:
            payload = jwt.decode(token, self.secret, algorithms=[self.algorithm], options=_DECODE_OPTIONS)
        except (JWTError, ValueError, TypeError, AttributeError) as e:
            logger.debug(f"Token decode failed: {e}")
            raise InvalidTokenException("Invalid token: signature or format mismatch")

        try:
            issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
            claims = AuthClaims(
                user_id=str(payload["sub"]),
                email=str(payload["email"]),
                role=str(payload["role"]),
                issued_at=issued_at,
                expires_at=expires_at,
            )
        except (KeyError, ValueError, TypeError, OverflowError, OSError):
            raise InvalidTokenException("Invalid token: missing or malformed claims")

        if self.clock() >= claims.expires_at:
            raise InvalidTokenException("Invalid token: expired")

        return claims
