# portal/application/use_cases/auth_use_cases.py

"""
Service for user authentication.

Verifies email/password against the users table and issues access tokens.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from portal.adapters.outbound.persistence.repositories.user_repository import user_repository
from portal.adapters.outbound.security.password_hasher import PasswordHasher
from portal.adapters.outbound.security.token_codec import TokenCodec
from portal.application.dtos.auth_dto import LoginRequest, TokenResponse
from portal.domain.exceptions import InvalidCredentialsException

logger = logging.getLogger(__name__)


class AsyncAuthService:

    def __init__(self, db_session: AsyncSession, token_codec: TokenCodec,
                 hasher=PasswordHasher, users=user_repository):
        """
        Args:
            db_session: Active SQLAlchemy session
            token_codec: Codec used to sign the access token
        """
        self.db = db_session
        self.token_codec = token_codec
        self.hasher = hasher
        self.users = users

    async def login(self, credentials: LoginRequest) -> TokenResponse:
        """
        Authenticate a user and return an access token.

        Raises:
            InvalidCredentialsException: Unknown email, wrong password or inactive user
        """
        user = await self.users.get_by_email(self.db, credentials.email)
        if user is None or not self.hasher.verify_password(credentials.password, user.password):
            logger.warning(f"Failed login attempt for {credentials.email}")
            raise InvalidCredentialsException()

        if not user.is_active:
            logger.warning(f"Login attempt for inactive user {user.id}")
            raise InvalidCredentialsException("User account is inactive")

        token = self.token_codec.issue(str(user.id), user.email, user.role)
        claims = self.token_codec.verify(token)
        logger.info(f"User {user.id} logged in")
        return TokenResponse(access_token=token, expires_at=claims.expires_at)
