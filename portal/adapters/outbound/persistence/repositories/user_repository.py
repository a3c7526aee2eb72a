# portal/adapters/outbound/persistence/repositories/user_repository.py

import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from portal.adapters.outbound.persistence.models.user_model import User
from portal.domain.exceptions import DatabaseOperationException

logger = logging.getLogger(__name__)


class AsyncUserRepository:
    """Read access to portal users."""

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> Optional[User]:
        """
        Find a user by email, case-insensitive.

        Raises:
            DatabaseOperationException: If the query fails
        """
        try:
            query = select(User).where(func.lower(User.email) == email.strip().lower())
            result = await db.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error fetching user by email: {str(e)}")
            raise DatabaseOperationException(
                detail="Error fetching user",
                original_error=e
            )


user_repository = AsyncUserRepository()
