# portal/adapters/outbound/persistence/models/user_model.py

import uuid

from sqlalchemy import Column, Boolean, String, DateTime, func
from sqlalchemy.dialects.postgresql import UUID

from portal.adapters.outbound.persistence.database import Base


class User(Base):
    """
    Portal user.

    Attributes:
        id: unique identifier (UUID)
        email: login email
        password: bcrypt hash
        role: admin, faculty, student or org
        is_active: inactive users cannot log in
        created_at: creation timestamp
    """
    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False, index=True)
    password = Column(String, nullable=False)
    role = Column(String(16), nullable=False, default="student")
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    def __repr__(self) -> str:
        return f"<User(email={self.email}, role={self.role}, active={self.is_active})>"
