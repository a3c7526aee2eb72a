# portal/domain/models/claims_domain_model.py

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    """Portal roles."""
    ADMIN = "admin"
    FACULTY = "faculty"
    STUDENT = "student"
    ORG = "org"


@dataclass(frozen=True)
class AuthClaims:
    """Identity decoded from a verified access token."""
    user_id: str
    email: str
    role: str
    issued_at: datetime
    expires_at: datetime

    def has_role(self, *roles: str) -> bool:
        return self.role in {getattr(r, "value", r) for r in roles}
