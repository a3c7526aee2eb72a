# portal/adapters/outbound/persistence/models/__init__.py

from portal.adapters.outbound.persistence.database import Base
from portal.adapters.outbound.persistence.models.log_record_model import LogRecord
from portal.adapters.outbound.persistence.models.user_model import User

__all__ = [
    "Base",
    "LogRecord",
    "User",
]
