# portal/adapters/outbound/persistence/models/log_record_model.py

"""
Model for persisted log records.

Append-only table written by the structured logger for every log call.
"""

from sqlalchemy import BigInteger, Column, DateTime, String, Text

from portal.adapters.outbound.persistence.database import Base


class LogRecord(Base):
    """
    Persisted log event.

    Attributes:
        level: error, warn, info, http or debug
        message: log message
        meta: serialized JSON metadata (column ``metadata``)
        user_id: requesting user, when known
        ip: client address, when known
        user_agent: client user agent, when known
        stack: traceback for faults
        created_at: event timestamp
    """
    __tablename__ = "log_records"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    level = Column(String(16), nullable=False, index=True)
    message = Column(Text, nullable=False)
    meta = Column("metadata", Text, nullable=False, default="{}")
    user_id = Column(String(64), nullable=True, index=True)
    ip = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    stack = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<LogRecord(level={self.level}, message={self.message[:40]!r})>"
