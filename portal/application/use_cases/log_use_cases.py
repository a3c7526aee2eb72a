# portal/application/use_cases/log_use_cases.py

"""
Log ingestion, listing and retention.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi_pagination import Params
from sqlalchemy.ext.asyncio import AsyncSession

from portal.adapters.outbound.persistence.repositories.log_repository import log_repository
from portal.application.dtos.log_dto import ClientErrorLog, ClientMessageLog, LogPage, LogRecordOutput
from portal.application.services.structured_logger import StructuredLogger
from portal.domain.models.claims_domain_model import AuthClaims
from portal.domain.models.log_domain_model import LogLevel

logger = logging.getLogger(__name__)


class AsyncLogService:

    def __init__(self, structured_logger: StructuredLogger, db_session: Optional[AsyncSession] = None,
                 repository=log_repository):
        self.structured_logger = structured_logger
        self.db = db_session
        self.repository = repository

    @staticmethod
    def client_context(claims: Optional[AuthClaims], ip: str, user_agent: str) -> Dict[str, Any]:
        context: Dict[str, Any] = {"source": "client", "ip": ip, "user_agent": user_agent}
        if claims is not None:
            context["user_id"] = claims.user_id
        return context

    async def record_client_error(self, payload: ClientErrorLog, context: Dict[str, Any]) -> None:
        meta: Dict[str, Any] = {"context": payload.context}
        if payload.stack:
            meta["stack"] = payload.stack
        if payload.timestamp:
            meta["client_timestamp"] = payload.timestamp.isoformat()
        await self.structured_logger.bind(context).error(payload.message, meta)

    async def record_client_message(self, payload: ClientMessageLog, context: Dict[str, Any]) -> None:
        meta: Dict[str, Any] = {"context": payload.context}
        if payload.timestamp:
            meta["client_timestamp"] = payload.timestamp.isoformat()
        await self.structured_logger.bind(context).log(payload.level, payload.message, meta)

    async def list_logs(self, params: Params, level: Optional[LogLevel] = None) -> LogPage:
        """
        Newest-first page of persisted log records.

        Args:
            params: Page number and size
            level: Only return records at this level

        Returns:
            LogPage with the records and the total count
        """
        records, total = await self.repository.list_page(
            self.db, params, level=level.value if level else None
        )
        return LogPage(
            items=[LogRecordOutput.model_validate(r) for r in records],
            total=total,
            page=params.page,
            size=params.size,
        )

    async def purge_expired(self, retention_days: int) -> int:
        """Delete records older than ``retention_days``. Returns the count."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        deleted = await self.repository.delete_older_than(self.db, cutoff)
        logger.info(f"Cleaned up {deleted} log records older than {retention_days} days")
        return deleted
