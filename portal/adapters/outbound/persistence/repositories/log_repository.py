# portal/adapters/outbound/persistence/repositories/log_repository.py

from datetime import datetime
from typing import List, Optional, Tuple

from fastapi_pagination import Params
from sqlalchemy import Float, cast, delete, func, select
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError

from portal.adapters.outbound.persistence.models.log_record_model import LogRecord
from portal.domain.exceptions import DatabaseOperationException
from portal.domain.models.analytics_domain_model import RequestWindowStats
from portal.domain.models.log_domain_model import LogEntry, LogLevel


class AsyncLogRepository:
    """Repository for the append-only log table."""

    @staticmethod
    async def add(db: AsyncSession, entry: LogEntry) -> LogRecord:
        """
        Persist a log entry.

        Args:
            db: Async database session
            entry: Entry to persist

        Returns:
            The created LogRecord
        """
        try:
            record = LogRecord(
                level=entry.level.value,
                message=entry.message,
                meta=entry.serialized_metadata(),
                user_id=entry.user_id,
                ip=entry.ip,
                user_agent=entry.user_agent,
                stack=entry.stack,
                created_at=entry.timestamp,
            )
            db.add(record)
            await db.commit()
            return record
        except SQLAlchemyError as e:
            await db.rollback()
            raise DatabaseOperationException(
                detail="Error persisting log record",
                original_error=e
            )

    @staticmethod
    async def list_page(
            db: AsyncSession,
            params: Params,
            level: Optional[str] = None,
    ) -> Tuple[List[LogRecord], int]:
        """
        Newest-first page of log records.

        Returns:
            (records, total matching records)
        """
        try:
            query = select(LogRecord)
            count_query = select(func.count()).select_from(LogRecord)
            if level:
                query = query.where(LogRecord.level == level)
                count_query = count_query.where(LogRecord.level == level)

            query = (
                query.order_by(LogRecord.created_at.desc(), LogRecord.id.desc())
                .offset((params.page - 1) * params.size)
                .limit(params.size)
            )
            total = (await db.execute(count_query)).scalar_one()
            records = (await db.execute(query)).scalars().all()
            return list(records), total
        except SQLAlchemyError as e:
            raise DatabaseOperationException(
                detail="Error listing log records",
                original_error=e
            )

    @staticmethod
    async def window_stats(db: AsyncSession, start: datetime, end: datetime) -> RequestWindowStats:
        """
        Aggregate the request outcome records written in ``[start, end)``.

        Only records carrying an ``outcome`` field are counted, so alerts
        and client-submitted logs do not skew the figures.

        Args:
            db: Async database session
            start: Window start (inclusive)
            end: Window end (exclusive)

        Returns:
            RequestWindowStats for the window

        Raises:
            DatabaseOperationException: If the query fails
        """
        meta = cast(LogRecord.meta, JSONB)
        duration = meta["duration_ms"].astext.cast(Float)
        try:
            query = (
                select(
                    func.count(),
                    func.count().filter(LogRecord.level == LogLevel.ERROR.value),
                    func.avg(duration),
                )
                .where(LogRecord.created_at >= start, LogRecord.created_at < end)
                .where(meta.has_key("outcome"))
            )
            total, errors, mean_duration = (await db.execute(query)).one()
            return RequestWindowStats(
                start=start,
                end=end,
                total=total or 0,
                errors=errors or 0,
                mean_duration_ms=float(mean_duration) if mean_duration is not None else None,
            )
        except SQLAlchemyError as e:
            raise DatabaseOperationException(
                detail="Error aggregating log records",
                original_error=e
            )

    @staticmethod
    async def delete_older_than(db: AsyncSession, cutoff: datetime) -> int:
        """
        Remove records created before ``cutoff``.

        Returns:
            Number of records deleted
        """
        try:
            result = await db.execute(delete(LogRecord).where(LogRecord.created_at < cutoff))
            await db.commit()
            return result.rowcount or 0
        except SQLAlchemyError as e:
            await db.rollback()
            raise DatabaseOperationException(
                detail="Error cleaning up old log records",
                original_error=e
            )


# Create instance
log_repository = AsyncLogRepository()
