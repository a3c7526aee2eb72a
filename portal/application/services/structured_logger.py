# portal/application/services/structured_logger.py

"""
Structured logger.

Every call produces one ``LogEntry`` that is written to the local sink and
the persistence sink regardless of level, and forwarded to external
collaborators (error tracking, alerts) when it is severe enough. The sink
writes are awaited; forwarding runs as a background task so a slow
collaborator never holds up the caller. A failing sink or forwarder is
reported on a local-only fallback logger and never reaches the caller.
"""

import asyncio
import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Set

from portal.application.ports.outbound import ILogForwarder, ILogSink
from portal.domain.models.log_domain_model import LogEntry, LogLevel

fallback_logger = logging.getLogger("portal.logging.fallback")

Metadata = Optional[Mapping[str, Any]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _first(meta: Mapping[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = meta.get(key)
        if value not in (None, ""):
            return str(value)
    return None


class StructuredLogger:

    def __init__(
            self,
            persistence: Optional[ILogSink] = None,
            local: Optional[ILogSink] = None,
            forwarders: Sequence[ILogForwarder] = (),
            min_forward_level: LogLevel = LogLevel.WARN,
            default_metadata: Metadata = None,
            clock: Callable[[], datetime] = _utcnow,
            background_forwarding: bool = True,
    ):
        """
        Args:
            persistence: Sink writing every entry to durable storage
            local: Sink writing every entry to the process log
            forwarders: External collaborators for severe entries
            min_forward_level: Least severe level that is forwarded (errors always are)
            default_metadata: Fields merged under every call's metadata
            clock: Source of entry timestamps
            background_forwarding: Run forwarders as background tasks instead of awaiting them
        """
        self.persistence = persistence
        self.local = local
        self.forwarders = list(forwarders)
        self.min_forward_level = LogLevel.parse(min_forward_level)
        self.default_metadata = dict(default_metadata or {})
        self.clock = clock
        self.background_forwarding = background_forwarding
        self._pending: Set[asyncio.Task] = set()

    @property
    def pending_forwards(self) -> int:
        return len(self._pending)

    def build_entry(self, level: LogLevel, message: str, metadata: Metadata = None) -> LogEntry:
        meta: Dict[str, Any] = {**self.default_metadata, **(metadata or {})}

        stack = _first(meta, "stack")
        error = meta.get("error")
        if isinstance(error, BaseException):
            meta["error"] = str(error)
            meta.setdefault("error_type", type(error).__name__)
            if stack is None and error.__traceback__ is not None:
                stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        meta.pop("stack", None)

        user_id = _first(meta, "user_id", "userId")
        user = meta.get("user")
        if user_id is None and isinstance(user, Mapping):
            user_id = _first(user, "id")

        return LogEntry(
            level=level,
            message=message,
            timestamp=self.clock(),
            metadata=meta,
            user_id=user_id,
            ip=_first(meta, "ip", "ip_address"),
            user_agent=_first(meta, "user_agent", "userAgent"),
            stack=stack,
        )

    def should_forward(self, entry: LogEntry) -> bool:
        return entry.level is LogLevel.ERROR or entry.level.at_least(self.min_forward_level)

    async def log(self, level: Any, message: str, metadata: Metadata = None) -> LogEntry:
        """
        Record one entry.

        Args:
            level: LogLevel or level name ("warning" is accepted for warn)
            message: Human readable message
            metadata: Structured fields; ``stack``, ``error``, ``user_id``,
                ``ip`` and ``user_agent`` are lifted onto the entry

        Returns:
            The entry that was written
        """
        entry = self.build_entry(LogLevel.parse(level), message, metadata)

        if self.local is not None:
            await self._write(self.local, entry)
        if self.persistence is not None:
            await self._write(self.persistence, entry)
        targets = [f for f in self.forwarders if f.accepts(entry)] if self.should_forward(entry) else []
        if targets:
            if self.background_forwarding:
                self._schedule_forward(entry, targets)
            else:
                await self._forward(entry, targets)

        return entry

    def _schedule_forward(self, entry: LogEntry, targets: Sequence[ILogForwarder]) -> None:
        task = asyncio.create_task(self._forward(entry, targets))
        self._pending.add(task)
        task.add_done_callback(self._forward_done)

    def _forward_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            fallback_logger.error(f"Log forwarding task failed: {exc!r}")

    async def drain(self, timeout: Optional[float] = None) -> None:
        """
        Wait for in-flight forwarding to finish.

        Args:
            timeout: Seconds to wait before cancelling what is still running
        """
        if not self._pending:
            return
        _, still_running = await asyncio.wait(list(self._pending), timeout=timeout)
        if still_running:
            fallback_logger.warning(f"Cancelling {len(still_running)} unfinished log forwarding tasks")
            for task in still_running:
                task.cancel()
            await asyncio.gather(*still_running, return_exceptions=True)

    async def _write(self, sink: ILogSink, entry: LogEntry) -> None:
        try:
            await sink.write(entry)
        except Exception as e:
            fallback_logger.error(
                f"Log sink {type(sink).__name__} failed: {e} | "
                f"level={entry.level.value} message={entry.message!r}"
            )

    async def _forward(self, entry: LogEntry, targets: Sequence[ILogForwarder]) -> None:
        results = await asyncio.gather(*(f.forward(entry) for f in targets), return_exceptions=True)
        for forwarder, result in zip(targets, results):
            if isinstance(result, BaseException):
                fallback_logger.error(
                    f"Log forwarder {type(forwarder).__name__} failed: {result} | "
                    f"level={entry.level.value} message={entry.message!r}"
                )

    async def error(self, message: str, metadata: Metadata = None, critical: bool = False) -> LogEntry:
        if critical:
            metadata = {**(metadata or {}), "critical": True}
        return await self.log(LogLevel.ERROR, message, metadata)

    async def warn(self, message: str, metadata: Metadata = None) -> LogEntry:
        return await self.log(LogLevel.WARN, message, metadata)

    async def info(self, message: str, metadata: Metadata = None) -> LogEntry:
        return await self.log(LogLevel.INFO, message, metadata)

    async def http(self, message: str, metadata: Metadata = None) -> LogEntry:
        return await self.log(LogLevel.HTTP, message, metadata)

    async def debug(self, message: str, metadata: Metadata = None) -> LogEntry:
        return await self.log(LogLevel.DEBUG, message, metadata)

    def bind(self, context: Mapping[str, Any]) -> "ContextLogger":
        """Logger whose ``context`` is merged into every call's metadata."""
        return ContextLogger(self, context)


class ContextLogger:
    """
    Context-scoped view of a StructuredLogger. Context keys win over
    per-call metadata with the same name.
    """

    def __init__(self, parent: StructuredLogger, context: Mapping[str, Any]):
        self.parent = parent
        self.context = dict(context)

    async def log(self, level: Any, message: str, metadata: Metadata = None) -> LogEntry:
        return await self.parent.log(level, message, {**(metadata or {}), **self.context})

    async def error(self, message: str, metadata: Metadata = None, critical: bool = False) -> LogEntry:
        merged = {**(metadata or {}), **self.context}
        return await self.parent.error(message, merged, critical=critical)

    async def warn(self, message: str, metadata: Metadata = None) -> LogEntry:
        return await self.log(LogLevel.WARN, message, metadata)

    async def info(self, message: str, metadata: Metadata = None) -> LogEntry:
        return await self.log(LogLevel.INFO, message, metadata)

    async def http(self, message: str, metadata: Metadata = None) -> LogEntry:
        return await self.log(LogLevel.HTTP, message, metadata)

    async def debug(self, message: str, metadata: Metadata = None) -> LogEntry:
        return await self.log(LogLevel.DEBUG, message, metadata)

    def bind(self, context: Mapping[str, Any]) -> "ContextLogger":
        return ContextLogger(self.parent, {**self.context, **context})
