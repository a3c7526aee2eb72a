# portal/application/ports/outbound.py

from abc import ABC, abstractmethod
from typing import Optional, Sequence

from portal.domain.models.log_domain_model import LogEntry, LogLevel


class ICounterStore(ABC):
    """Shared counter store with atomic increment-and-expire."""

    @abstractmethod
    async def get(self, key: str) -> Optional[int]:
        """Current count for key, None when absent."""
        pass

    @abstractmethod
    async def increment(self, key: str, window_seconds: int) -> int:
        """Atomically increment key and (re)set its expiry. Returns the new count."""
        pass

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        pass


class ILogSink(ABC):
    """Destination that receives every log entry."""

    @abstractmethod
    async def write(self, entry: LogEntry) -> None:
        pass


class ILogForwarder(ABC):
    """External collaborator that receives selected log entries."""

    min_level: LogLevel = LogLevel.DEBUG

    def accepts(self, entry: LogEntry) -> bool:
        return entry.level.at_least(self.min_level)

    @abstractmethod
    async def forward(self, entry: LogEntry) -> None:
        pass


class IEmailSender(ABC):
    """Outgoing mail."""

    @abstractmethod
    async def send(self, recipients: Sequence[str], subject: str, text: str, html: Optional[str] = None) -> bool:
        """Returns True when the message was accepted by the server."""
        pass


class IAlertNotifier(ABC):
    """Chat-style alert channel (Slack incoming webhook or compatible)."""

    @abstractmethod
    async def notify(self, text: str) -> None:
        pass
