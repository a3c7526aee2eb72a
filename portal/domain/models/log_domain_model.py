# portal/domain/models/log_domain_model.py

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

# stdlib has no level between DEBUG and INFO for request lines
HTTP_LEVEL_NUM = 15


class LogLevel(str, Enum):
    """Log levels ordered error > warn > info > http > debug."""
    ERROR = "error"
    WARN = "warn"
    INFO = "info"
    HTTP = "http"
    DEBUG = "debug"

    @classmethod
    def parse(cls, value: Any) -> "LogLevel":
        if isinstance(value, LogLevel):
            return value
        name = str(value).lower()
        if name == "warning":
            name = "warn"
        return cls(name)

    @property
    def priority(self) -> int:
        """0 is the most severe."""
        return _PRIORITY[self]

    @property
    def stdlib_level(self) -> int:
        return _STDLIB_LEVELS[self]

    def at_least(self, other: "LogLevel") -> bool:
        """True when this level is as severe as ``other`` or more."""
        return self.priority <= other.priority


_PRIORITY = {
    LogLevel.ERROR: 0,
    LogLevel.WARN: 1,
    LogLevel.INFO: 2,
    LogLevel.HTTP: 3,
    LogLevel.DEBUG: 4,
}

_STDLIB_LEVELS = {
    LogLevel.ERROR: logging.ERROR,
    LogLevel.WARN: logging.WARNING,
    LogLevel.INFO: logging.INFO,
    LogLevel.HTTP: HTTP_LEVEL_NUM,
    LogLevel.DEBUG: logging.DEBUG,
}


@dataclass(frozen=True)
class LogEntry:
    """A single structured log event. Never mutated after creation."""
    level: LogLevel
    message: str
    timestamp: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    stack: Optional[str] = None

    def serialized_metadata(self) -> str:
        return json.dumps(self.metadata, default=str, sort_keys=True)
