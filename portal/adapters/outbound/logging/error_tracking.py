# portal/adapters/outbound/logging/error_tracking.py

"""
Forwards log entries to an external error-tracking ingestion endpoint.

The event body follows the Sentry store format closely enough for Sentry
itself or any compatible collector (GlitchTip, self-hosted relays).
"""

import json
import logging
import uuid
from typing import Any, Dict, Optional

import httpx

from portal.application.ports.outbound import ILogForwarder
from portal.domain.exceptions import UpstreamUnavailableException
from portal.domain.models.log_domain_model import LogEntry, LogLevel

logger = logging.getLogger(__name__)

SEVERITY_MAP = {
    LogLevel.ERROR: "error",
    LogLevel.WARN: "warning",
    LogLevel.INFO: "info",
    LogLevel.HTTP: "info",
    LogLevel.DEBUG: "debug",
}


class ErrorTrackingForwarder(ILogForwarder):

    def __init__(
            self,
            url: str,
            client: httpx.AsyncClient,
            token: Optional[str] = None,
            environment: str = "development",
            release: Optional[str] = None,
            service: str = "portal",
    ):
        """
        Args:
            url: Ingestion endpoint receiving one JSON event per POST
            client: Shared HTTP client
            token: Bearer token for the endpoint, if it needs one
            environment: Deployment environment reported with each event
            release: Application release reported with each event
            service: Logger name reported with each event
        """
        self.url = url
        self.client = client
        self.token = token
        self.environment = environment
        self.release = release
        self.service = service

    def build_event(self, entry: LogEntry) -> Dict[str, Any]:
        """
        Map a log entry onto an error-tracking event.

        Metadata goes to ``extra``; user id, email and ip to ``user``; and a
        stack, when present, to an ``exception`` block.

        Returns:
            The JSON-serializable event
        """
        metadata = entry.metadata
        event: Dict[str, Any] = {
            "event_id": uuid.uuid4().hex,
            "timestamp": entry.timestamp.isoformat(),
            "level": SEVERITY_MAP[entry.level],
            "logger": self.service,
            "platform": "python",
            "environment": self.environment,
            "message": {"formatted": entry.message},
            "extra": json.loads(entry.serialized_metadata()),
        }
        if self.release:
            event["release"] = self.release

        user = self._user_context(entry)
        if user:
            event["user"] = user

        if entry.stack:
            event["exception"] = {
                "values": [{
                    "type": str(metadata.get("error_type") or "Error"),
                    "value": entry.message,
                    "stacktrace": {"frames": [{"filename": "traceback", "context_line": entry.stack}]},
                }]
            }
        return event

    @staticmethod
    def _user_context(entry: LogEntry) -> Dict[str, Any]:
        user: Dict[str, Any] = {}
        nested = entry.metadata.get("user")
        if isinstance(nested, dict):
            for src, dst in (("id", "id"), ("email", "email"), ("name", "username")):
                if nested.get(src):
                    user[dst] = nested[src]
        if entry.user_id and "id" not in user:
            user["id"] = entry.user_id
        if entry.ip:
            user["ip_address"] = entry.ip
        return user

    async def forward(self, entry: LogEntry) -> None:
        """
        POST the event for ``entry``.

        Raises:
            UpstreamUnavailableException: If the endpoint cannot be reached or rejects the event
        """
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = await self.client.post(self.url, json=self.build_event(entry), headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamUnavailableException("Error tracking ingestion failed", original_error=e) from e
