# portal/application/services/alert_service.py

"""
Alert dispatch over email and a chat webhook.

``alert_error`` / ``alert_warning`` / ``alert_info`` record the alert through
the structured logger and notify the recipients configured for that level.
``AlertForwarder`` plugs the same channels into the logger so that every
error-level entry is mailed without an explicit alert call.
"""

import html
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Sequence

from portal.application.ports.outbound import IAlertNotifier, IEmailSender, ILogForwarder
from portal.application.services.structured_logger import StructuredLogger
from portal.domain.models.log_domain_model import LogEntry, LogLevel

logger = logging.getLogger(__name__)

SUBJECT_PREVIEW = 50

TITLES = {
    LogLevel.ERROR: "Error Alert",
    LogLevel.WARN: "Warning Alert",
    LogLevel.INFO: "Info Alert",
}

COLORS = {
    LogLevel.ERROR: "#d32f2f",
    LogLevel.WARN: "#f57c00",
    LogLevel.INFO: "#2196f3",
}


class AlertService:

    def __init__(
            self,
            email_sender: Optional[IEmailSender] = None,
            notifier: Optional[IAlertNotifier] = None,
            recipients: Optional[Mapping[LogLevel, Sequence[str]]] = None,
            structured_logger: Optional[StructuredLogger] = None,
            service: str = "portal",
    ):
        """
        Args:
            email_sender: Mail channel, or None to skip email
            notifier: Chat webhook channel, or None to skip it
            recipients: Email recipients per alert level
            structured_logger: Logger recording each explicit alert
            service: Name used in alert subjects
        """
        self.email_sender = email_sender
        self.notifier = notifier
        self.recipients: Dict[LogLevel, Sequence[str]] = dict(recipients or {})
        self.structured_logger = structured_logger
        self.service = service

    def render(self, level: LogLevel, message: str, source: str, timestamp: str,
               metadata: Mapping[str, Any], stack: Optional[str] = None):
        """
        Build the subject, plain text and HTML bodies of an alert.

        Returns:
            (subject, text, html)
        """
        title = TITLES.get(level, "Alert")
        pretty = json.dumps(dict(metadata), indent=2, default=str)
        subject = f"[{self.service}] {title}: {message[:SUBJECT_PREVIEW]}"
        if len(message) > SUBJECT_PREVIEW:
            subject += "..."

        text = (
            f"{title}\n{'-' * len(title)}\n"
            f"Source: {source}\n"
            f"Message: {message}\n"
            f"Timestamp: {timestamp}\n"
            f"Stack Trace: {stack or 'No stack trace available'}\n"
            f"Metadata: {pretty}\n"
        )
        body = (
            f'<div style="font-family: Arial, sans-serif; max-width: 800px; margin: 0 auto; padding: 20px;">'
            f'<h2 style="color: {COLORS.get(level, "#333")};">{html.escape(title)}</h2>'
            f"<p><strong>Source:</strong> {html.escape(source)}</p>"
            f"<p><strong>Message:</strong> {html.escape(message)}</p>"
            f"<p><strong>Timestamp:</strong> {html.escape(timestamp)}</p>"
            f"<pre><code>{html.escape(stack or 'No stack trace available')}</code></pre>"
            f"<pre><code>{html.escape(pretty)}</code></pre>"
            f"</div>"
        )
        return subject, text, body

    async def dispatch(self, level: LogLevel, message: str, source: str, timestamp: str,
                       metadata: Optional[Mapping[str, Any]] = None, stack: Optional[str] = None) -> None:
        """
        Send an alert to every configured channel.

        A failing channel is logged and does not stop the others; this
        method never raises.

        Args:
            level: Alert level, selects recipients, title and color
            message: Alert message
            source: Component the alert is about
            timestamp: ISO timestamp shown in the alert
            metadata: Extra fields rendered as JSON
            stack: Traceback to include, if any
        """
        metadata = metadata or {}
        subject, text, body = self.render(level, message, source, timestamp, metadata, stack)

        recipients = self.recipients.get(level) or ()
        if self.email_sender is not None and recipients:
            try:
                await self.email_sender.send(recipients, subject, text, body)
            except Exception as e:
                logger.error(f"Failed to send {level.value} alert email: {e}")

        if self.notifier is not None:
            try:
                await self.notifier.notify(f"*{subject}*\n{message}\nSource: {source}")
            except Exception as e:
                logger.error(f"Failed to post {level.value} alert to webhook: {e}")

    async def alert(self, level: LogLevel, message: str, source: str,
                    metadata: Optional[Mapping[str, Any]] = None) -> None:
        """
        Record an alert through the structured logger, then dispatch it.

        The log entry carries ``alert: True`` so AlertForwarder does not
        send it a second time.
        """
        meta = {**(metadata or {}), "source": source, "alert": True}
        timestamp = datetime.now(timezone.utc).isoformat()
        if self.structured_logger is not None:
            entry = await self.structured_logger.log(level, f"Alert: {message}", meta)
            timestamp = entry.timestamp.isoformat()
        await self.dispatch(level, message, source, timestamp, metadata)

    async def alert_error(self, message: str, source: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        await self.alert(LogLevel.ERROR, message, source, metadata)

    async def alert_warning(self, message: str, source: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        await self.alert(LogLevel.WARN, message, source, metadata)

    async def alert_info(self, message: str, source: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        await self.alert(LogLevel.INFO, message, source, metadata)


class AlertForwarder(ILogForwarder):
    """Sends error-level log entries through the alert channels."""

    min_level = LogLevel.ERROR

    def __init__(self, alerts: AlertService):
        self.alerts = alerts

    def accepts(self, entry: LogEntry) -> bool:
        # explicit alerts have already been dispatched by AlertService.alert
        return entry.level is LogLevel.ERROR and not entry.metadata.get("alert")

    async def forward(self, entry: LogEntry) -> None:
        source = str(entry.metadata.get("source") or entry.metadata.get("path") or "logger")
        await self.alerts.dispatch(
            entry.level, entry.message, source, entry.timestamp.isoformat(), entry.metadata, entry.stack
        )
