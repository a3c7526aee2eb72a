# portal/adapters/outbound/notifications/email_sender.py

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Optional, Sequence

from portal.application.ports.outbound import IEmailSender

logger = logging.getLogger(__name__)


class SmtpEmailSender(IEmailSender):
    """
    Sends mail over SMTP with retry and linear backoff.

    smtplib is blocking, so each attempt runs in a worker thread.
    """

    def __init__(
            self,
            host: str,
            port: int = 587,
            username: Optional[str] = None,
            password: Optional[str] = None,
            use_tls: bool = True,
            sender: str = "alerts@localhost",
            retry_attempts: int = 3,
            retry_delay: float = 1.0,
            timeout: float = 10.0,
    ):
        """
        Args:
            host: SMTP server host
            port: SMTP server port
            username: Login user, skipped when empty
            password: Login password, skipped when empty
            use_tls: Upgrade the connection with STARTTLS
            sender: From address
            retry_attempts: Delivery attempts per message
            retry_delay: Base delay in seconds, multiplied by the attempt number
            timeout: Socket timeout per attempt
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.sender = sender
        self.retry_attempts = max(1, retry_attempts)
        self.retry_delay = retry_delay
        self.timeout = timeout

    def build_message(self, recipients: Sequence[str], subject: str, text: str,
                      html: Optional[str] = None) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = ", ".join(recipients)
        msg["Subject"] = subject
        msg["X-Priority"] = "1"
        msg["Importance"] = "high"
        msg.set_content(text)
        if html:
            msg.add_alternative(html, subtype="html")
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username and self.password:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

    async def send(self, recipients: Sequence[str], subject: str, text: str, html: Optional[str] = None) -> bool:
        """
        Deliver one message to every recipient.

        Args:
            recipients: To addresses
            subject: Subject line
            text: Plain text body
            html: Optional HTML alternative

        Returns:
            True if the server accepted the message, False after the last failed attempt
        """
        if not recipients:
            return False

        msg = self.build_message(recipients, subject, text, html)
        for attempt in range(1, self.retry_attempts + 1):
            try:
                await asyncio.to_thread(self._deliver, msg)
                logger.info(f"Email sent: subject={subject!r} to={list(recipients)} attempt={attempt}")
                return True
            except (smtplib.SMTPException, OSError) as e:
                is_last_attempt = attempt >= self.retry_attempts
                logger.error(
                    f"Failed to send email: subject={subject!r} attempt={attempt} "
                    f"last_attempt={is_last_attempt} error={e}"
                )
                if is_last_attempt:
                    return False
                await asyncio.sleep(self.retry_delay * attempt)
        return False
