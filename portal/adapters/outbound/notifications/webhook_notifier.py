# portal/adapters/outbound/notifications/webhook_notifier.py

import httpx

from portal.application.ports.outbound import IAlertNotifier
from portal.domain.exceptions import UpstreamUnavailableException


class WebhookAlertNotifier(IAlertNotifier):
    """Posts ``{"text": ...}`` to a Slack incoming webhook (or compatible)."""

    def __init__(self, url: str, client: httpx.AsyncClient):
        self.url = url
        self.client = client

    async def notify(self, text: str) -> None:
        """
        Raises:
            UpstreamUnavailableException: If the webhook cannot be reached or answers with an error
        """
        try:
            response = await self.client.post(self.url, json={"text": text})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamUnavailableException("Alert webhook failed", original_error=e) from e
