"""
Chat-bot Webhook Registration for Sentinel
"""

import logging

from .interfaces import IHttpClient
from .notifiers import TELEGRAM_API_BASE

logger = logging.getLogger('sentinel.integrations.webhooks')


class WebhookRegistrationError(Exception):
    pass


class WebhookRegistrar:
    """Points the Telegram bot's update webhook at a URL"""

    def __init__(self, http_client: IHttpClient, timeout: float = 10.0, api_base: str = TELEGRAM_API_BASE):
        self.http_client = http_client
        self.timeout = timeout
        self.api_base = api_base.rstrip('/')

    async def register(self, bot_token: str, url: str) -> None:
        if not bot_token:
            raise WebhookRegistrationError("bot token is empty")

        response = await self.http_client.request(
            f"{self.api_base}/bot{bot_token}/setWebhook",
            method="POST",
            timeout=self.timeout,
            json={'url': url}
        )
        if not response.ok:
            raise WebhookRegistrationError(f"setWebhook returned {response.status}: {response.body[:200]}")

        logger.info(f"Bot webhook registered at {url}")
