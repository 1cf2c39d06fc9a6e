"""
Notification Channels for Sentinel
"""

import json
import hmac
import hashlib
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.config_manager import AlertChannelConfig
from .interfaces import IHttpClient, INotifier

logger = logging.getLogger('sentinel.integrations.notifiers')

TELEGRAM_API_BASE = "https://api.telegram.org"


class NotificationError(Exception):
    """Raised when a channel rejects a message"""
    pass


class ChatBotNotifier(INotifier):
    """Sends alerts through the Telegram Bot API"""

    channel_type = "telegram"

    def __init__(self, http_client: IHttpClient, timeout: float = 10.0, api_base: str = TELEGRAM_API_BASE):
        self.http_client = http_client
        self.timeout = timeout
        self.api_base = api_base.rstrip('/')

    async def send(self, channel: AlertChannelConfig, message: str,
                   payload: Optional[Dict[str, Any]] = None) -> None:
        if not channel.bot_token or not channel.chat_id:
            raise NotificationError("telegram channel requires bot_token and chat_id")

        response = await self.http_client.request(
            f"{self.api_base}/bot{channel.bot_token}/sendMessage",
            method="POST",
            timeout=self.timeout,
            json={
                'chat_id': channel.chat_id,
                'text': message,
                'parse_mode': channel.parse_mode,
            }
        )
        if not response.ok:
            raise NotificationError(f"Telegram API returned {response.status}: {response.body[:200]}")


class WebhookNotifier(INotifier):
    """POSTs alerts as JSON, signed with HMAC-SHA256 when a secret is set"""

    channel_type = "webhook"

    def __init__(self, http_client: IHttpClient, timeout: float = 10.0):
        self.http_client = http_client
        self.timeout = timeout

    async def send(self, channel: AlertChannelConfig, message: str,
                   payload: Optional[Dict[str, Any]] = None) -> None:
        if not channel.url:
            raise NotificationError("webhook channel requires a url")

        body = {
            'message': message,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'type': 'security_alert',
            'severity': (payload or {}).get('severity'),
        }
        if payload:
            body['alert'] = payload

        body_json = json.dumps(body, default=str)
        headers = {"Content-Type": "application/json"}
        if channel.token:
            headers["Authorization"] = f"Bearer {channel.token}"
        if channel.secret:
            signature = hmac.new(channel.secret.encode(), body_json.encode(), hashlib.sha256).hexdigest()
            headers["X-Webhook-Signature"] = f"sha256={signature}"

        response = await self.http_client.request(
            channel.url,
            method="POST",
            timeout=self.timeout,
            data=body_json.encode(),
            headers=headers
        )
        if not response.ok:
            raise NotificationError(f"Webhook returned {response.status}: {response.body[:200]}")


def build_notifiers(http_client: IHttpClient) -> List[INotifier]:
    """Create one notifier per supported channel type"""
    return [ChatBotNotifier(http_client), WebhookNotifier(http_client)]
