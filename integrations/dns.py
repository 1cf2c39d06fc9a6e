"""
DNS Provider for Sentinel
"""

import json
import logging
from typing import Optional

from core.config_manager import DnsConfig
from .interfaces import IDnsProvider, IHttpClient

logger = logging.getLogger('sentinel.integrations.dns')


class DnsUpdateError(Exception):
    pass


class CloudflareDnsProvider(IDnsProvider):
    """Upserts CNAME records in a Cloudflare zone"""

    API_BASE = "https://api.cloudflare.com/client/v4"

    def __init__(self, config: DnsConfig, http_client: IHttpClient, timeout: float = 15.0):
        self.config = config
        self.http_client = http_client
        self.timeout = timeout

    @property
    def _headers(self):
        return {
            "Authorization": f"Bearer {self.config.api_token}",
            "Content-Type": "application/json",
        }

    async def upsert_record(self, domain: str, target: str) -> None:
        records_url = f"{self.API_BASE}/zones/{self.config.zone_id}/dns_records"
        record = {
            'type': 'CNAME',
            'name': domain,
            'content': target,
            'ttl': self.config.ttl,
            'proxied': self.config.proxied,
        }

        existing_id = await self._find_record(records_url, domain)
        if existing_id:
            method, url = "PUT", f"{records_url}/{existing_id}"
        else:
            method, url = "POST", records_url

        response = await self.http_client.request(
            url, method=method, timeout=self.timeout, json=record, headers=self._headers
        )
        if not response.ok:
            raise DnsUpdateError(f"{method} {domain} returned {response.status}: {response.body[:200]}")

        logger.info(f"DNS record {domain} -> {target} ({'updated' if existing_id else 'created'})")

    async def _find_record(self, records_url: str, domain: str) -> Optional[str]:
        response = await self.http_client.request(
            f"{records_url}?type=CNAME&name={domain}", timeout=self.timeout, headers=self._headers
        )
        if not response.ok:
            raise DnsUpdateError(f"lookup of {domain} returned {response.status}")

        result = json.loads(response.body or "{}").get('result') or []
        return result[0]['id'] if result else None
