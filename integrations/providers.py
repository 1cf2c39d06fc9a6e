"""
Deployment Providers for Sentinel
"""

import json
import time
import logging
import asyncio
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from core.config_manager import ProviderConfig
from recovery.interfaces import Backup, Deployment, DeploymentStatus
from .interfaces import IDeploymentProvider, IHttpClient

logger = logging.getLogger('sentinel.integrations.providers')


class ProviderError(Exception):
    """Raised when a provider API rejects a request"""
    pass


class HttpDeploymentProvider(IDeploymentProvider):
    """Shared plumbing for providers driven over an HTTP API"""

    def __init__(self, config: ProviderConfig, http_client: IHttpClient):
        self.config = config
        self.http_client = http_client
        self.name = config.name or config.type

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    async def _post_json(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        response = await self.http_client.request(
            url, method="POST", timeout=self.config.timeout, json=payload, headers=self._headers()
        )
        if not response.ok:
            raise ProviderError(f"{self.name}: {url} returned {response.status}: {response.body[:200]}")
        try:
            return json.loads(response.body) if response.body else {}
        except json.JSONDecodeError:
            return {}

    async def upload_backup(self, deployment: Deployment, backup: Backup) -> None:
        """
        Push the archive to the provider's restore endpoint.

        Providers without a ``restore_url`` keep their data with the
        deployment itself, so there is nothing to upload.
        """
        if not self.config.restore_url:
            logger.info(f"{self.name}: no restore endpoint configured, skipping data upload")
            return

        archive = await asyncio.to_thread(backup.path.read_bytes)
        headers = self._headers()
        headers["Content-Type"] = "application/gzip"
        headers["X-Backup-Name"] = backup.name
        if deployment.deployment_id:
            headers["X-Deployment-Id"] = deployment.deployment_id

        response = await self.http_client.request(
            self.config.restore_url, method="POST", timeout=self.config.timeout,
            data=archive, headers=headers
        )
        if not response.ok:
            raise ProviderError(f"{self.name}: backup upload returned {response.status}")

        logger.info(f"{self.name}: uploaded backup {backup.name} ({len(archive)} bytes)")


class VercelProvider(HttpDeploymentProvider):
    """Creates one Vercel project per web-facing role and attaches its domain"""

    API_BASE = "https://api.vercel.com"
    DNS_TARGET = "cname.vercel-dns.com"
    PROJECT_ROLES = ('main', 'bot', 'api')

    def _url(self, path: str) -> str:
        url = f"{self.API_BASE}{path}"
        if self.config.team_id:
            url += f"?teamId={self.config.team_id}"
        return url

    async def create_deployment(self, domains: Dict[str, str]) -> Deployment:
        if not self.config.api_key:
            raise ProviderError("vercel: api_key is not configured")

        stamp = int(time.time())
        project_ids = []
        for role in self.PROJECT_ROLES:
            if role not in domains:
                continue
            project = await self._post_json(self._url("/v10/projects"), {
                'name': f"{self.config.project or 'vote'}-{role}-{stamp}",
            })
            project_id = project.get('id') or project.get('name')
            await self._post_json(self._url(f"/v10/projects/{project_id}/domains"), {'name': domains[role]})
            project_ids.append(str(project_id))

        return Deployment(
            provider=self.name,
            domains=dict(domains),
            status=DeploymentStatus.DEPLOYED,
            endpoint=self.config.endpoint or self.DNS_TARGET,
            deployment_id=",".join(project_ids),
        )


class DigitalOceanProvider(HttpDeploymentProvider):
    """Creates an App Platform app serving every generated domain"""

    API_URL = "https://api.digitalocean.com/v2/apps"

    async def create_deployment(self, domains: Dict[str, str]) -> Deployment:
        if not self.config.api_key:
            raise ProviderError("digitalocean: api_key is not configured")

        spec = {
            'name': f"{self.config.project or 'vote'}-{int(time.time())}",
            'region': self.config.region,
            'domains': [
                {'domain': domain, 'type': 'PRIMARY' if role == 'main' else 'ALIAS'}
                for role, domain in domains.items()
            ],
        }
        result = await self._post_json(self.API_URL, {'spec': spec})
        app = result.get('app', {})

        return Deployment(
            provider=self.name,
            domains=dict(domains),
            status=DeploymentStatus.DEPLOYED,
            endpoint=self.config.endpoint or _hostname(app.get('default_ingress')),
            deployment_id=app.get('id'),
        )


class DeployHookProvider(HttpDeploymentProvider):
    """Generic host triggered by POSTing the domain map to a deploy hook"""

    async def create_deployment(self, domains: Dict[str, str]) -> Deployment:
        if not self.config.url:
            raise ProviderError(f"{self.name}: deploy hook url is not configured")

        result = await self._post_json(self.config.url, {'domains': domains})

        return Deployment(
            provider=self.name,
            domains=dict(domains),
            status=DeploymentStatus.DEPLOYED,
            endpoint=self.config.endpoint or result.get('endpoint'),
            deployment_id=result.get('id'),
        )


def _hostname(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return urlparse(url).hostname or url


PROVIDER_TYPES = {
    'vercel': VercelProvider,
    'digitalocean': DigitalOceanProvider,
    'deploy_hook': DeployHookProvider,
}


def build_providers(configs: List[ProviderConfig], http_client: IHttpClient) -> List[IDeploymentProvider]:
    """Instantiate configured providers, skipping unknown types"""
    providers: List[IDeploymentProvider] = []
    for config in configs:
        provider_cls = PROVIDER_TYPES.get(config.type)
        if provider_cls is None:
            logger.warning(f"Unknown deployment provider type '{config.type}', skipping")
            continue
        providers.append(provider_cls(config, http_client))
    return providers
