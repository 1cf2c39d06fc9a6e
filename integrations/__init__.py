"""
External Integrations for Sentinel

Concrete implementations of the collaborator interfaces the controller
core is built against.

Key Integrations:
- HttpClient: shared aiohttp session
- ProcessRunner: asyncio subprocess execution (archive creation/extraction)
- Deployment providers: Vercel, DigitalOcean App Platform, generic deploy hooks
- CloudflareDnsProvider: CNAME upserts
- Config stores: .env and compose-file key/value upserts
- Notifiers: Telegram chat bot and signed generic webhooks
"""

from .interfaces import (
    ConfigPublishError, HttpResponse, ProcessResult,
    IHttpClient, IProcessRunner, IDeploymentProvider, IDnsProvider, IConfigStore, INotifier
)

__all__ = [
    'ConfigPublishError',
    'HttpResponse',
    'ProcessResult',
    'IHttpClient',
    'IProcessRunner',
    'IDeploymentProvider',
    'IDnsProvider',
    'IConfigStore',
    'INotifier'
]
