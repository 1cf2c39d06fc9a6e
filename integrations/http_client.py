"""
HTTP Client for Sentinel
"""

import logging
import asyncio
from typing import Any, Mapping, Optional

import aiohttp

from .interfaces import IHttpClient, HttpResponse

logger = logging.getLogger('sentinel.integrations.http_client')


class HttpClient(IHttpClient):
    """
    Shared aiohttp session used by health checks, providers and notifiers.

    The session is created lazily on first request so the client can be
    constructed outside a running event loop.
    """

    def __init__(self, default_timeout: float = 30.0, user_agent: str = "Sentinel/1.0"):
        self.default_timeout = default_timeout
        self.user_agent = user_agent
        self.session: Optional[aiohttp.ClientSession] = None
        self._session_lock = asyncio.Lock()

    async def _get_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self.session is None or self.session.closed:
                timeout = aiohttp.ClientTimeout(total=self.default_timeout)
                self.session = aiohttp.ClientSession(
                    timeout=timeout,
                    headers={"User-Agent": self.user_agent}
                )
            return self.session

    async def request(self, url: str, method: str = "GET", timeout: float = 10.0,
                      json: Optional[Any] = None, data: Optional[bytes] = None,
                      headers: Optional[Mapping[str, str]] = None) -> HttpResponse:
        """
        Issue a request and read the whole body.

        Connection errors and timeouts propagate as ``aiohttp.ClientError``
        and ``asyncio.TimeoutError``; callers decide how to classify them.
        """
        session = await self._get_session()
        async with session.request(
            method,
            url,
            json=json,
            data=data,
            headers=dict(headers) if headers else None,
            timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            body = await response.text()
            logger.debug(f"{method} {url} -> {response.status}")
            return HttpResponse(status=response.status, body=body)

    async def close(self) -> None:
        if self.session and not self.session.closed:
            await self.session.close()
            logger.debug("HTTP session closed")
        self.session = None
