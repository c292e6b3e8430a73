"""
HTTP client utilities for BosStorage SDK
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class HttpClient:
    """
    HTTP client wrapper with connection pooling.

    Sends exactly what it is given: the URL must already carry its encoded
    path and query string, and no request is retried here.
    """

    def __init__(
        self,
        timeout: float = 30,
        max_connections: int = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections),
            transport=transport,
        )

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> httpx.Response:
        logger.debug("%s %s", method, url)
        return await self._client.request(method, url, headers=headers, **kwargs)

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        **kwargs
    ) -> AsyncIterator[httpx.Response]:
        """Open a response whose body is read incrementally."""
        logger.debug("%s %s (streamed)", method, url)
        async with self._client.stream(method, url, headers=headers, **kwargs) as response:
            yield response

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()
