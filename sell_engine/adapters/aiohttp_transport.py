"""
Transport Adapter - aiohttp.

============================================================
PURPOSE
============================================================
Production transport on a shared aiohttp ClientSession.

ERROR MAPPING:
- aiohttp.ClientError      -> TransportError("Network error: ...")
- asyncio.TimeoutError     -> TransportError("Request timeout")
- HTTP status outside 2xx  -> TransportError("HTTP <status> <reason>")

============================================================
"""

import asyncio
import logging
from typing import Dict, Optional

import aiohttp
from yarl import URL

from ..config import TimeoutConfig
from ..errors import TransportError
from .base import Transport
from .logging_utils import mask_url


logger = logging.getLogger(__name__)


class AiohttpTransport(Transport):
    """
    HTTP GET over aiohttp.

    The session is created lazily on first use when connect() has not
    been called.
    """

    def __init__(self, timeout_config: Optional[TimeoutConfig] = None):
        self._timeout_config = timeout_config or TimeoutConfig()
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def transport_id(self) -> str:
        return "aiohttp"

    @property
    def is_connected(self) -> bool:
        return self._session is not None and not self._session.closed

    # --------------------------------------------------------
    # CONNECTION
    # --------------------------------------------------------

    async def connect(self) -> None:
        if self._session is not None:
            await self.close()

        timeout = aiohttp.ClientTimeout(
            connect=self._timeout_config.connection_timeout_seconds,
            total=self._timeout_config.read_timeout_seconds,
        )
        self._session = aiohttp.ClientSession(timeout=timeout)
        logger.debug("HTTP session opened")

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None
            logger.debug("HTTP session closed")

    # --------------------------------------------------------
    # REQUESTS
    # --------------------------------------------------------

    async def get(self, url: str, headers: Dict[str, str]) -> bytes:
        if not self.is_connected:
            await self.connect()

        try:
            # URL is already encoded and signed; re-encoding would break the signature
            async with self._session.get(
                URL(url, encoded=True),
                headers=headers,
            ) as response:
                body = await response.read()
                if not 200 <= response.status < 300:
                    raise TransportError(
                        f"HTTP {response.status} {response.reason or ''}".strip(),
                        status=response.status,
                    )
                return body

        except aiohttp.ClientError as e:
            logger.debug(f"GET {mask_url(url)} failed: {e}")
            raise TransportError(f"Network error: {e}", cause=e)
        except asyncio.TimeoutError as e:
            logger.debug(f"GET {mask_url(url)} timed out")
            raise TransportError("Request timeout", cause=e)
