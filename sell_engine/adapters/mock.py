"""
Transport Adapter - Mock.

============================================================
PURPOSE
============================================================
Scripted transport for testing the scheduler and engine.

FEATURES:
- Responses routed by URL fragment (longest match wins)
- JSON payloads, raw bytes, exceptions or callables as responses
- Every request recorded with its headers
- Optional gate to hold responses in flight

============================================================
"""

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

from ..errors import TransportError
from .base import Transport
from .logging_utils import mask_url


logger = logging.getLogger(__name__)


@dataclass
class RecordedRequest:
    """Request seen by the mock transport."""

    url: str
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return urlsplit(self.url).path

    @property
    def params(self) -> Dict[str, str]:
        return {key: values[-1] for key, values in parse_qs(urlsplit(self.url).query).items()}


class MockTransport(Transport):
    """
    Mock transport with scripted responses.

    Example:
        transport = MockTransport()
        transport.set_json("/public/getmarkets", {"success": True, "result": []})
        transport.set_error("/market/selllimit", TransportError("boom"))
    """

    def __init__(self):
        self._routes: Dict[str, Any] = {}
        self._gate: Optional[asyncio.Event] = None
        self.requests: List[RecordedRequest] = []

    @property
    def transport_id(self) -> str:
        return "mock"

    # --------------------------------------------------------
    # SCRIPTING
    # --------------------------------------------------------

    def set_response(self, fragment: str, response: Any) -> None:
        """
        Route URLs containing fragment to a response.

        The response may be bytes, str, an Exception instance (raised),
        or a callable taking the URL (sync or async) returning bytes.
        """
        self._routes[fragment] = response

    def set_json(self, fragment: str, payload: Any) -> None:
        self._routes[fragment] = json.dumps(payload).encode()

    def set_error(self, fragment: str, error: Exception) -> None:
        self._routes[fragment] = error

    def clear(self, fragment: str) -> None:
        self._routes.pop(fragment, None)

    def hold(self) -> asyncio.Event:
        """Hold every response until the returned event is set."""
        self._gate = asyncio.Event()
        return self._gate

    def release(self) -> None:
        if self._gate is not None:
            self._gate.set()
            self._gate = None

    # --------------------------------------------------------
    # INSPECTION
    # --------------------------------------------------------

    def requests_for(self, fragment: str) -> List[RecordedRequest]:
        return [r for r in self.requests if fragment in r.url]

    def reset_requests(self) -> None:
        self.requests.clear()

    # --------------------------------------------------------
    # TRANSPORT
    # --------------------------------------------------------

    async def get(self, url: str, headers: Dict[str, str]) -> bytes:
        self.requests.append(RecordedRequest(url=url, headers=dict(headers)))
        logger.debug(f"Mock GET {mask_url(url)}")

        if self._gate is not None:
            await self._gate.wait()

        matches = [fragment for fragment in self._routes if fragment in url]
        if not matches:
            raise TransportError(f"No mock route for {mask_url(url)}", status=404)

        response = self._routes[max(matches, key=len)]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            response = response(url)
            if inspect.isawaitable(response):
                response = await response
        if isinstance(response, str):
            response = response.encode()
        return response
