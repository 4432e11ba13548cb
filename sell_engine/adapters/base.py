"""
Transport Adapter - Base.

============================================================
PURPOSE
============================================================
Abstract HTTP transport used by the polling scheduler.

DESIGN PRINCIPLES:
- One GET per call, no retries (the next polling cycle is the retry)
- Timeouts belong to the transport, not the engine
- Every failure surfaces as TransportError
- Fully testable with the mock transport

============================================================
"""

from abc import ABC, abstractmethod
from typing import Dict


class Transport(ABC):
    """
    Abstract HTTP transport.

    Implementations must raise TransportError for every network or
    HTTP-level failure so the scheduler can turn it into an error event.
    """

    @property
    @abstractmethod
    def transport_id(self) -> str:
        """Transport identifier for logs."""
        pass

    async def connect(self) -> None:
        """Acquire resources (sessions, pools)."""
        pass

    async def close(self) -> None:
        """Release resources."""
        pass

    @abstractmethod
    async def get(self, url: str, headers: Dict[str, str]) -> bytes:
        """
        Issue an HTTP GET.

        Args:
            url: Final URL, already signed when required
            headers: Request headers

        Returns:
            Raw response body

        Raises:
            TransportError: Network failure, timeout or non-2xx status
        """
        pass

    async def __aenter__(self) -> "Transport":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
