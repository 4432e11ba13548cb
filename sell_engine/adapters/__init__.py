"""
Transport Adapters Package.

Components:
- base: Transport interface
- aiohttp_transport: Production HTTP transport
- mock: Scripted transport for tests
- logging_utils: Credential masking for log lines
"""

from .base import Transport
from .aiohttp_transport import AiohttpTransport
from .mock import MockTransport, RecordedRequest
from .logging_utils import mask_value, mask_headers, mask_url

__all__ = [
    "Transport",
    "AiohttpTransport",
    "MockTransport",
    "RecordedRequest",
    "mask_value",
    "mask_headers",
    "mask_url",
]
