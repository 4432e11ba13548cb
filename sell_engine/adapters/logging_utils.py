"""
Transport Adapter - Secure Logging Utilities.

============================================================
SECURITY REQUIREMENTS
============================================================
1. NEVER log raw API keys or secrets
2. Mask the signature header
3. Mask credential query parameters in URLs

============================================================
"""

import re
from typing import Dict


# Header names that should be masked
SENSITIVE_HEADERS = {
    "apisign",
    "authorization",
}

# Query parameter names that should be masked
SENSITIVE_PARAMS = {
    "apikey",
    "api_key",
    "secret",
    "signature",
}

_PARAM_PATTERNS = [
    re.compile(f"([?&]{param}=)([^&]+)", re.IGNORECASE)
    for param in sorted(SENSITIVE_PARAMS)
]


def mask_value(value: str, show_chars: int = 4) -> str:
    """
    Mask a sensitive value, showing only first few chars.

    Args:
        value: Value to mask
        show_chars: Number of chars to show at start

    Returns:
        Masked value
    """
    if not value or len(value) <= show_chars:
        return "***"
    return f"{value[:show_chars]}...***"


def mask_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Copy of headers with sensitive values masked."""
    if not headers:
        return {}
    return {
        key: mask_value(str(value)) if key.lower() in SENSITIVE_HEADERS else value
        for key, value in headers.items()
    }


def mask_url(url: str) -> str:
    """
    Mask credential query parameters in a URL.

    Example:
        >>> mask_url("https://x/api?market=BTC-LTC&apikey=abcdef123&nonce=1f")
        'https://x/api?market=BTC-LTC&apikey=***&nonce=1f'
    """
    if not url:
        return url
    for pattern in _PARAM_PATTERNS:
        url = pattern.sub(lambda m: f"{m.group(1)}***", url)
    return url


__all__ = [
    "mask_value",
    "mask_headers",
    "mask_url",
]
