"""
Core Module Package.

This package contains the infrastructure shared by the sell bot.

Components:
- clock: Injectable time source used by the polling scheduler
- exceptions: Root exception hierarchy
"""

from .clock import ClockProtocol, SystemClock, MockClock
from .exceptions import (
    Severity,
    ErrorClassification,
    TradingException,
    ConfigurationError,
)

__all__ = [
    "ClockProtocol",
    "SystemClock",
    "MockClock",
    "Severity",
    "ErrorClassification",
    "TradingException",
    "ConfigurationError",
]
