"""
Sell Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Exception classes raised inside the sell engine and the registry of
business error codes the exchange reports in its reply envelope.

ERROR CATEGORIES:
1. Transport Errors - Network/HTTP failures
2. Decode Errors - Malformed envelope or exchange-reported failure
3. Amount Errors - Numeric parsing and arithmetic
4. Signing Errors - Private call without credentials
5. State Errors - User intent not allowed in current state

PROPAGATION:
- The polling scheduler converts every SellEngineError raised while
  building, sending or decoding a request into an error event
- Exchange messages are semantic: "INSUFFICIENT_FUNDS" must reach the
  trading engine verbatim

============================================================
"""

from enum import Enum
from typing import Dict, Optional, Set
from dataclasses import dataclass

from core.exceptions import (
    TradingException,
    Severity,
    ErrorClassification,
)


# ============================================================
# EXCEPTIONS
# ============================================================

class SellEngineError(TradingException):
    """Base class for sell engine errors."""
    pass


class TransportError(SellEngineError):
    """Network or HTTP failure; carries the transport's message."""

    default_classification = ErrorClassification.TRANSIENT

    def __init__(self, message: str, status: Optional[int] = None, **kwargs):
        context = kwargs.pop("context", {})
        if status is not None:
            context["status"] = status
        super().__init__(message, context=context, **kwargs)
        self.status = status


class DecodeError(SellEngineError):
    """Reply could not be turned into a typed result."""
    pass


class MalformedEnvelope(DecodeError):
    """Reply is not a {success, result|message} object, or a field is ill-typed."""
    pass


class OperationFailed(DecodeError):
    """
    Exchange answered success=false.

    The message is the exchange-supplied text (e.g. INSUFFICIENT_FUNDS).
    """

    GENERIC_MESSAGE = '"success"==false'

    def __init__(self, message: Optional[str] = None, **kwargs):
        super().__init__(message or self.GENERIC_MESSAGE, **kwargs)

    @property
    def code(self) -> str:
        return self.message


class AmountError(SellEngineError):
    """Fixed-point amount error."""

    default_classification = ErrorClassification.NON_RECOVERABLE


class InvalidNumericFormat(AmountError, ValueError):
    """Value contains a character other than digits and one separator."""
    pass


class DivisionByZero(AmountError, ZeroDivisionError):
    """Amount divided by zero."""
    pass


class SigningUnavailable(SellEngineError):
    """Private endpoint requested while no API credentials are configured."""

    default_severity = Severity.HIGH
    default_classification = ErrorClassification.NON_RECOVERABLE


class TradingStateError(SellEngineError):
    """User intent rejected by the trading state machine."""

    def __init__(self, message: str, state: Optional[str] = None, **kwargs):
        context = kwargs.pop("context", {})
        if state:
            context["state"] = state
        super().__init__(message, context=context, **kwargs)


# ============================================================
# EXCHANGE ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Exchange business error category."""

    FUNDS = "FUNDS"
    """Account cannot cover the order."""

    AUTHENTICATION = "AUTHENTICATION"
    """API key or signature rejected."""

    ORDER = "ORDER"
    """Order parameters or order state rejected."""

    MARKET = "MARKET"
    """Market unknown or not tradeable."""

    UNKNOWN = "UNKNOWN"
    """Message not in the registry."""


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass
class ErrorCodeInfo:
    """Information about an exchange error message."""

    code: str
    """Exact message text returned by the exchange."""

    category: ErrorCategory
    """Error category."""

    stops_trading: bool
    """Whether the trading engine must stop on this error."""

    description: str
    """Human-readable description."""


EXCHANGE_ERRORS: Dict[str, ErrorCodeInfo] = {
    "INSUFFICIENT_FUNDS": ErrorCodeInfo(
        code="INSUFFICIENT_FUNDS",
        category=ErrorCategory.FUNDS,
        stops_trading=True,
        description="Balance too low to place the order",
    ),
    "APIKEY_INVALID": ErrorCodeInfo(
        code="APIKEY_INVALID",
        category=ErrorCategory.AUTHENTICATION,
        stops_trading=True,
        description="API key rejected by the exchange",
    ),
    "INVALID_SIGNATURE": ErrorCodeInfo(
        code="INVALID_SIGNATURE",
        category=ErrorCategory.AUTHENTICATION,
        stops_trading=False,
        description="Request signature did not verify",
    ),
    "NONCE_NOT_PROVIDED": ErrorCodeInfo(
        code="NONCE_NOT_PROVIDED",
        category=ErrorCategory.AUTHENTICATION,
        stops_trading=False,
        description="Signed request without nonce",
    ),
    "MIN_TRADE_REQUIREMENT_NOT_MET": ErrorCodeInfo(
        code="MIN_TRADE_REQUIREMENT_NOT_MET",
        category=ErrorCategory.ORDER,
        stops_trading=False,
        description="Order value below the exchange minimum",
    ),
    "RATE_NOT_PROVIDED": ErrorCodeInfo(
        code="RATE_NOT_PROVIDED",
        category=ErrorCategory.ORDER,
        stops_trading=False,
        description="Limit order without rate",
    ),
    "QUANTITY_NOT_PROVIDED": ErrorCodeInfo(
        code="QUANTITY_NOT_PROVIDED",
        category=ErrorCategory.ORDER,
        stops_trading=False,
        description="Order without quantity",
    ),
    "ORDER_NOT_OPEN": ErrorCodeInfo(
        code="ORDER_NOT_OPEN",
        category=ErrorCategory.ORDER,
        stops_trading=False,
        description="Cancel requested for an order that is already closed",
    ),
    "UUID_INVALID": ErrorCodeInfo(
        code="UUID_INVALID",
        category=ErrorCategory.ORDER,
        stops_trading=False,
        description="Order id unknown to the exchange",
    ),
    "INVALID_MARKET": ErrorCodeInfo(
        code="INVALID_MARKET",
        category=ErrorCategory.MARKET,
        stops_trading=False,
        description="Market code is not listed",
    ),
}


def get_error_info(code: str) -> ErrorCodeInfo:
    """
    Get registry info for an exchange message.

    Args:
        code: Message text from an error event

    Returns:
        ErrorCodeInfo, or an UNKNOWN entry that does not stop trading
    """
    return EXCHANGE_ERRORS.get(code, ErrorCodeInfo(
        code=code,
        category=ErrorCategory.UNKNOWN,
        stops_trading=False,
        description=f"Unknown error: {code}",
    ))


def stops_trading(code: str) -> bool:
    """Check if an exchange message forces the engine to stop trading."""
    return get_error_info(code).stops_trading


TRADING_STOP_CODES: Set[str] = {
    code for code, info in EXCHANGE_ERRORS.items() if info.stops_trading
}
