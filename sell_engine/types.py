"""
Sell Engine - Types.

============================================================
PURPOSE
============================================================
Data model shared by the codec, the polling scheduler and the
trading engine.

OWNERSHIP:
    The exchange is the source of truth for orders and balances.
    Every value here is a decoded snapshot, replaced wholesale on
    each poll and never mutated in place.

============================================================
"""

from datetime import datetime
from typing import Optional
from dataclasses import dataclass
from enum import Enum

from .amount import Amount


# ============================================================
# POLLING ENUMS
# ============================================================

class EndpointKind(Enum):
    """Exchange endpoints known to the scheduler."""

    MARKETS = "getMarkets"
    ORDER_BOOK_SELL = "getOrderBookSell"
    OPEN_ORDERS = "getOpenOrders"
    PLACE_ORDER = "placeOrder"
    GET_ORDER = "getOrder"
    BALANCE = "getBalance"
    BTC_BALANCE = "getBtcBalance"
    CANCEL_ORDER = "cancelOrder"


class AutoUpdatePolicy(Enum):
    """When an endpoint is polled automatically."""

    NEVER = "never"
    """Only on explicit one-shot requests."""

    ALWAYS = "always"
    """Every cycle from startup."""

    MARKET_SELECTED = "market_selected"
    """Every cycle while a market is selected."""

    RUNNING = "running"
    """Every cycle while trading is running."""


# ============================================================
# ORDER TYPES
# ============================================================

class OrderType(Enum):
    """Order side as reported by the exchange."""

    UNKNOWN = "UNKNOWN"
    LIMIT_SELL = "LIMIT_SELL"
    LIMIT_BUY = "LIMIT_BUY"

    @classmethod
    def from_exchange(cls, value: Optional[str]) -> "OrderType":
        """Map an exchange string; anything unrecognised becomes UNKNOWN."""
        return _ORDER_TYPES.get(value or "", cls.UNKNOWN)


_ORDER_TYPES = {
    "LIMIT_SELL": OrderType.LIMIT_SELL,
    "LIMIT_BUY": OrderType.LIMIT_BUY,
}


# ============================================================
# MARKET DATA
# ============================================================

@dataclass(frozen=True)
class Market:
    """Listed market."""

    name: str
    """Market code, e.g. BTC-LTC."""

    created: Optional[datetime]
    """Listing time, local timezone."""

    url: str
    """Exchange page for the market."""


@dataclass(frozen=True)
class OrderBookLevel:
    """One level of the public order book."""

    quantity: Amount
    rate: Amount


# ============================================================
# ORDERS
# ============================================================

@dataclass(frozen=True)
class OpenOrder:
    """Entry of the open-orders list."""

    uuid: str = ""
    order_uuid: str = ""
    exchange: str = ""
    order_type: OrderType = OrderType.UNKNOWN
    quantity: Amount = Amount.ZERO
    quantity_remaining: Amount = Amount.ZERO
    limit: Amount = Amount.ZERO
    commission_paid: Amount = Amount.ZERO
    price: Amount = Amount.ZERO
    price_per_unit: Amount = Amount.ZERO
    opened: Optional[datetime] = None
    closed: Optional[datetime] = None
    cancel_initiated: bool = False
    immediate_or_cancel: bool = False
    is_conditional: bool = False


@dataclass(frozen=True)
class Order:
    """Full order detail from get-order."""

    order_uuid: str = ""
    exchange: str = ""
    order_type: OrderType = OrderType.UNKNOWN
    quantity: Amount = Amount.ZERO
    quantity_remaining: Amount = Amount.ZERO
    limit: Amount = Amount.ZERO
    reserved: Amount = Amount.ZERO
    reserve_remaining: Amount = Amount.ZERO
    commission_paid: Amount = Amount.ZERO
    price: Amount = Amount.ZERO
    price_per_unit: Amount = Amount.ZERO
    opened: Optional[datetime] = None
    closed: Optional[datetime] = None
    is_open: bool = False
    cancel_initiated: bool = False
    immediate_or_cancel: bool = False
    is_conditional: bool = False
    condition: str = ""

    @property
    def filled(self) -> Amount:
        """Quantity already executed."""
        return self.quantity - self.quantity_remaining


@dataclass(frozen=True)
class PlaceOrderResult:
    """Reply of a limit-sell placement."""

    uuid: str = ""


@dataclass(frozen=True)
class CancelOrderResult:
    """Reply of a cancel; success is carried by the envelope alone."""
    pass


# ============================================================
# ACCOUNT
# ============================================================

@dataclass(frozen=True)
class Balance:
    """Balance of one currency."""

    currency: str = ""
    balance: Amount = Amount.ZERO
    available: Amount = Amount.ZERO
    pending: Amount = Amount.ZERO
    crypto_address: str = ""
