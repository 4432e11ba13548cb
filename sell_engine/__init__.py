"""
Sell Engine Package.

============================================================
PURPOSE
============================================================
Market-making core for one exchange pair: polls market data and
account state, keeps one resting limit-sell order priced just below
the best competing ask, and stops once the sell budget is spent.

CRITICAL PRINCIPLE:
    "The exchange is the source of truth."
    "At most one state-changing request is in flight."

============================================================
MODULES
============================================================
- amount: Fixed-point currency amounts
- types: Markets, order book, orders, balances
- errors: Error taxonomy and exchange error registry
- config: Dataclass configuration
- codec: Endpoint table, reply decoding, request signing
- adapters: HTTP transports (aiohttp, mock)
- scheduler: Polling loop and endpoint registry
- engine: Trading state machine
- activity_log: Display sink and log ring buffer
- bot: Options and lifecycle facade

============================================================
"""

from .amount import Amount, parse_amount, multiply, divide
from .types import (
    EndpointKind,
    AutoUpdatePolicy,
    OrderType,
    Market,
    OrderBookLevel,
    OpenOrder,
    Order,
    PlaceOrderResult,
    CancelOrderResult,
    Balance,
)
from .errors import (
    SellEngineError,
    TransportError,
    DecodeError,
    MalformedEnvelope,
    OperationFailed,
    AmountError,
    InvalidNumericFormat,
    DivisionByZero,
    SigningUnavailable,
    TradingStateError,
    ErrorCategory,
    ErrorCodeInfo,
    EXCHANGE_ERRORS,
    get_error_info,
    stops_trading,
)
from .config import (
    ExchangeConfig,
    ApiCredentials,
    TimeoutConfig,
    SchedulerConfig,
    TradingConfig,
    SellBotConfig,
)
from .codec import (
    EndpointCodec,
    ExchangeCodec,
    RequestSigner,
    decode_envelope,
)
from .scheduler import (
    EndpointRegistration,
    EndpointUpdated,
    EndpointFailed,
    BatchComplete,
    PollingScheduler,
)
from .engine import TradingState, TradingEngine
from .activity_log import DisplayField, DisplaySink, ActivityLog
from .bot import BotOptions, SellBot

__all__ = [
    # Amount
    "Amount",
    "parse_amount",
    "multiply",
    "divide",
    # Types
    "EndpointKind",
    "AutoUpdatePolicy",
    "OrderType",
    "Market",
    "OrderBookLevel",
    "OpenOrder",
    "Order",
    "PlaceOrderResult",
    "CancelOrderResult",
    "Balance",
    # Errors
    "SellEngineError",
    "TransportError",
    "DecodeError",
    "MalformedEnvelope",
    "OperationFailed",
    "AmountError",
    "InvalidNumericFormat",
    "DivisionByZero",
    "SigningUnavailable",
    "TradingStateError",
    "ErrorCategory",
    "ErrorCodeInfo",
    "EXCHANGE_ERRORS",
    "get_error_info",
    "stops_trading",
    # Config
    "ExchangeConfig",
    "ApiCredentials",
    "TimeoutConfig",
    "SchedulerConfig",
    "TradingConfig",
    "SellBotConfig",
    # Codec
    "EndpointCodec",
    "ExchangeCodec",
    "RequestSigner",
    "decode_envelope",
    # Scheduler
    "EndpointRegistration",
    "EndpointUpdated",
    "EndpointFailed",
    "BatchComplete",
    "PollingScheduler",
    # Engine
    "TradingState",
    "TradingEngine",
    # Display
    "DisplayField",
    "DisplaySink",
    "ActivityLog",
    # Bot
    "BotOptions",
    "SellBot",
]
