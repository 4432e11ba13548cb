"""
Sell Engine - Display Sink.

============================================================
PURPOSE
============================================================
One-way channel from the trading engine to whatever presents it.

- log(line): timestamped activity lines, newest last
- update(field, value): current-value snapshots (market, balances,
  tracked order rate/size, remaining budget)

ActivityLog is the in-memory implementation: a capped ring buffer of
log lines plus the latest value of every field.

============================================================
"""

from abc import ABC, abstractmethod
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from core.clock import ClockProtocol, SystemClock


DEFAULT_CAPACITY = 3000
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class DisplayField(Enum):
    """Value snapshots pushed to the display."""

    MARKET = "market"
    MARKETS = "markets"
    MARKET_BALANCE = "market_balance"
    BTC_BALANCE = "btc_balance"
    ORDER_RATE = "order_rate"
    ORDER_SIZE = "order_size"
    SELL_LIMIT = "sell_limit"
    RUNNING = "running"


class DisplaySink(ABC):
    """Receiver of engine log lines and value snapshots."""

    @abstractmethod
    def log(self, text: str) -> None:
        pass

    @abstractmethod
    def update(self, field: DisplayField, value: Any) -> None:
        pass


class ActivityLog(DisplaySink):
    """
    In-memory display sink.

    Lines are stored as "<local timestamp>: <text>"; once capacity is
    reached the oldest line is dropped.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        clock: Optional[ClockProtocol] = None,
    ):
        self._clock = clock or SystemClock()
        self._lines: Deque[str] = deque(maxlen=capacity)
        self._values: Dict[DisplayField, Any] = {}
        self._subscribers: List[Callable[[str], None]] = []

    @property
    def capacity(self) -> int:
        return self._lines.maxlen

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    @property
    def values(self) -> Dict[DisplayField, Any]:
        return dict(self._values)

    def value(self, field: DisplayField, default: Any = None) -> Any:
        return self._values.get(field, default)

    def subscribe(self, callback: Callable[[str], None]) -> None:
        """Receive every formatted line as it is appended."""
        self._subscribers.append(callback)

    def log(self, text: str) -> None:
        line = f"{self._clock.local_now().strftime(TIMESTAMP_FORMAT)}: {text}"
        self._lines.append(line)
        for callback in self._subscribers:
            callback(line)

    def update(self, field: DisplayField, value: Any) -> None:
        self._values[field] = value

    def clear(self) -> None:
        self._lines.clear()
        self._values.clear()

    def __len__(self) -> int:
        return len(self._lines)
