"""
Sell Engine - Trading Engine.

============================================================
PURPOSE
============================================================
Order-management state machine for one resting limit-sell order.

STATE MACHINE:

    IDLE ──── start() ────► RUNNING
     ▲                        │
     └──── stop() ◄───────────┤  user toggle, budget exhausted,
                              │  INSUFFICIENT_FUNDS / APIKEY_INVALID,
                              │  no usable ask

    While RUNNING at most one state-changing action (place, cancel,
    get-order) is in flight; action_pending names it.

PER BATCH (RUNNING, order book and open orders fresh):
1. No action pending: get-order the first LIMIT_SELL open order,
   else get-order the tracked order
2. Nothing tracked, nothing pending: place at competing ask - 1 tick

PER GET-ORDER REPLY:
- Account fills against the budget
- Drop the order once closed or cancel-initiated
- Cancel it when a competing ask is at or below its rate

INVARIANTS:
- Market cannot change while running
- The exchange is the source of truth for the tracked order

============================================================
"""

import logging
import random
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .activity_log import ActivityLog, DisplayField, DisplaySink
from .amount import Amount
from .config import TradingConfig
from .errors import TradingStateError, stops_trading
from .scheduler import (
    BatchComplete,
    EndpointFailed,
    EndpointUpdated,
    PollingScheduler,
    SchedulerEvent,
)
from .types import (
    Balance,
    EndpointKind,
    Order,
    OrderBookLevel,
    OrderType,
    PlaceOrderResult,
)


logger = logging.getLogger(__name__)

EMPTY_ERROR = "<empty error>"


# ============================================================
# STATE
# ============================================================

@dataclass
class TradingState:
    """Local view of the trading session."""

    market: str = ""
    """Selected market code without the quote prefix, e.g. LTC."""

    running: bool = False

    order_id: str = ""
    """Tracked order; empty when none."""

    order_rate: Amount = Amount.ZERO
    order_quantity: Amount = Amount.ZERO
    order_quantity_remaining: Amount = Amount.ZERO

    action_pending: Optional[EndpointKind] = None
    """State-changing request whose reply is awaited."""

    sell_limit: Amount = Amount.ZERO
    """Remaining cumulative proceeds budget."""

    @property
    def has_order(self) -> bool:
        return bool(self.order_id)

    @property
    def state_name(self) -> str:
        return "RUNNING" if self.running else "IDLE"


ReplyHandler = Callable[[Any, Optional[str]], None]


# ============================================================
# ENGINE
# ============================================================

class TradingEngine:
    """
    Consumes scheduler events and drives place/cancel/get-order requests.

    Example:
        engine = TradingEngine(scheduler, TradingConfig())
        engine.attach()
        engine.select_market("LTC")
        engine.start()
    """

    def __init__(
        self,
        scheduler: PollingScheduler,
        config: Optional[TradingConfig] = None,
        sink: Optional[DisplaySink] = None,
        rng: Optional[random.Random] = None,
        market_prefix: str = "BTC-",
    ):
        self._scheduler = scheduler
        self._config = config or TradingConfig()
        self._sink = sink or ActivityLog(capacity=self._config.log_capacity)
        self._rng = rng or random.Random()
        self._market_prefix = market_prefix

        self._state = TradingState(sell_limit=self._config.total_sell_limit)

        # endpoints without a handler are ignored
        self._handlers: Dict[EndpointKind, ReplyHandler] = {
            EndpointKind.PLACE_ORDER: self._on_place_order,
            EndpointKind.GET_ORDER: self._on_get_order,
            EndpointKind.CANCEL_ORDER: self._on_cancel_order,
            EndpointKind.BALANCE: self._on_balance,
            EndpointKind.BTC_BALANCE: self._on_btc_balance,
        }

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def state(self) -> TradingState:
        return self._state

    @property
    def sink(self) -> DisplaySink:
        return self._sink

    @property
    def is_running(self) -> bool:
        return self._state.running

    def attach(self) -> None:
        """Subscribe to scheduler events."""
        self._scheduler.add_listener(self.handle_event)

    def detach(self) -> None:
        self._scheduler.remove_listener(self.handle_event)

    # --------------------------------------------------------
    # USER INTENTS
    # --------------------------------------------------------

    def select_market(self, market: str) -> None:
        """
        Select the market to trade.

        Raises:
            TradingStateError: If trading is running
        """
        if self._state.running:
            raise TradingStateError(
                "Cannot change market while trading",
                state=self._state.state_name,
            )
        self._state.market = market
        self._scheduler.select_market(market)
        self._sink.update(DisplayField.MARKET, market)

    def start(self) -> None:
        """
        IDLE -> RUNNING.

        Raises:
            TradingStateError: No market selected, or an order from a
                previous session is still tracked
        """
        if self._state.running:
            return
        if not self._state.market:
            raise TradingStateError("No market selected", state=self._state.state_name)
        if self._state.has_order:
            raise TradingStateError(
                f"Order {self._state.order_id} is still tracked; wait for its cancel",
                state=self._state.state_name,
            )

        self._state.running = True
        self._scheduler.set_running(True)
        self._sink.update(DisplayField.RUNNING, True)
        self._log(f">>>>> Start trading on market: {self._state.market}")

    def stop(self) -> None:
        """
        RUNNING -> IDLE.

        A tracked order is cancelled first; the transition does not wait
        for the cancel to be confirmed.
        """
        if not self._state.running:
            return
        if self._state.has_order:
            self._cancel_order(self._state.order_id)

        self._state.running = False
        self._scheduler.set_running(False)
        self._sink.update(DisplayField.RUNNING, False)
        self._log(f"<<<<< Stop trading on market: {self._state.market}")

    def toggle_trading(self) -> None:
        if self._state.running:
            self.stop()
        else:
            self.start()

    # --------------------------------------------------------
    # EVENTS
    # --------------------------------------------------------

    def handle_event(self, event: SchedulerEvent) -> None:
        """Scheduler listener."""
        if isinstance(event, EndpointUpdated):
            self._on_updated(event)
        elif isinstance(event, EndpointFailed):
            self._on_failed(event)
        elif isinstance(event, BatchComplete):
            self._on_batch_complete()

    def _on_updated(self, event: EndpointUpdated) -> None:
        if self._state.action_pending == event.kind:
            self._state.action_pending = None
        handler = self._handlers.get(event.kind)
        if handler:
            handler(event.value, None)

    def _on_failed(self, event: EndpointFailed) -> None:
        message = event.message or EMPTY_ERROR
        self._log(f"Error {message} ({event.kind.value})")
        if self._state.action_pending == event.kind:
            self._state.action_pending = None

        handler = self._handlers.get(event.kind)
        if handler:
            handler(None, message)

        if stops_trading(message):
            self.stop()

    def _on_batch_complete(self) -> None:
        self._publish_markets()

        if not self._state.running:
            return
        if not (
            self._scheduler.first_response_received(EndpointKind.ORDER_BOOK_SELL)
            and self._scheduler.first_response_received(EndpointKind.OPEN_ORDERS)
        ):
            return

        self._update_open_order()
        if self._state.has_order or self._state.action_pending:
            return

        min_ask = self.competing_ask()
        if min_ask is None:
            self._log("No good orders found for price calculation.")
            self.stop()
            return

        ask = min_ask - Amount.TICK
        if ask <= 0:
            self._log(f"Computed ask {ask} is not positive.")
            self.stop()
            return

        self._log(f"Placing order with ask={ask}")
        self._place_order(ask)

    # --------------------------------------------------------
    # REPLY HANDLERS
    # --------------------------------------------------------

    def _on_place_order(self, result: Optional[PlaceOrderResult], error: Optional[str]) -> None:
        if error:
            self._clear_order()
            return

        self._state.order_id = result.uuid
        if not self._state.running and result.uuid:
            # placed after stop; nothing may be left resting
            self._log(f"Canceling order placed after stop id={result.uuid}")
            self._cancel_order(result.uuid)

    def _on_get_order(self, order: Optional[Order], error: Optional[str]) -> None:
        state = self._state
        if error:
            state.order_id = ""
            return
        if not state.running:
            self._publish_order(order.limit, order.quantity_remaining)
            return

        exhausted = False
        if state.has_order and order.order_uuid == state.order_id:
            delta = state.order_quantity_remaining - order.quantity_remaining
            if delta > 0:
                exhausted = self._account_fill(delta)
            state.order_quantity_remaining = order.quantity_remaining

        if not order.is_open or order.cancel_initiated:
            self._clear_order()
        else:
            state.order_id = order.order_uuid
            state.order_quantity = order.quantity
            state.order_rate = order.limit
            state.order_quantity_remaining = order.quantity_remaining
            self._publish_order(state.order_rate, state.order_quantity_remaining)

        if exhausted:
            self._log("Total BTC limit reached.")
            self.stop()
            return

        if not state.has_order or state.action_pending:
            return

        min_ask = self.competing_ask()
        if min_ask is not None and min_ask <= state.order_rate:
            self._log(f"Canceling order (found Ask {min_ask}) id={state.order_id}")
            self._cancel_order(state.order_id)

    def _on_cancel_order(self, result: Any, error: Optional[str]) -> None:
        self._clear_order()

    def _on_balance(self, balance: Optional[Balance], error: Optional[str]) -> None:
        if error:
            return
        self._sink.update(DisplayField.MARKET_BALANCE, balance.available)
        self._sink.update(DisplayField.MARKET, self._state.market)

    def _on_btc_balance(self, balance: Optional[Balance], error: Optional[str]) -> None:
        if error:
            return
        self._sink.update(DisplayField.BTC_BALANCE, balance.available)

    # --------------------------------------------------------
    # DECISIONS
    # --------------------------------------------------------

    def competing_ask(self) -> Optional[Amount]:
        """
        Lowest sell rate not belonging to the tracked order.

        Returns:
            The rate, or None when the book is empty or only holds our order
        """
        for level in self._scheduler.result(EndpointKind.ORDER_BOOK_SELL):
            if self._is_my_order(level):
                continue
            return level.rate
        return None

    def _is_my_order(self, level: OrderBookLevel) -> bool:
        state = self._state
        if level.rate != state.order_rate:
            return False
        return level.quantity in (state.order_quantity, state.order_quantity_remaining)

    def _update_open_order(self) -> None:
        if self._state.action_pending:
            return
        for entry in self._scheduler.result(EndpointKind.OPEN_ORDERS):
            if entry.order_type == OrderType.LIMIT_SELL:
                self._get_order(entry.order_uuid)
                return
        if self._state.has_order:
            self._get_order(self._state.order_id)

    def _account_fill(self, delta: Amount) -> bool:
        """Charge a fill to the budget; True once the budget is exhausted."""
        state = self._state
        proceeds = delta.multiply(state.order_rate)
        self._log(f"Sell {delta} {state.market} ({proceeds} BTC)")

        state.sell_limit = state.sell_limit - proceeds
        exhausted = state.sell_limit <= 0
        if exhausted:
            state.sell_limit = Amount.ZERO
        self._sink.update(DisplayField.SELL_LIMIT, state.sell_limit)
        return exhausted

    def order_size(self) -> Amount:
        """Configured order size inflated by a random 0..deviation-1 percent."""
        size = self._config.order_limit
        deviation = self._config.deviation_pct
        if deviation:
            deviation = self._rng.randrange(deviation)
        return size + Amount(int(size.raw * deviation / 100))

    # --------------------------------------------------------
    # ACTIONS
    # --------------------------------------------------------

    def _place_order(self, ask: Amount) -> None:
        quantity = self.order_size().divide(ask)
        state = self._state
        state.order_quantity = quantity
        state.order_quantity_remaining = quantity
        state.order_rate = ask
        self._submit(EndpointKind.PLACE_ORDER, {
            "quantity": str(quantity),
            "rate": str(ask),
        })

    def _cancel_order(self, order_id: str) -> None:
        self._submit(EndpointKind.CANCEL_ORDER, {"uuid": order_id})

    def _get_order(self, order_id: str) -> None:
        self._submit(EndpointKind.GET_ORDER, {"uuid": order_id})

    def _submit(self, kind: EndpointKind, params: Dict[str, str]) -> None:
        self._state.action_pending = kind
        self._scheduler.submit(kind, params)

    # --------------------------------------------------------
    # DISPLAY
    # --------------------------------------------------------

    def _clear_order(self) -> None:
        state = self._state
        state.order_id = ""
        state.order_rate = Amount.ZERO
        state.order_quantity = Amount.ZERO
        state.order_quantity_remaining = Amount.ZERO
        self._publish_order(None, None)

    def _publish_order(self, rate: Optional[Amount], size: Optional[Amount]) -> None:
        self._sink.update(DisplayField.ORDER_RATE, rate)
        self._sink.update(DisplayField.ORDER_SIZE, size)

    def _publish_markets(self) -> None:
        prefix = self._market_prefix
        names = sorted(
            market.name[len(prefix):]
            for market in self._scheduler.result(EndpointKind.MARKETS)
            if market.name.startswith(prefix)
        )
        self._sink.update(DisplayField.MARKETS, names)

    def _log(self, text: str) -> None:
        logger.info(text)
        self._sink.log(text)
