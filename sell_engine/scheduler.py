"""
Sell Engine - Polling Scheduler.

============================================================
PURPOSE
============================================================
Endpoint registry plus the polling loop that feeds the trading engine.

CYCLE:
1. Dispatch, concurrently, one request per enabled endpoint plus every
   queued one-shot request; the queue is cleared at dispatch time
2. Decode each reply as it arrives:
   - success -> store in the endpoint's result slot, mark first
     response received, emit EndpointUpdated
   - failure -> emit EndpointFailed with the raw message, keep the
     previous result
3. When every reply has arrived emit BatchComplete and schedule the
   next cycle at drain_time + refresh_delay

CRITICAL CONSTRAINTS:
- Cycle N+1 is never dispatched before cycle N has drained
- Decode and transport errors never escape the scheduler
- All events are delivered on the event loop thread, in arrival order

============================================================
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from core.clock import ClockProtocol, SystemClock

from .adapters.base import Transport
from .adapters.logging_utils import mask_url
from .codec import EndpointCodec, ExchangeCodec
from .config import SchedulerConfig
from .errors import SellEngineError
from .types import AutoUpdatePolicy, EndpointKind


logger = logging.getLogger(__name__)


# ============================================================
# REGISTRY
# ============================================================

@dataclass
class EndpointRegistration:
    """Polling state of one endpoint."""

    codec: EndpointCodec

    enabled: bool = False
    """Polled automatically every cycle."""

    arg: str = ""
    """URL argument (selected market or currency)."""

    first_response_received: bool = False
    """Set on the first successful reply since the argument or policy changed."""

    result: Any = None
    """Last successfully decoded value."""

    @property
    def kind(self) -> EndpointKind:
        return self.codec.kind

    @property
    def policy(self) -> AutoUpdatePolicy:
        return self.codec.policy


# ============================================================
# EVENTS
# ============================================================

@dataclass(frozen=True)
class EndpointUpdated:
    """A reply decoded successfully."""

    kind: EndpointKind
    value: Any


@dataclass(frozen=True)
class EndpointFailed:
    """A request failed; message is the raw error text."""

    kind: EndpointKind
    message: str


@dataclass(frozen=True)
class BatchComplete:
    """Every reply of a cycle has arrived."""

    cycle: int
    dispatched: int


SchedulerEvent = Union[EndpointUpdated, EndpointFailed, BatchComplete]
Listener = Callable[[SchedulerEvent], None]


@dataclass
class _Dispatch:
    """One request of a cycle, built before any reply can arrive."""

    registration: EndpointRegistration
    arg: str
    url: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    error: Optional[SellEngineError] = None


# ============================================================
# SCHEDULER
# ============================================================

class PollingScheduler:
    """
    Periodic and one-shot request dispatcher.

    Example:
        scheduler = PollingScheduler(codec, transport)
        scheduler.add_listener(engine.handle_event)
        scheduler.select_market("LTC")
        await scheduler.start()
    """

    def __init__(
        self,
        codec: ExchangeCodec,
        transport: Transport,
        clock: Optional[ClockProtocol] = None,
        config: Optional[SchedulerConfig] = None,
    ):
        self._codec = codec
        self._transport = transport
        self._clock = clock or SystemClock()
        self._config = config or SchedulerConfig()

        self._registry: Dict[EndpointKind, EndpointRegistration] = {}
        for endpoint in codec.endpoints():
            self._registry[endpoint.kind] = EndpointRegistration(
                codec=endpoint,
                enabled=endpoint.policy == AutoUpdatePolicy.ALWAYS,
                result=endpoint.empty_result(),
            )

        self._queue: Dict[EndpointKind, Dict[str, str]] = {}
        self._listeners: List[Listener] = []

        self._cycle = 0
        self._running = False
        self._closed = False
        self._next_cycle_at: Optional[datetime] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._sleeper: Optional[asyncio.Future] = None

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def cycle(self) -> int:
        """Number of cycles dispatched so far."""
        return self._cycle

    @property
    def next_cycle_at(self) -> Optional[datetime]:
        """Dispatch time of the next cycle (drain time + refresh delay)."""
        return self._next_cycle_at

    # --------------------------------------------------------
    # LISTENERS
    # --------------------------------------------------------

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, event: SchedulerEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception(f"Listener failed on {type(event).__name__}")

    # --------------------------------------------------------
    # REGISTRY ACCESS
    # --------------------------------------------------------

    def registration(self, kind: EndpointKind) -> EndpointRegistration:
        return self._registry[kind]

    def registrations(self) -> List[EndpointRegistration]:
        return list(self._registry.values())

    def result(self, kind: EndpointKind) -> Any:
        """Shared result slot; empty list or None before the first success."""
        return self._registry[kind].result

    def is_enabled(self, kind: EndpointKind) -> bool:
        return self._registry[kind].enabled

    def first_response_received(self, kind: EndpointKind) -> bool:
        return self._registry[kind].first_response_received

    def enabled_snapshot(self) -> Dict[EndpointKind, bool]:
        return {kind: reg.enabled for kind, reg in self._registry.items()}

    # --------------------------------------------------------
    # POLICY
    # --------------------------------------------------------

    def select_market(self, market: str) -> None:
        """
        Point every argument-taking endpoint at a market.

        Resets first-response flags; enables MARKET_SELECTED endpoints,
        and an empty market disables every argument-taking endpoint.
        """
        for reg in self._registry.values():
            if not reg.codec.needs_arg:
                continue
            reg.first_response_received = False
            reg.arg = market
            if not market:
                reg.enabled = False
            elif reg.policy == AutoUpdatePolicy.MARKET_SELECTED:
                reg.enabled = True
        logger.debug(f"Market selected: {market or '<none>'}")

    def set_running(self, running: bool) -> None:
        """Enable or disable every RUNNING endpoint."""
        for reg in self._registry.values():
            if reg.policy == AutoUpdatePolicy.RUNNING:
                reg.enabled = running
                reg.first_response_received = False

    # --------------------------------------------------------
    # ONE-SHOT REQUESTS
    # --------------------------------------------------------

    def submit(self, kind: EndpointKind, params: Optional[Mapping[str, str]] = None) -> None:
        """
        Queue a one-shot request for the next cycle.

        At most one request per endpoint is queued; a later submission
        replaces the earlier one's parameters.
        """
        if kind in self._queue:
            logger.debug(f"Replacing queued {kind.value} request")
        self._queue[kind] = dict(params or {})

    def pending_requests(self) -> Dict[EndpointKind, Dict[str, str]]:
        return {kind: dict(params) for kind, params in self._queue.items()}

    # --------------------------------------------------------
    # CYCLE
    # --------------------------------------------------------

    async def run_cycle(self, include_polled: bool = True) -> BatchComplete:
        """
        Dispatch one batch and wait for every reply.

        Args:
            include_polled: Also poll enabled endpoints (False flushes
                only the one-shot queue)

        Returns:
            The BatchComplete event emitted at drain time
        """
        batch: List[Tuple[EndpointRegistration, Optional[Dict[str, str]]]] = []
        if include_polled:
            batch.extend((reg, None) for reg in self._registry.values() if reg.enabled)
        batch.extend((self._registry[kind], params) for kind, params in self._queue.items())
        self._queue.clear()

        self._cycle += 1
        dispatches = [self._build(reg, params) for reg, params in batch]
        logger.debug(f"Cycle {self._cycle}: dispatching {len(dispatches)} request(s)")

        tasks = [asyncio.ensure_future(self._fetch(dispatch)) for dispatch in dispatches]
        for next_reply in asyncio.as_completed(tasks):
            dispatch, value, error = await next_reply
            self._deliver(dispatch, value, error)

        event = BatchComplete(cycle=self._cycle, dispatched=len(dispatches))
        self._emit(event)
        self._next_cycle_at = self._clock.now() + timedelta(
            seconds=self._config.refresh_delay_seconds
        )
        return event

    def _build(
        self,
        registration: EndpointRegistration,
        params: Optional[Dict[str, str]],
    ) -> _Dispatch:
        dispatch = _Dispatch(registration=registration, arg=registration.arg)
        try:
            dispatch.url, dispatch.headers = self._codec.build_request(
                registration.kind, registration.arg, params
            )
        except SellEngineError as e:
            dispatch.error = e
        return dispatch

    async def _fetch(self, dispatch: _Dispatch) -> Tuple[_Dispatch, Any, Optional[SellEngineError]]:
        if dispatch.error is not None:
            return dispatch, None, dispatch.error

        kind = dispatch.registration.kind
        try:
            body = await self._transport.get(dispatch.url, dispatch.headers)
            return dispatch, self._codec.decode(kind, body), None
        except SellEngineError as e:
            return dispatch, None, e
        except Exception as e:
            logger.exception(f"Unexpected failure on {kind.value} ({mask_url(dispatch.url)})")
            return dispatch, None, SellEngineError(str(e) or type(e).__name__, cause=e)

    def _deliver(
        self,
        dispatch: _Dispatch,
        value: Any,
        error: Optional[SellEngineError],
    ) -> None:
        reg = dispatch.registration
        if error is not None:
            log = logger.warning if error.is_recoverable else logger.error
            log(f"{reg.kind.value} failed: {error.message}")
            self._emit(EndpointFailed(kind=reg.kind, message=error.message))
            return

        reg.result = value
        # a reply for a previously selected market does not count as fresh
        if dispatch.arg == reg.arg:
            reg.first_response_received = True
        self._emit(EndpointUpdated(kind=reg.kind, value=value))

    # --------------------------------------------------------
    # LOOP
    # --------------------------------------------------------

    async def start(self) -> None:
        """
        Run cycles until shutdown().

        The first cycle is dispatched immediately; each following one at
        next_cycle_at as measured by the injected clock.
        """
        if self._running:
            logger.warning("Scheduler already running")
            return
        if self._closed:
            logger.debug("Scheduler was shut down before its first cycle")
            return

        self._running = True
        self._loop_task = asyncio.current_task()
        logger.info(f"Polling started (refresh every {self._config.refresh_delay_seconds}s)")

        try:
            while self._running:
                await self.run_cycle()
                if not self._running:
                    break

                delay = (self._next_cycle_at - self._clock.now()).total_seconds()
                self._sleeper = asyncio.ensure_future(self._clock.sleep(delay))
                try:
                    await self._sleeper
                except asyncio.CancelledError:
                    if self._running:
                        raise
                finally:
                    self._sleeper = None
        finally:
            self._running = False
            self._loop_task = None
            logger.info("Polling stopped")

    async def shutdown(self) -> None:
        """
        Stop the loop and flush queued one-shot requests.

        Waits for an in-flight cycle to drain first, so a cancel queued
        by the shutdown itself is still sent.
        """
        self._running = False
        self._closed = True
        if self._sleeper is not None:
            self._sleeper.cancel()

        loop_task = self._loop_task
        if loop_task is not None and loop_task is not asyncio.current_task():
            await asyncio.wait([loop_task])

        if self._queue:
            logger.info(f"Flushing {len(self._queue)} queued request(s)")
            await self.run_cycle(include_polled=False)
