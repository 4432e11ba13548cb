"""
Sell Engine - Bot Facade.

============================================================
PURPOSE
============================================================
Wires options, transport, scheduler and trading engine together.

LIFECYCLE:
    options.enabled = True   -> init()     build codec/scheduler/engine,
                                           start polling
    options.enabled = False  -> cleanup()  stop trading (cancel tracked
                                           order), drain, tear down

Enabling again while a cleanup is still pending defers init() until
that cleanup has finished.

The selected market and the remaining sell budget survive a
cleanup/init round trip.

============================================================
"""

import asyncio
import logging
import random
from typing import Callable, List, Optional, Set

from core.clock import ClockProtocol, SystemClock

from .activity_log import ActivityLog, DisplaySink
from .adapters.aiohttp_transport import AiohttpTransport
from .adapters.base import Transport
from .adapters.logging_utils import mask_value
from .amount import Amount
from .codec import ExchangeCodec
from .config import ApiCredentials, SellBotConfig
from .engine import TradingEngine
from .errors import TradingStateError
from .scheduler import PollingScheduler


logger = logging.getLogger(__name__)


# ============================================================
# OPTIONS
# ============================================================

class BotOptions:
    """
    Configuration source for the bot.

    Holds the API credentials and the enabled flag; listeners are
    notified when enabled changes.
    """

    def __init__(self, api_key: str = "", api_secret: str = "", enabled: bool = False):
        self.api_key = api_key
        self.api_secret = api_secret
        self._enabled = enabled
        self._listeners: List[Callable[[bool], None]] = []

    @classmethod
    def from_config(cls, config: SellBotConfig, environ=None) -> "BotOptions":
        credentials = ApiCredentials.from_env(config.exchange, environ)
        return cls(
            api_key=credentials.api_key,
            api_secret=credentials.api_secret,
            enabled=config.enabled,
        )

    @property
    def credentials(self) -> ApiCredentials:
        return ApiCredentials(api_key=self.api_key, api_secret=self.api_secret)

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        if value == self._enabled:
            return
        self._enabled = value
        for listener in list(self._listeners):
            listener(value)

    def add_enabled_listener(self, listener: Callable[[bool], None]) -> None:
        self._listeners.append(listener)

    def remove_enabled_listener(self, listener: Callable[[bool], None]) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def __repr__(self) -> str:
        return (
            f"BotOptions(api_key={mask_value(self.api_key)!r}, "
            f"enabled={self._enabled})"
        )


# ============================================================
# BOT
# ============================================================

class SellBot:
    """
    Sell bot facade.

    Example:
        bot = SellBot(config)
        bot.set_options(BotOptions.from_config(config))
        bot.select_market("LTC")
        bot.toggle_trading()
    """

    def __init__(
        self,
        config: Optional[SellBotConfig] = None,
        transport: Optional[Transport] = None,
        clock: Optional[ClockProtocol] = None,
        sink: Optional[DisplaySink] = None,
        rng: Optional[random.Random] = None,
    ):
        self._config = config or SellBotConfig()
        self._transport = transport or AiohttpTransport(self._config.timeout)
        self._clock = clock or SystemClock()
        self._sink = sink or ActivityLog(self._config.trading.log_capacity, self._clock)
        self._rng = rng

        self._options: Optional[BotOptions] = None
        self._scheduler: Optional[PollingScheduler] = None
        self._engine: Optional[TradingEngine] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()
        self._cleanup_task: Optional[asyncio.Task] = None

        self._market = ""
        self._sell_limit: Amount = self._config.trading.total_sell_limit

    # --------------------------------------------------------
    # PROPERTIES
    # --------------------------------------------------------

    @property
    def is_initialized(self) -> bool:
        return self._scheduler is not None

    @property
    def scheduler(self) -> Optional[PollingScheduler]:
        return self._scheduler

    @property
    def engine(self) -> Optional[TradingEngine]:
        return self._engine

    @property
    def sink(self) -> DisplaySink:
        return self._sink

    @property
    def loop_task(self) -> Optional[asyncio.Task]:
        return self._loop_task

    # --------------------------------------------------------
    # OPTIONS
    # --------------------------------------------------------

    def set_options(self, options: BotOptions) -> None:
        """Attach a configuration source and apply its enabled flag."""
        if self._options is not None:
            self._options.remove_enabled_listener(self._on_enabled_changed)
        self._options = options
        options.add_enabled_listener(self._on_enabled_changed)
        self._on_enabled_changed(options.enabled)

    def _on_enabled_changed(self, enabled: bool) -> None:
        cleanup_pending = self._cleanup_task is not None and not self._cleanup_task.done()
        if enabled:
            if cleanup_pending:
                # init only after the pending teardown has finished
                self._track(self._init_after(self._cleanup_task))
            else:
                self.init()
        elif self.is_initialized and not cleanup_pending:
            self._cleanup_task = self._track(self.cleanup())

    def _track(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _init_after(self, cleanup: asyncio.Task) -> None:
        await asyncio.wait([cleanup])
        if self._options is not None and self._options.enabled:
            self.init()

    # --------------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------------

    def init(self) -> None:
        """Build the scheduler and engine and start polling."""
        if self.is_initialized:
            return

        credentials = self._options.credentials if self._options else None
        if credentials is None or not credentials.is_complete:
            logger.warning("No API credentials - private endpoints will fail")

        codec = ExchangeCodec(self._config.exchange, credentials)
        self._scheduler = PollingScheduler(
            codec,
            self._transport,
            clock=self._clock,
            config=self._config.scheduler,
        )
        self._engine = TradingEngine(
            self._scheduler,
            self._config.trading,
            sink=self._sink,
            rng=self._rng,
            market_prefix=self._config.exchange.market_prefix,
        )
        self._engine.state.sell_limit = self._sell_limit
        self._engine.attach()
        if self._market:
            self._engine.select_market(self._market)

        self._loop_task = asyncio.ensure_future(self._scheduler.start())
        logger.info("Sell bot initialized")

    async def cleanup(self) -> None:
        """Stop trading, flush the shutdown cancel and tear down."""
        if not self.is_initialized:
            return

        self._engine.stop()
        await self._scheduler.shutdown()
        if self._loop_task is not None:
            await asyncio.wait([self._loop_task])

        self._sell_limit = self._engine.state.sell_limit
        self._engine.detach()
        self._engine = None
        self._scheduler = None
        self._loop_task = None

        await self._transport.close()
        logger.info("Sell bot cleaned up")

    async def wait_closed(self) -> None:
        """Wait for pending cleanup and re-init tasks."""
        while self._background:
            await asyncio.wait(list(self._background))

    # --------------------------------------------------------
    # USER INTENTS
    # --------------------------------------------------------

    def select_market(self, market: str) -> None:
        """
        Select the market to trade (only while idle).

        Raises:
            TradingStateError: If trading is running
        """
        if self._engine is not None:
            self._engine.select_market(market)
        self._market = market

    def toggle_trading(self) -> None:
        """
        Start or stop trading.

        Raises:
            TradingStateError: If the bot is not initialized, or the
                engine refuses to start
        """
        if self._engine is None:
            raise TradingStateError("Sell bot is not enabled")
        self._engine.toggle_trading()
