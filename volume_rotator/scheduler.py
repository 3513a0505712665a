"""
Trade Scheduler
===============
The perpetual trading loop for one chain.

Each cycle: maybe refresh the active set, gate on gas price, pick the
active wallets whose wait has elapsed, trade them one at a time with a
short jitter in between, persist the pool, sleep. Any failure inside a
cycle is logged and followed by a retry delay; the loop itself never dies.

Trades are strictly sequential within a loop so one RPC endpoint never
sees concurrent nonces from the same bot.
"""

import time
import asyncio
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Set
from dataclasses import dataclass, asdict
from datetime import datetime

from .config import ChainConfig, GlobalSettings
from .executor import TradeAction, TradeExecutor, TradeResult
from .randomness import RandomSource
from .selector import ActiveSetSelector
from .wallet_store import WalletRecord, WalletStore
from .utils import logger, AlreadyRunningError, to_wei, from_wei, format_duration


class BotState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


@dataclass
class SchedulerStats:
    """Counters for one scheduler."""
    cycles: int = 0
    gas_skipped_cycles: int = 0
    failed_cycles: int = 0
    trades_attempted: int = 0
    trades_succeeded: int = 0
    buys: int = 0
    sells: int = 0
    last_cycle_at: Optional[str] = None

    def record_trade(self, result: TradeResult):
        self.trades_attempted += 1
        if result.success:
            self.trades_succeeded += 1
            if result.action == TradeAction.BUY:
                self.buys += 1
            elif result.action == TradeAction.SELL:
                self.sells += 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def eligible_wallets(
    records: Iterable[WalletRecord],
    active: Set[str],
    now: float,
    draw_delay: Callable[[], float],
) -> List[WalletRecord]:
    """
    Active wallets whose time since last attempt reaches a freshly drawn delay.

    ``draw_delay`` is called once per active wallet, so each wallet is
    compared against its own threshold on every evaluation.
    """
    return [
        w for w in records
        if w.address in active and now - w.last_trade_time >= draw_delay()
    ]


class TradeScheduler:
    """
    Owns the trading loop and its IDLE -> RUNNING -> STOPPED state.

    ``stop()`` may be called from any thread. It takes effect at the top of
    the next cycle or before the next wallet is dispatched; a trade already
    in flight always completes.
    """

    def __init__(
        self,
        chain: ChainConfig,
        settings: GlobalSettings,
        store: WalletStore,
        selector: ActiveSetSelector,
        executor: TradeExecutor,
        client,
        rng: RandomSource,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.params = chain.trading
        self.settings = settings
        self.store = store
        self.selector = selector
        self.executor = executor
        self.client = client
        self.rng = rng
        self.clock = clock
        self.stats = SchedulerStats()

        self._sleep_fn = sleep
        self._lock = threading.Lock()
        self._state = BotState.IDLE
        self._stop_requested = False
        self._stop_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def _tag(self) -> str:
        return f"[{self.chain.name}]"

    @property
    def state(self) -> BotState:
        with self._lock:
            return self._state

    @property
    def is_running(self) -> bool:
        return self.state == BotState.RUNNING

    @property
    def stop_requested(self) -> bool:
        with self._lock:
            return self._stop_requested

    def status(self) -> Dict[str, Any]:
        return {
            "chain": self.chain.key,
            "state": self.state.value,
            "running": self.is_running,
            "wallets": len(self.store.records),
            "active_wallets": len(self.selector.active),
            "stats": self.stats.to_dict(),
        }

    def stop(self):
        """
        Request a cooperative stop.

        A request made before the loop starts is kept, and ``run()`` then
        returns without trading.
        """
        with self._lock:
            if self._state == BotState.STOPPED:
                return
            self._stop_requested = True
            loop, event = self._loop, self._stop_event

        logger.info(f"{self._tag} Stop requested")
        if loop is not None and event is not None and not loop.is_closed():
            loop.call_soon_threadsafe(event.set)

    async def _sleep(self, seconds: float):
        if self._sleep_fn is not None:
            await self._sleep_fn(seconds)
            return
        if self._stop_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def draw_delay(self) -> float:
        return self.rng.uniform(self.params.min_interval, self.params.max_interval)

    def draw_jitter(self) -> float:
        return self.rng.uniform(self.settings.jitter_min_seconds, self.settings.jitter_max_seconds)

    async def gas_price_acceptable(self) -> bool:
        gas_price = await self.client.get_gas_price()
        if gas_price > to_wei(self.params.max_gas_price_gwei, "gwei"):
            logger.info(
                f"{self._tag} Gas price too high ({from_wei(gas_price, 'gwei'):.2f} > "
                f"{self.params.max_gas_price_gwei} gwei), retrying in "
                f"{format_duration(self.settings.retry_delay_seconds)}"
            )
            return False
        return True

    async def run_cycle(self) -> int:
        """
        Run one scheduling cycle.

        Returns:
            Number of trades attempted
        """
        self.stats.cycles += 1
        self.stats.last_cycle_at = datetime.now().isoformat()
        records = self.store.records

        if self.selector.maybe_recompute(records, self.settings.active_wallet_fraction):
            logger.info(f"{self._tag} Updated active wallets pool ({len(self.selector.active)} active)")

        if not await self.gas_price_acceptable():
            self.stats.gas_skipped_cycles += 1
            await self._sleep(self.settings.retry_delay_seconds)
            return 0

        eligible = eligible_wallets(records, self.selector.active, self.clock(), self.draw_delay)
        if eligible:
            logger.info(f"{self._tag} {len(eligible)} wallet(s) eligible for trading")

        attempted = 0
        for index, wallet in enumerate(eligible):
            if self.stop_requested:
                logger.info(f"{self._tag} Stop observed; skipping {len(eligible) - index} wallet(s)")
                break

            result = await self.executor.execute_trade(wallet)
            # Failed attempts also reset the wait
            wallet.last_trade_time = self.clock()
            self.stats.record_trade(result)
            attempted += 1

            if not self.stop_requested:
                await self._sleep(self.draw_jitter())

        self.store.persist(records)

        if not self.stop_requested:
            await self._sleep(self.settings.check_interval_seconds)
        return attempted

    async def run(self):
        """
        Run cycles until ``stop()`` is called.

        Raises:
            AlreadyRunningError: the loop is already running
        """
        with self._lock:
            if self._state == BotState.RUNNING:
                raise AlreadyRunningError(
                    f"Bot for {self.chain.name} is already trading; stop it first"
                )
            if self._state == BotState.STOPPED:
                self._stop_requested = False
            self._state = BotState.RUNNING
            self._loop = asyncio.get_running_loop()
            self._stop_event = asyncio.Event()

        logger.info(f"{self._tag} Starting trading loop with {len(self.store.records)} wallets")
        try:
            while not self.stop_requested:
                try:
                    await self.run_cycle()
                except Exception as e:
                    self.stats.failed_cycles += 1
                    logger.error(
                        f"{self._tag} Error in trading loop: {e}; retrying in "
                        f"{format_duration(self.settings.retry_delay_seconds)}"
                    )
                    if not self.stop_requested:
                        await self._sleep(self.settings.retry_delay_seconds)
        finally:
            with self._lock:
                self._state = BotState.STOPPED
                self._loop = None
                self._stop_event = None
            logger.info(f"{self._tag} Trading stopped")
