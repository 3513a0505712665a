"""
Volume Bot
==========
Wires one chain's components together and exposes the control surface.

``VolumeBot`` builds the client, wallet store, selector, funding manager,
executor and scheduler for a chain. ``initialize()`` is the only place
where failures are fatal: a bad chain key, a missing key, an underfunded
main wallet or a corrupt wallet file abort startup before any trade.

``BotController`` is the start/stop/status surface. It owns at most one
running bot and refuses a second start until the first is stopped.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional, Union

from .chain import Web3ChainClient
from .config import ChainConfig, GlobalSettings, get_chain_config
from .executor import TradeExecutor
from .funding import FundingManager
from .randomness import RandomSource
from .scheduler import TradeScheduler
from .selector import ActiveSetSelector
from .wallet_store import WalletStore
from .utils import (
    logger,
    AlreadyRunningError,
    FatalInitError,
    StorageError,
    validate_private_key,
)


class VolumeBot:
    """All components for one chain."""

    def __init__(
        self,
        chain: ChainConfig,
        main_private_key: str,
        temp_wallet_count: int,
        settings: Optional[GlobalSettings] = None,
        wallet_file: Optional[Union[str, Path]] = None,
        client=None,
        rng: Optional[RandomSource] = None,
        sleep=None,
        clock=None,
    ):
        if not main_private_key or not validate_private_key(main_private_key):
            raise FatalInitError("Main wallet private key is missing or malformed")

        self.chain = chain
        self.settings = settings or GlobalSettings()
        self.temp_wallet_count = temp_wallet_count
        self.rng = rng or RandomSource()

        self.client = client or Web3ChainClient(chain, self.settings)
        self.store = WalletStore(wallet_file or f"temp_wallets_{chain.key}.json")
        self.selector = ActiveSetSelector(self.rng, self.settings.active_set_refresh_probability)
        self.funding = FundingManager(chain, self.settings, self.client, main_private_key)
        self.executor = TradeExecutor(chain, self.settings, self.client, self.funding, self.rng)

        scheduler_kwargs = {"sleep": sleep}
        if clock is not None:
            scheduler_kwargs["clock"] = clock
        self.scheduler = TradeScheduler(
            chain,
            self.settings,
            self.store,
            self.selector,
            self.executor,
            self.client,
            self.rng,
            **scheduler_kwargs,
        )
        self.initialized = False

    @classmethod
    def for_chain(
        cls,
        chain_key: str,
        main_private_key: str,
        temp_wallet_count: int,
        overrides: Optional[Dict[str, Any]] = None,
        registry: Optional[Dict[str, ChainConfig]] = None,
        **kwargs,
    ) -> "VolumeBot":
        """Build a bot from the chain registry, applying trading overrides."""
        chain = get_chain_config(chain_key, overrides, registry)
        return cls(chain, main_private_key, temp_wallet_count, **kwargs)

    @property
    def main_address(self) -> str:
        return self.funding.main_address

    async def initialize(self):
        """
        Check the main wallet and load (or create) the wallet pool.

        Raises:
            FatalInitError: any failure; the bot must not be started
        """
        await self.funding.check_main_balance()

        try:
            self.store.load(self.temp_wallet_count)
        except StorageError as e:
            raise FatalInitError(str(e)) from e

        self.selector.recompute(self.store.records, self.settings.active_wallet_fraction)
        self.initialized = True
        logger.info(f"[{self.chain.name}] Bot initialized successfully")

    async def run(self):
        if not self.initialized:
            await self.initialize()
        logger.info(f"[{self.chain.name}] Main wallet {self.main_address}")
        await self.scheduler.run()

    def stop(self):
        self.scheduler.stop()

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    def status(self) -> Dict[str, Any]:
        return self.scheduler.status()


class BotController:
    """
    Start/stop/status for a single bot in this process.

    Overrides are applied when the bot is built; a running bot never picks
    up new parameters.
    """

    def __init__(
        self,
        main_private_key: str,
        settings: Optional[GlobalSettings] = None,
        wallet_dir: Union[str, Path] = ".",
        registry: Optional[Dict[str, ChainConfig]] = None,
        bot_factory=None,
    ):
        self.main_private_key = main_private_key
        self.settings = settings or GlobalSettings()
        self.wallet_dir = Path(wallet_dir)
        self.registry = registry
        self._bot_factory = bot_factory or VolumeBot.for_chain
        self.bot: Optional[VolumeBot] = None
        self.task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """True until the loop task has finished, including while it drains after a stop."""
        return self.task is not None and not self.task.done()

    @property
    def is_stopping(self) -> bool:
        return self.is_running and self.bot is not None and self.bot.scheduler.stop_requested

    async def start(
        self,
        chain_key: str = "avax",
        overrides: Optional[Dict[str, Any]] = None,
        wallet_count: int = 5,
    ) -> VolumeBot:
        """
        Build, initialize and launch a bot in the background.

        Raises:
            AlreadyRunningError: a bot is already running
            FatalInitError: construction or initialization failed
        """
        if self.is_running:
            raise AlreadyRunningError(
                "The bot is already trading. Stop it before starting a new run."
            )

        bot = self._bot_factory(
            chain_key,
            self.main_private_key,
            wallet_count,
            overrides=overrides,
            registry=self.registry,
            settings=self.settings,
            wallet_file=self.wallet_dir / f"temp_wallets_{chain_key}.json",
        )
        await bot.initialize()

        self.bot = bot
        self.task = asyncio.create_task(bot.run())
        logger.info(f"Trading bot started on {bot.chain.name}")
        return bot

    async def stop(self, wait: bool = True):
        """Request a stop; optionally wait for the in-flight trade to finish."""
        if self.bot is None:
            return
        self.bot.stop()

        if wait and self.task is not None:
            await self.task
            logger.info("All trading bots stopped")
        else:
            logger.info("Trading bot stopping after the current trade")

    def status(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"running": self.is_running, "stopping": self.is_stopping}
        if self.bot is not None:
            data["bot"] = self.bot.status()
        return data
