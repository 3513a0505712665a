"""
Volume Rotator
==============
Temp wallet rotation and trade scheduling for generating volume on a
target token.

Features:
- Pool of disposable wallets persisted per chain
- Randomized active subset, trade timing, size and direction
- Top-ups from and sweeps back to one main wallet
- Gas-price gating and a loop that survives any per-cycle failure

Usage:
    from volume_rotator import BotController

    controller = BotController(main_private_key)
    await controller.start("avax", {"fund_amount": 0.4}, wallet_count=5)
"""

__version__ = "1.0.0"

from .config import Config, ConfigManager, ChainConfig, GlobalSettings, TradingParams
from .randomness import RandomSource
from .wallet_store import WalletRecord, WalletStore
from .selector import ActiveSetSelector
from .chain import Web3ChainClient
from .funding import FundingManager
from .executor import TradeExecutor, TradeResult, TradeAction
from .scheduler import TradeScheduler, BotState, SchedulerStats, eligible_wallets
from .bot import VolumeBot, BotController
from .utils import (
    logger,
    VolumeBotError,
    FatalInitError,
    AlreadyRunningError,
    ChainCallError,
    StorageError,
    TradeError,
    UnprotectedSwapError,
)

__all__ = [
    "Config",
    "ConfigManager",
    "ChainConfig",
    "GlobalSettings",
    "TradingParams",
    "RandomSource",
    "WalletRecord",
    "WalletStore",
    "ActiveSetSelector",
    "Web3ChainClient",
    "FundingManager",
    "TradeExecutor",
    "TradeResult",
    "TradeAction",
    "TradeScheduler",
    "BotState",
    "SchedulerStats",
    "eligible_wallets",
    "VolumeBot",
    "BotController",
    "logger",
    "VolumeBotError",
    "FatalInitError",
    "AlreadyRunningError",
    "ChainCallError",
    "StorageError",
    "TradeError",
    "UnprotectedSwapError",
]
