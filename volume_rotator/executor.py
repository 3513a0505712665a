"""
Trade Executor Module

Runs one trade for one temp wallet: top-up, sizing, direction, slippage
protection, swap and (after a sell) the sweep back to the main wallet.
Chain failures are contained per wallet and reported in the TradeResult.
"""

from enum import Enum
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field
from datetime import datetime

from .config import ChainConfig, GlobalSettings
from .funding import FundingManager
from .randomness import RandomSource
from .wallet_store import WalletRecord
from .utils import (
    logger,
    ChainCallError,
    TradeError,
    UnprotectedSwapError,
    to_wei,
    from_wei,
    from_token_units,
    format_address,
    format_tx_hash,
)

# Sell fractions are applied to raw balances in parts per million
SELL_FRACTION_SCALE = 10 ** 6


class TradeAction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    SKIP = "SKIP"


@dataclass
class TradeResult:
    """Result of a trade attempt."""
    success: bool
    wallet_address: str
    action: TradeAction
    amount: Optional[float] = None        # native in for buys, tokens in for sells
    min_out: Optional[int] = None
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'wallet_address': self.wallet_address,
            'action': self.action.value,
            'amount': self.amount,
            'min_out': self.min_out,
            'tx_hash': self.tx_hash,
            'error': self.error,
            'timestamp': self.timestamp,
        }


class TradeExecutor:
    """
    Executes buy/sell swaps against the router for the target token.

    Trade sizes are randomized so the volume does not fingerprint one
    amount; direction is a coin flip whenever the wallet holds tokens.
    """

    def __init__(
        self,
        chain: ChainConfig,
        settings: GlobalSettings,
        client,
        funding: FundingManager,
        rng: RandomSource,
    ):
        self.chain = chain
        self.params = chain.trading
        self.settings = settings
        self.client = client
        self.funding = funding
        self.rng = rng

        self.buy_path: List[str] = [chain.wrapped_native, chain.target_token]
        self.sell_path: List[str] = [chain.target_token, chain.wrapped_native]

    @property
    def _tag(self) -> str:
        return f"[{self.chain.name}]"

    def draw_trade_amount(self) -> float:
        """Random trade size in native units, never below ``min_amount``."""
        low, high = self.params.min_amount, self.params.max_amount
        base = low + self.rng.random() * (high - low)
        variance = base * self.settings.random_variance * self.rng.uniform(-1, 1)
        return max(low, base + variance)

    def draw_sell_fraction(self) -> float:
        """Random fraction of the token balance to sell."""
        return self.rng.uniform(self.settings.sell_fraction_min, self.settings.sell_fraction_max)

    def sell_amount_raw(self, token_balance_raw: int) -> int:
        """Raw token amount to sell, never more than ``token_balance_raw``."""
        low = round(self.settings.sell_fraction_min * SELL_FRACTION_SCALE)
        high = min(round(self.settings.sell_fraction_max * SELL_FRACTION_SCALE), SELL_FRACTION_SCALE)
        ppm = min(max(round(self.draw_sell_fraction() * SELL_FRACTION_SCALE), low), high)
        return token_balance_raw * ppm // SELL_FRACTION_SCALE

    def adjusted_gas_price(self, gas_price: int) -> int:
        """Scale gas price by the multiplier using integer percent math."""
        return gas_price * int(self.params.gas_multiplier * 100) // 100

    def min_out_from_quote(self, quoted: Optional[int]) -> int:
        """
        Minimum acceptable output for a quoted amount.

        A failed quote gives 0 (no slippage protection) unless unprotected
        swaps are disabled, in which case the trade is refused.
        """
        if quoted is None:
            if not self.settings.allow_unprotected_swap:
                raise UnprotectedSwapError("Quote failed and unprotected swaps are disabled")
            logger.warning(f"{self._tag} Quote failed; swapping without slippage protection")
            return 0
        return quoted * self.settings.min_out_percent // 100

    async def quote(self, amount_in: int, path: List[str]) -> Optional[int]:
        """Router's expected output for ``amount_in``, or None if the call failed."""
        try:
            amounts = await self.client.get_amounts_out(amount_in, path)
        except ChainCallError as e:
            logger.error(f"{self._tag} Error calculating slippage: {e}")
            return None
        if not amounts:
            return None
        return int(amounts[-1])

    async def buy(self, wallet: WalletRecord, amount: float, gas_price: int) -> TradeResult:
        amount_in = to_wei(amount)
        min_out = self.min_out_from_quote(await self.quote(amount_in, self.buy_path))

        tx_hash = await self.client.swap_exact_native_for_tokens(
            wallet.private_key, amount_in, min_out, self.buy_path, gas_price
        )
        await self.client.await_confirmation(tx_hash)

        return TradeResult(
            success=True,
            wallet_address=wallet.address,
            action=TradeAction.BUY,
            amount=amount,
            min_out=min_out,
            tx_hash=tx_hash,
        )

    async def sell(self, wallet: WalletRecord, token_balance_raw: int, gas_price: int) -> TradeResult:
        amount_in = self.sell_amount_raw(token_balance_raw)
        amount = from_token_units(amount_in)

        approve_hash = await self.client.approve(
            wallet.private_key, self.chain.router_address, amount_in, gas_price
        )
        await self.client.await_confirmation(approve_hash)

        min_out = self.min_out_from_quote(await self.quote(amount_in, self.sell_path))

        tx_hash = await self.client.swap_exact_tokens_for_native(
            wallet.private_key, amount_in, min_out, self.sell_path, gas_price
        )
        await self.client.await_confirmation(tx_hash)

        await self.funding.sweep_to_main(wallet)

        return TradeResult(
            success=True,
            wallet_address=wallet.address,
            action=TradeAction.SELL,
            amount=amount,
            min_out=min_out,
            tx_hash=tx_hash,
        )

    async def execute_trade(self, wallet: WalletRecord) -> TradeResult:
        """
        Run one trade attempt for ``wallet``.

        Never raises for chain or trade failures; the caller records the
        attempt time whatever the outcome.
        """
        address = format_address(wallet.address)
        action = TradeAction.SKIP
        try:
            await self.funding.ensure_funded(wallet)

            native_balance = from_wei(await self.client.get_balance(wallet.address))
            token_balance_raw = await self.client.get_token_balance(wallet.address)

            trade_amount = self.draw_trade_amount()

            if native_balance < trade_amount + self.settings.min_native_balance:
                logger.info(f"{self._tag} Insufficient {self.chain.native_symbol} balance in wallet {address}")
                return TradeResult(
                    success=False,
                    wallet_address=wallet.address,
                    action=TradeAction.SKIP,
                    amount=trade_amount,
                    error="insufficient balance",
                )

            can_sell = token_balance_raw > 0
            is_buy = not can_sell or self.rng.coin_flip()
            action = TradeAction.BUY if is_buy else TradeAction.SELL

            gas_price = self.adjusted_gas_price(await self.client.get_gas_price())

            if is_buy:
                result = await self.buy(wallet, trade_amount, gas_price)
            else:
                result = await self.sell(wallet, token_balance_raw, gas_price)

            logger.info(
                f"{self._tag} Trade executed for wallet {address}: "
                f"{result.action.value} {result.amount:.6f} "
                f"({format_tx_hash(result.tx_hash or '')})"
            )
            return result

        except (ChainCallError, TradeError) as e:
            logger.error(f"{self._tag} Trade failed for wallet {address}: {e}")
            return TradeResult(
                success=False,
                wallet_address=wallet.address,
                action=action,
                error=str(e),
            )
