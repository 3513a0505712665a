"""
Funding Manager
===============
Moves native currency between the main wallet and temp wallets.

Temp wallets are topped up before they trade and swept back to the main
wallet after a sell, so capital is recycled instead of stranded across the
pool. Funding and sweep failures are logged and swallowed; the trade that
follows simply fails its own balance check.
"""

from typing import Optional

from .config import ChainConfig, GlobalSettings
from .wallet_store import WalletRecord
from .utils import (
    logger,
    ChainCallError,
    FatalInitError,
    to_wei,
    from_wei,
    format_address,
    format_native,
)


class FundingManager:
    """Top-ups from and sweeps to the main wallet for one chain."""

    def __init__(self, chain: ChainConfig, settings: GlobalSettings, client, main_private_key: str):
        self.chain = chain
        self.settings = settings
        self.client = client
        self._main_key = main_private_key
        self.main_address = client.address_of(main_private_key)

    @property
    def _tag(self) -> str:
        return f"[{self.chain.name}]"

    async def check_main_balance(self) -> float:
        """
        Verify the main wallet can fund the pool.

        Returns:
            Main wallet balance in native units

        Raises:
            FatalInitError: balance below the configured floor or unreadable
        """
        try:
            balance = from_wei(await self.client.get_balance(self.main_address))
        except ChainCallError as e:
            raise FatalInitError(f"Could not read main wallet balance: {e}") from e

        logger.info(f"{self._tag} Main wallet balance: {format_native(balance, self.chain.native_symbol)}")

        if balance < self.settings.min_native_balance:
            raise FatalInitError(
                f"Insufficient balance in main wallet: {balance} {self.chain.native_symbol}"
            )
        return balance

    async def ensure_funded(self, wallet: WalletRecord) -> bool:
        """
        Send ``fund_amount`` from the main wallet if ``wallet`` is below the threshold.

        Returns:
            True if a top-up was sent and confirmed
        """
        try:
            balance = await self.client.get_balance(wallet.address)
            if balance >= to_wei(self.settings.fund_threshold):
                return False

            fund_amount = self.chain.trading.fund_amount
            gas_price = await self.client.get_gas_price()
            tx_hash = await self.client.transfer_native(
                self._main_key,
                wallet.address,
                to_wei(fund_amount),
                gas_price,
                self.settings.transfer_gas_limit,
            )
            await self.client.await_confirmation(tx_hash)

            logger.info(
                f"{self._tag} Funded wallet {format_address(wallet.address)} with "
                f"{format_native(fund_amount, self.chain.native_symbol)}"
            )
            return True

        except ChainCallError as e:
            logger.error(f"{self._tag} Error funding wallet {format_address(wallet.address)}: {e}")
            return False

    async def sweep_to_main(self, wallet: WalletRecord) -> Optional[int]:
        """
        Return a wallet's surplus native balance to the main wallet.

        Returns:
            Amount swept in wei, or None if nothing was sent
        """
        try:
            balance = await self.client.get_balance(wallet.address)
            if balance <= to_wei(self.settings.sweep_reserve):
                return None

            gas_price = await self.client.get_gas_price()
            gas_cost = gas_price * self.settings.transfer_gas_limit
            amount = balance - gas_cost
            if amount <= 0:
                return None

            tx_hash = await self.client.transfer_native(
                wallet.private_key,
                self.main_address,
                amount,
                gas_price,
                self.settings.transfer_gas_limit,
            )
            await self.client.await_confirmation(tx_hash)

            logger.info(
                f"{self._tag} Returned {format_native(from_wei(amount), self.chain.native_symbol)} "
                f"to main wallet from {format_address(wallet.address)}"
            )
            return amount

        except ChainCallError as e:
            logger.error(
                f"{self._tag} Error returning funds from wallet {format_address(wallet.address)}: {e}"
            )
            return None
