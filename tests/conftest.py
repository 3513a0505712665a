"""
Shared fixtures for the rotator test suite.

Run with: pytest tests/ -v
"""

from typing import Dict, List, Optional

import pytest
from eth_account import Account

from volume_rotator.config import ChainConfig, GlobalSettings, TradingParams
from volume_rotator.randomness import RandomSource
from volume_rotator.utils import ChainCallError

MAIN_KEY = "0x" + "1" * 64
TARGET_TOKEN = "0x" + "22" * 20
GWEI = 10 ** 9
ETHER = 10 ** 18


class ScriptedRandom(RandomSource):
    """RandomSource whose ``random()`` replays a fixed list, then returns ``default``."""

    def __init__(self, values, default: float = 0.5):
        super().__init__(seed=0)
        self.values = list(values)
        self.default = default

    def random(self) -> float:
        if self.values:
            return self.values.pop(0)
        return self.default


class FakeChainClient:
    """
    In-memory chain client.

    Balances are plain dicts keyed by address. Any method named in
    ``fail_on`` raises ChainCallError. Every call is recorded in ``calls``.
    """

    def __init__(self, gas_price: int = 25 * GWEI, quote_multiplier: int = 2):
        self.balances: Dict[str, int] = {}
        self.token_balances: Dict[str, int] = {}
        self.gas_price = gas_price
        self.quote_multiplier = quote_multiplier
        self.receipt_status = 1
        self.fail_on = set()
        self.calls: List[tuple] = []
        self._tx_count = 0

    @staticmethod
    def address_of(private_key: str) -> str:
        return Account.from_key(private_key).address

    def _record(self, name: str, *args):
        self.calls.append((name,) + args)
        if name in self.fail_on:
            raise ChainCallError(f"{name} failed: simulated RPC error")

    def _next_hash(self) -> str:
        self._tx_count += 1
        return "0x" + f"{self._tx_count:064x}"

    def call_names(self) -> List[str]:
        return [c[0] for c in self.calls]

    def calls_named(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]

    async def get_balance(self, address: str) -> int:
        self._record("get_balance", address)
        return self.balances.get(address, 0)

    async def get_token_balance(self, address: str) -> int:
        self._record("get_token_balance", address)
        return self.token_balances.get(address, 0)

    async def get_gas_price(self) -> int:
        self._record("get_gas_price")
        return self.gas_price

    async def get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        self._record("get_amounts_out", amount_in, list(path))
        return [amount_in, amount_in * self.quote_multiplier]

    async def swap_exact_native_for_tokens(self, private_key, amount_in, min_out, path, gas_price) -> str:
        self._record("swap_exact_native_for_tokens", private_key, amount_in, min_out, list(path), gas_price)
        return self._next_hash()

    async def swap_exact_tokens_for_native(self, private_key, amount_in, min_out, path, gas_price) -> str:
        self._record("swap_exact_tokens_for_native", private_key, amount_in, min_out, list(path), gas_price)
        return self._next_hash()

    async def approve(self, private_key, spender, amount, gas_price) -> str:
        self._record("approve", private_key, spender, amount, gas_price)
        return self._next_hash()

    async def transfer_native(self, private_key, to, amount, gas_price, gas_limit=21000) -> str:
        self._record("transfer_native", private_key, to, amount, gas_price, gas_limit)
        sender = self.address_of(private_key)
        self.balances[sender] = self.balances.get(sender, 0) - amount
        self.balances[to] = self.balances.get(to, 0) + amount
        return self._next_hash()

    async def await_confirmation(self, tx_hash: str) -> Optional[dict]:
        self._record("await_confirmation", tx_hash)
        if self.receipt_status != 1:
            raise ChainCallError(f"Transaction {tx_hash} reverted")
        return {"status": 1, "transactionHash": tx_hash}


class SleepRecorder:
    """Injectable sleep that returns immediately and remembers durations."""

    def __init__(self, on_sleep=None):
        self.durations: List[float] = []
        self.on_sleep = on_sleep

    async def __call__(self, seconds: float):
        self.durations.append(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)


@pytest.fixture
def settings():
    return GlobalSettings()


@pytest.fixture
def chain():
    return ChainConfig(
        key="avax",
        name="Avax C-chain",
        chain_id=43114,
        rpc_url="http://localhost:8545",
        router_address="0x60aE616a2155Ee3d9A68541Ba4544862310933d4",
        wrapped_native="0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7",
        target_token=TARGET_TOKEN,
        native_symbol="AVAX",
        trading=TradingParams(),
    )


@pytest.fixture
def registry(chain):
    return {"avax": chain}


@pytest.fixture
def client():
    return FakeChainClient()


@pytest.fixture
def main_address():
    return Account.from_key(MAIN_KEY).address
