"""
Chain Client Module

Read/write access to one EVM chain: balances, gas price, router quotes,
swaps, native transfers and receipt waits.

web3 is synchronous, so every call runs in a worker thread; loops for
different chains stay responsive while one of them waits on its RPC.
Every failure leaves this module as a ChainCallError.
"""

import time
import asyncio
from typing import Any, Callable, Dict, List, Optional

from web3 import Web3
from eth_account import Account
from tenacity import retry, stop_after_attempt, wait_exponential

from .config import ChainConfig, GlobalSettings
from .utils import logger, ChainCallError, sanitize_error_message, format_tx_hash


# Swap router ABI (only the functions the bot calls)
ROUTER_ABI = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"}
        ],
        "name": "getAmountsOut",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "view",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactNATIVEForTokens",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "payable",
        "type": "function"
    },
    {
        "inputs": [
            {"internalType": "uint256", "name": "amountIn", "type": "uint256"},
            {"internalType": "uint256", "name": "amountOutMin", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "uint256", "name": "", "type": "uint256"},
            {"internalType": "address[]", "name": "path", "type": "address[]"},
            {"internalType": "address", "name": "to", "type": "address"},
            {"internalType": "uint256", "name": "deadline", "type": "uint256"}
        ],
        "name": "swapExactTokensForNATIVE",
        "outputs": [{"internalType": "uint256[]", "name": "amounts", "type": "uint256[]"}],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]

# ERC20 Token ABI (minimal)
ERC20_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "_owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "balance", "type": "uint256"}],
        "payable": False,
        "stateMutability": "view",
        "type": "function"
    },
    {
        "constant": False,
        "inputs": [
            {"name": "_spender", "type": "address"},
            {"name": "_value", "type": "uint256"}
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "payable": False,
        "stateMutability": "nonpayable",
        "type": "function"
    }
]

# Reads are idempotent and may be retried; writes never are.
_read_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
    reraise=True
)


class Web3ChainClient:
    """
    ChainClient backed by a web3 HTTP provider.

    All public methods are coroutines and raise ChainCallError on failure.
    """

    def __init__(self, chain: ChainConfig, settings: GlobalSettings, web3: Optional[Web3] = None):
        self.chain = chain
        self.settings = settings
        self.web3 = web3 or Web3(Web3.HTTPProvider(chain.rpc_url, request_kwargs={"timeout": 30}))

        self.router_address = Web3.to_checksum_address(chain.router_address)
        self.router = self.web3.eth.contract(address=self.router_address, abi=ROUTER_ABI)
        self.token = self.web3.eth.contract(
            address=Web3.to_checksum_address(chain.target_token),
            abi=ERC20_ABI
        )

    async def _run(self, operation: str, func: Callable, *args) -> Any:
        try:
            return await asyncio.to_thread(func, *args)
        except ChainCallError:
            raise
        except Exception as e:
            raise ChainCallError(f"{operation} failed: {sanitize_error_message(e)}") from e

    @staticmethod
    def address_of(private_key: str) -> str:
        return Account.from_key(private_key).address

    # Reads

    @_read_retry
    def _get_balance(self, address: str) -> int:
        return self.web3.eth.get_balance(Web3.to_checksum_address(address))

    @_read_retry
    def _get_token_balance(self, address: str) -> int:
        return self.token.functions.balanceOf(Web3.to_checksum_address(address)).call()

    @_read_retry
    def _get_gas_price(self) -> int:
        return self.web3.eth.gas_price

    @_read_retry
    def _get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        checksummed = [Web3.to_checksum_address(p) for p in path]
        return list(self.router.functions.getAmountsOut(amount_in, checksummed).call())

    async def get_balance(self, address: str) -> int:
        """Native balance in wei."""
        return await self._run("get_balance", self._get_balance, address)

    async def get_token_balance(self, address: str) -> int:
        """Target token balance in raw units."""
        return await self._run("get_token_balance", self._get_token_balance, address)

    async def get_gas_price(self) -> int:
        """Current gas price in wei."""
        return await self._run("get_gas_price", self._get_gas_price)

    async def get_amounts_out(self, amount_in: int, path: List[str]) -> List[int]:
        """Router quote for ``amount_in`` along ``path``."""
        return await self._run("get_amounts_out", self._get_amounts_out, amount_in, path)

    # Writes

    def _deadline(self) -> int:
        return int(time.time()) + self.settings.swap_deadline_seconds

    def _sign_and_send(self, private_key: str, tx: Dict[str, Any]) -> str:
        account = Account.from_key(private_key)
        if 'nonce' not in tx:
            tx['nonce'] = self.web3.eth.get_transaction_count(account.address, 'pending')
        tx['chainId'] = self.chain.chain_id

        signed = account.sign_transaction(tx)
        tx_hash = self.web3.to_hex(self.web3.eth.send_raw_transaction(signed.raw_transaction))
        logger.debug(f"[{self.chain.name}] Sent {format_tx_hash(tx_hash)} from {account.address}")
        return tx_hash

    def _send_contract_call(self, private_key: str, call, value: int, gas: int, gas_price: int) -> str:
        account = Account.from_key(private_key)
        tx = call.build_transaction({
            'from': account.address,
            'value': value,
            'gas': gas,
            'gasPrice': gas_price,
            'nonce': self.web3.eth.get_transaction_count(account.address, 'pending'),
            'chainId': self.chain.chain_id,
        })
        return self._sign_and_send(private_key, tx)

    def _swap_native_for_tokens(self, private_key, amount_in, min_out, path, gas_price) -> str:
        recipient = self.address_of(private_key)
        call = self.router.functions.swapExactNATIVEForTokens(
            min_out, 0, 0,
            [Web3.to_checksum_address(p) for p in path],
            recipient,
            self._deadline()
        )
        return self._send_contract_call(
            private_key, call, amount_in, self.settings.swap_gas_limit, gas_price
        )

    def _swap_tokens_for_native(self, private_key, amount_in, min_out, path, gas_price) -> str:
        recipient = self.address_of(private_key)
        call = self.router.functions.swapExactTokensForNATIVE(
            amount_in, min_out, 0, 0,
            [Web3.to_checksum_address(p) for p in path],
            recipient,
            self._deadline()
        )
        return self._send_contract_call(
            private_key, call, 0, self.settings.swap_gas_limit, gas_price
        )

    def _approve(self, private_key, spender, amount, gas_price) -> str:
        call = self.token.functions.approve(Web3.to_checksum_address(spender), amount)
        return self._send_contract_call(private_key, call, 0, 100000, gas_price)

    def _transfer_native(self, private_key, to, amount, gas_price, gas_limit) -> str:
        tx = {
            'to': Web3.to_checksum_address(to),
            'value': amount,
            'gas': gas_limit,
            'gasPrice': gas_price,
        }
        return self._sign_and_send(private_key, tx)

    def _wait_for_receipt(self, tx_hash: str) -> Dict[str, Any]:
        receipt = self.web3.eth.wait_for_transaction_receipt(
            tx_hash, timeout=self.settings.confirmation_timeout_seconds
        )
        if receipt['status'] != 1:
            raise ChainCallError(f"Transaction {format_tx_hash(tx_hash)} reverted")
        return dict(receipt)

    async def swap_exact_native_for_tokens(
        self, private_key: str, amount_in: int, min_out: int, path: List[str], gas_price: int
    ) -> str:
        return await self._run(
            "swap_exact_native_for_tokens", self._swap_native_for_tokens,
            private_key, amount_in, min_out, path, gas_price
        )

    async def swap_exact_tokens_for_native(
        self, private_key: str, amount_in: int, min_out: int, path: List[str], gas_price: int
    ) -> str:
        return await self._run(
            "swap_exact_tokens_for_native", self._swap_tokens_for_native,
            private_key, amount_in, min_out, path, gas_price
        )

    async def approve(self, private_key: str, spender: str, amount: int, gas_price: int) -> str:
        return await self._run("approve", self._approve, private_key, spender, amount, gas_price)

    async def transfer_native(
        self, private_key: str, to: str, amount: int, gas_price: int, gas_limit: int = 21000
    ) -> str:
        return await self._run(
            "transfer_native", self._transfer_native, private_key, to, amount, gas_price, gas_limit
        )

    async def await_confirmation(self, tx_hash: str) -> Dict[str, Any]:
        """Wait for the receipt, bounded by the confirmation timeout."""
        return await self._run("await_confirmation", self._wait_for_receipt, tx_hash)
