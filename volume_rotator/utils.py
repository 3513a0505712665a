"""
Utility Module

Logging, exception types, unit conversion and formatting helpers shared by
every part of the rotator.

- Rich console logging with an optional log file
- Secure logging that redacts private keys before they reach any handler
- One exception hierarchy for init, chain, storage and trade failures
"""

import os
import re
import logging
from decimal import Decimal
from typing import Optional, Union

from web3 import Web3
from rich.logging import RichHandler
from rich.console import Console


# Global console for Rich output
console = Console()

LOGGER_NAME = "volume_rotator"


class VolumeBotError(Exception):
    """Base class for all rotator errors."""
    pass


class FatalInitError(VolumeBotError):
    """Raised when a bot cannot be constructed or initialized."""
    pass


class AlreadyRunningError(VolumeBotError):
    """Raised when starting a bot that is already running."""
    pass


class ChainCallError(VolumeBotError):
    """Raised when any RPC or contract call fails."""
    pass


class StorageError(VolumeBotError):
    """Raised when the wallet file cannot be read or written."""
    pass


class TradeError(VolumeBotError):
    """Raised when a trade is refused before reaching the chain."""
    pass


class UnprotectedSwapError(TradeError):
    """Raised when a quote failed and unprotected swaps are disabled."""
    pass


class SecureLogger:
    """
    Logger that sanitizes sensitive data from log messages.

    Temp wallet secrets live in memory for the whole run, so every message
    goes through here before reaching a handler.
    """

    SENSITIVE_PATTERNS = [
        (r'0x[a-fA-F0-9]{64}(?![a-fA-F0-9])', '[PRIVATE_KEY_REDACTED]'),
        (r'(?<![a-fA-F0-9x])[a-fA-F0-9]{64}(?![a-fA-F0-9])', '[PRIVATE_KEY_REDACTED]'),
        (r'password["\']?\s*[:=]\s*["\']?[^\s"\',]+', 'password=[REDACTED]'),
        (r'private_?key["\']?\s*[:=]\s*["\']?[^\s"\',]+', 'private_key=[REDACTED]'),
    ]

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def _sanitize(self, msg) -> str:
        """Remove sensitive data from log message."""
        if not isinstance(msg, str):
            msg = str(msg)

        sanitized = msg
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)
        return sanitized

    def debug(self, msg: str, *args, **kwargs):
        self._logger.debug(self._sanitize(msg), *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._logger.info(self._sanitize(msg), *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._logger.warning(self._sanitize(msg), *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._logger.error(self._sanitize(msg), *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        self._logger.exception(self._sanitize(msg), *args, **kwargs)

    def critical(self, msg: str, *args, **kwargs):
        self._logger.critical(self._sanitize(msg), *args, **kwargs)


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> SecureLogger:
    """
    Setup logging with Rich console output and an optional log file.

    Reconfigures the shared ``volume_rotator`` logger in place, so the
    module-level ``logger`` keeps working after the CLI calls this again.
    """
    base = logging.getLogger(LOGGER_NAME)
    base.setLevel(getattr(logging, log_level.upper()))
    base.propagate = False

    # Remove existing handlers
    for handler in list(base.handlers):
        base.removeHandler(handler)
        handler.close()

    rich_handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        rich_tracebacks=True
    )
    rich_handler.setLevel(getattr(logging, log_level.upper()))
    rich_handler.setFormatter(logging.Formatter("%(message)s"))
    base.addHandler(rich_handler)

    if log_file:
        log_path = os.path.abspath(log_file)
        os.makedirs(os.path.dirname(log_path) or ".", exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        base.addHandler(file_handler)

    return SecureLogger(base)


logger = setup_logging()


# Unit conversion

TOKEN_DECIMALS = 18


def to_wei(amount: Union[float, Decimal, str], unit: str = "ether") -> int:
    """Convert a human amount to wei without float rounding surprises."""
    return int(Web3.to_wei(Decimal(str(amount)), unit))


def from_wei(amount_wei: int, unit: str = "ether") -> float:
    """Convert wei to a human float amount."""
    return float(Web3.from_wei(int(amount_wei), unit))


def from_token_units(raw: int, decimals: int = TOKEN_DECIMALS) -> float:
    return float(Decimal(int(raw)) / (Decimal(10) ** decimals))


# Formatting utilities

def format_native(amount: float, symbol: str = "AVAX") -> str:
    """Format a native-currency amount with appropriate precision."""
    if amount < 0.001:
        return f"{amount:.6f} {symbol}"
    elif amount < 1:
        return f"{amount:.4f} {symbol}"
    else:
        return f"{amount:.2f} {symbol}"


def format_duration(seconds: int) -> str:
    """Format duration in seconds to human-readable string."""
    seconds = int(seconds)
    if seconds < 60:
        return f"{seconds}s"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        return f"{hours}h {minutes}m" if minutes > 0 else f"{hours}h"


def format_address(address: str, length: int = 6) -> str:
    """Format Ethereum address with ellipsis."""
    if len(address) <= length * 2 + 2:
        return address
    return f"{address[:length + 2]}...{address[-length:]}"


def format_tx_hash(tx_hash: str, length: int = 8) -> str:
    """Format transaction hash with ellipsis."""
    if len(tx_hash) <= length * 2:
        return tx_hash
    return f"{tx_hash[:length]}...{tx_hash[-length:]}"


# Validation utilities

def validate_private_key(key: str) -> bool:
    """Validate private key format."""
    if not key:
        return False

    key_clean = key[2:] if key.startswith("0x") else key

    if len(key_clean) != 64:
        return False

    try:
        int(key_clean, 16)
        return True
    except ValueError:
        return False


def validate_address(address: str) -> bool:
    """Validate Ethereum address format."""
    if not address:
        return False
    try:
        return Web3.is_address(address)
    except (TypeError, ValueError):
        return False


def sanitize_error_message(error) -> str:
    """
    Sanitize error messages to remove sensitive data.

    Args:
        error: Original error or message

    Returns:
        Sanitized message safe for display
    """
    if not isinstance(error, str):
        error = str(error)

    patterns = [
        (r'0x[a-fA-F0-9]{64}(?![a-fA-F0-9])', '[PRIVATE_KEY]'),
        (r'https?://[^\s]+', '[URL]'),
        (r'password["\']?\s*[:=]\s*\S+', 'password=[REDACTED]'),
    ]

    sanitized = error
    for pattern, replacement in patterns:
        sanitized = re.sub(pattern, replacement, sanitized, flags=re.IGNORECASE)

    return sanitized
