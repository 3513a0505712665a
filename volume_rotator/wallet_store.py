"""
Wallet Store
============
Durable storage for the temp wallet pool of one chain.

The JSON file is the only state that survives a restart: it is read once at
startup and overwritten after every scheduling cycle. Writes go to a temp
file in the same directory and are renamed over the target, so a crash
mid-write leaves the previous pool intact.
"""

import os
import json
import secrets
import tempfile
from pathlib import Path
from typing import List, Dict, Any, Union
from dataclasses import dataclass
from datetime import datetime

from eth_account import Account

from .utils import logger, StorageError

# Epoch seconds stay below this until the year 5138
MILLISECOND_EPOCH_THRESHOLD = 1e11


@dataclass
class WalletRecord:
    """One temp wallet."""
    address: str
    private_key: str
    last_trade_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "private_key": self.private_key,
            "last_trade_time": self.last_trade_time,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'WalletRecord':
        # camelCase keys come from pools written by the legacy tool
        private_key = data.get("private_key", data.get("privateKey"))
        if not data.get("address") or not private_key:
            raise ValueError(f"Wallet record missing address or key: {sorted(data)}")

        if "last_trade_time" in data:
            last_trade_time = float(data["last_trade_time"] or 0)
        else:
            # legacy pools store epoch milliseconds
            last_trade_time = float(data.get("lastTradeTime") or 0) / 1000
        if last_trade_time > MILLISECOND_EPOCH_THRESHOLD:
            last_trade_time /= 1000

        return cls(
            address=data["address"],
            private_key=private_key,
            last_trade_time=last_trade_time,
        )

    @classmethod
    def generate(cls) -> 'WalletRecord':
        """Create a record from a fresh cryptographically random key."""
        private_key = secrets.token_bytes(32).hex()
        account = Account.from_key(private_key)
        return cls(address=account.address, private_key=private_key)


class WalletStore:
    """Loads, generates and persists the wallet pool for one chain."""

    VERSION = "1.0"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.records: List[WalletRecord] = []

    def exists(self) -> bool:
        return self.path.exists()

    def load(self, desired_count: int) -> List[WalletRecord]:
        """
        Load the pool, creating it on first run.

        Args:
            desired_count: Number of wallets to generate when no file exists

        Returns:
            Wallet records in file order

        Raises:
            StorageError: file exists but is not a valid pool, or the first write failed
        """
        if self.path.exists():
            records = self._read()
            if len(records) != desired_count:
                logger.info(
                    f"Wallet file holds {len(records)} wallets "
                    f"(requested {desired_count}); using the file as-is"
                )
            logger.info(f"Loaded {len(records)} temporary wallets from {self.path}")
            self.records = records
            return records

        records = [WalletRecord.generate() for _ in range(desired_count)]
        self.persist(records)
        logger.info(f"Created {desired_count} new temporary wallets in {self.path}")
        self.records = records
        return records

    def _read(self) -> List[WalletRecord]:
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read wallet file {self.path}: {e}") from e

        # Legacy pools are a bare list of records
        entries = data if isinstance(data, list) else None
        if isinstance(data, dict):
            entries = data.get("wallets")
        if not isinstance(entries, list):
            raise StorageError(f"Wallet file {self.path} has no wallet list")

        try:
            return [WalletRecord.from_dict(entry) for entry in entries]
        except (AttributeError, TypeError, ValueError) as e:
            raise StorageError(f"Corrupt wallet record in {self.path}: {e}") from e

    def persist(self, records: List[WalletRecord]):
        """Overwrite the wallet file with ``records``."""
        data = {
            "version": self.VERSION,
            "updated_at": datetime.now().isoformat(),
            "wallets": [r.to_dict() for r in records],
        }

        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to save wallet file {self.path}: {e}") from e
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
