"""
Configuration Management Module

Chain registry, trading parameters and global settings for the rotator,
plus a YAML config file with the main wallet key encrypted at rest.
Uses Fernet symmetric encryption with password-derived keys.
"""

import os
import base64
import dataclasses
from pathlib import Path
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, asdict, field

import yaml
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .utils import logger, FatalInitError, validate_address


@dataclass(frozen=True)
class TradingParams:
    """Per-chain trading parameters. Fixed for the lifetime of a bot."""

    min_amount: float = 0.1          # native units per trade
    max_amount: float = 0.3
    min_interval: float = 600        # seconds between trades of one wallet
    max_interval: float = 1200
    gas_multiplier: float = 1.1
    fund_amount: float = 0.5         # top-up sent to a temp wallet
    max_gas_price_gwei: float = 50

    def validate(self):
        """Raise ValueError if the parameters are inconsistent."""
        if self.min_amount < 0 or self.max_amount < self.min_amount:
            raise ValueError(
                f"Invalid trade amount range: {self.min_amount} - {self.max_amount}"
            )
        if self.min_interval < 0 or self.max_interval < self.min_interval:
            raise ValueError(
                f"Invalid trade interval range: {self.min_interval} - {self.max_interval}"
            )
        if self.gas_multiplier <= 0:
            raise ValueError("Gas multiplier must be positive")
        if self.fund_amount <= 0:
            raise ValueError("Fund amount must be positive")
        if self.max_gas_price_gwei <= 0:
            raise ValueError("Max gas price must be positive")

    def with_overrides(self, overrides: Optional[Dict[str, Any]] = None) -> "TradingParams":
        """Return a copy with the given fields replaced. None values are ignored."""
        if not overrides:
            return self
        valid = {
            k: float(v) for k, v in overrides.items()
            if k in self.__dataclass_fields__ and v is not None
        }
        params = dataclasses.replace(self, **valid)
        params.validate()
        return params

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradingParams":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class GlobalSettings:
    """Settings shared by every chain."""

    random_variance: float = 0.01
    min_native_balance: float = 0.001       # main wallet floor and per-trade safety floor
    active_wallet_fraction: float = 0.7
    active_set_refresh_probability: float = 0.1
    retry_delay_seconds: float = 60
    check_interval_seconds: float = 30
    fund_threshold: float = 0.05            # top up temp wallets below this balance
    sweep_reserve: float = 0.01             # sweep only above this balance
    jitter_min_seconds: float = 1.0
    jitter_max_seconds: float = 3.0
    min_out_percent: int = 95
    sell_fraction_min: float = 0.3
    sell_fraction_max: float = 0.7
    swap_gas_limit: int = 300000
    transfer_gas_limit: int = 21000
    swap_deadline_seconds: int = 1200
    confirmation_timeout_seconds: float = 120
    allow_unprotected_swap: bool = True     # swap with min_out=0 when the quote fails

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GlobalSettings":
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


@dataclass
class ChainConfig:
    """One supported chain: endpoints, contracts and trading parameters."""

    key: str
    name: str
    chain_id: int
    rpc_url: Optional[str]
    router_address: str
    wrapped_native: str
    target_token: Optional[str]
    native_symbol: str = "ETH"
    trading: TradingParams = field(default_factory=TradingParams)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def default_chains() -> Dict[str, ChainConfig]:
    """Build the chain registry, reading endpoints from the environment."""
    return {
        "avax": ChainConfig(
            key="avax",
            name="Avax C-chain",
            chain_id=43114,
            rpc_url=os.environ.get("AVAX_RPC_URL"),
            router_address="0x60aE616a2155Ee3d9A68541Ba4544862310933d4",
            wrapped_native="0xB31f66AA3C1e785363F0875A1B74E27b85FD66c7",
            target_token=os.environ.get("AVAX_TARGET_TOKEN"),
            native_symbol="AVAX",
            trading=TradingParams(
                min_amount=0.1,
                max_amount=0.3,
                min_interval=10 * 60,
                max_interval=20 * 60,
                gas_multiplier=1.1,
                fund_amount=0.5,
                max_gas_price_gwei=50,
            ),
        ),
    }


def get_chain_config(
    chain_key: str,
    overrides: Optional[Dict[str, Any]] = None,
    registry: Optional[Dict[str, ChainConfig]] = None,
) -> ChainConfig:
    """
    Look up a chain and apply trading overrides.

    Raises:
        FatalInitError: unknown chain, missing endpoint or token, malformed
            contract address, or invalid overrides
    """
    registry = registry if registry is not None else default_chains()
    chain = registry.get(chain_key)
    if chain is None:
        raise FatalInitError(f"Unsupported chain: {chain_key}")

    if not chain.rpc_url:
        raise FatalInitError(f"No RPC URL configured for {chain.name}")
    if not chain.target_token:
        raise FatalInitError(f"No target token configured for {chain.name}")
    for label, address in (
        ("router", chain.router_address),
        ("wrapped native token", chain.wrapped_native),
        ("target token", chain.target_token),
    ):
        if not validate_address(address):
            raise FatalInitError(f"Invalid {label} address for {chain.name}: {address!r}")

    try:
        trading = chain.trading.with_overrides(overrides)
    except (TypeError, ValueError) as e:
        raise FatalInitError(f"Invalid trading parameters for {chain.name}: {e}") from e

    return dataclasses.replace(chain, trading=trading)


@dataclass
class Config:
    """Bot configuration settings."""

    # Operation
    temp_wallet_count: int = 5
    active_chains: List[str] = field(default_factory=lambda: ["avax"])
    wallet_dir: str = "."
    log_level: str = "INFO"
    log_file: str = "./volume_rotator.log"

    # Per-chain overrides keyed by chain key, e.g. {"avax": {"fund_amount": 0.4}}
    chain_overrides: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    settings: GlobalSettings = field(default_factory=GlobalSettings)

    # Security
    encrypted_private_key: Optional[str] = None
    salt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create Config from dictionary."""
        valid_fields = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        if isinstance(valid_fields.get("settings"), dict):
            valid_fields["settings"] = GlobalSettings.from_dict(valid_fields["settings"])
        if isinstance(valid_fields.get("active_chains"), str):
            valid_fields["active_chains"] = _split_chains(valid_fields["active_chains"])
        return cls(**valid_fields)

    def wallet_file(self, chain_key: str) -> Path:
        return Path(self.wallet_dir) / f"temp_wallets_{chain_key}.json"


def _split_chains(value: str) -> List[str]:
    return [c.strip() for c in value.split(",") if c.strip()]


class ConfigManager:
    """Manages configuration file with encrypted main wallet key."""

    ENV_PRIVATE_KEY = "MAIN_WALLET_PRIVATE_KEY"

    def __init__(self, config_path: Path = Path("./rotator_config.yaml")):
        self.config_path = Path(config_path)
        self._kdf_iterations = 480000  # OWASP recommended minimum

    def _derive_key(self, password: str, salt: bytes) -> bytes:
        """Derive encryption key from password using PBKDF2."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=self._kdf_iterations,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode()))

    def _encrypt_private_key(self, private_key: str, password: str, salt: bytes) -> str:
        """Encrypt private key with password."""
        pk_clean = private_key.strip()
        if pk_clean.startswith("0x"):
            pk_clean = pk_clean[2:]

        if len(pk_clean) != 64:
            raise ValueError("Private key must be 64 hex characters")
        try:
            int(pk_clean, 16)
        except ValueError:
            raise ValueError("Private key must be valid hex")

        f = Fernet(self._derive_key(password, salt))
        encrypted = f.encrypt(pk_clean.encode())
        return base64.b64encode(encrypted).decode()

    def _decrypt_private_key(self, encrypted_key: str, password: str, salt: bytes) -> str:
        """Decrypt private key with password."""
        f = Fernet(self._derive_key(password, salt))
        decrypted = f.decrypt(base64.b64decode(encrypted_key.encode()))
        return "0x" + decrypted.decode()

    def create_config(self, config: Config, private_key: str, password: str) -> Config:
        """Store a new configuration with the main wallet key encrypted."""
        salt = os.urandom(16)
        config.encrypted_private_key = self._encrypt_private_key(private_key, password, salt)
        config.salt = base64.b64encode(salt).decode()

        self._save_config(config)
        logger.info(f"Configuration created at {self.config_path}")
        return config

    def read_raw_config(self) -> Dict[str, Any]:
        """Read config without decrypting."""
        if not self.config_path.exists():
            return {}
        with open(self.config_path, 'r') as f:
            return yaml.safe_load(f) or {}

    def load_config(self) -> Config:
        """Load configuration from file and environment."""
        try:
            data = self.read_raw_config()
        except yaml.YAMLError as e:
            raise FatalInitError(f"Invalid config file {self.config_path}: {e}") from e

        config = Config.from_dict(data)

        if os.environ.get("TEMP_WALLET_COUNT"):
            config.temp_wallet_count = int(os.environ["TEMP_WALLET_COUNT"])
        if os.environ.get("ACTIVE_CHAINS"):
            config.active_chains = _split_chains(os.environ["ACTIVE_CHAINS"])

        return config

    def resolve_private_key(self, config: Config, password: Optional[str] = None) -> str:
        """
        Return the main wallet key: decrypted from the file, else from the environment.

        Raises:
            FatalInitError: no key available or wrong password
        """
        if config.encrypted_private_key and config.salt:
            if password is None:
                raise FatalInitError("Config holds an encrypted key; a password is required")
            try:
                return self._decrypt_private_key(
                    config.encrypted_private_key,
                    password,
                    base64.b64decode(config.salt)
                )
            except InvalidToken as e:
                raise FatalInitError("Failed to decrypt main wallet key (wrong password?)") from e

        key = os.environ.get(self.ENV_PRIVATE_KEY)
        if not key:
            raise FatalInitError(
                "Main wallet private key not found in config or environment variables"
            )
        return key

    def _save_config(self, config: Config):
        """Save configuration to YAML file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(self.config_path, 'w') as f:
            yaml.safe_dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

        # Owner read/write only
        os.chmod(self.config_path, 0o600)

        logger.info(f"Configuration saved to {self.config_path}")
