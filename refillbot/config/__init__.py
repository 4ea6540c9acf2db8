"""
Configuration package for the refill bot.
Core configuration models, loading and constants.
"""

import os
from decimal import Decimal
from pathlib import Path
from typing import Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from refillbot.errors import ConfigError

# Load environment variables from .env file
load_dotenv()

# Default configuration file location
DEFAULT_CONFIG_PATH = os.getenv("REFILL_CONFIG", "config/config.yaml")

# Solana constants
SOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000
SOL_DECIMALS = 9

# Compute budget for swap transactions
DEFAULT_COMPUTE_UNIT_LIMIT = 200_000
TOKEN_2022_COMPUTE_UNIT_LIMIT = 400_000
TOKEN_2022_TAG = "token-2022"

# Token programs scanned for wallet holdings
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

# Priority fee paid on swaps (lamports)
DEFAULT_PRIORITY_FEE_LAMPORTS = 36699

# Jupiter endpoints
JUPITER_QUOTE_ENDPOINT = "https://quote-api.jup.ag/v6/quote"
JUPITER_SWAP_ENDPOINT = "https://quote-api.jup.ag/v6/swap"
JUPITER_TOKEN_ENDPOINT = "https://tokens.jup.ag/token"
JUPITER_PRICE_ENDPOINT = "https://api.jup.ag/price/v2"

# Quote requests allowed per second, process-wide
QUOTE_REQUESTS_PER_SECOND = 1.0

# Dividend ledger cache directory
DIVIDEND_CACHE_DIR = os.getenv("REFILL_CACHE_DIR", "cache")

# Logging configuration
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class WalletConfig(BaseModel):
    """Wallet key and balance thresholds."""
    private_key: str = ""
    min_sol_balance: Decimal = Decimal("0")
    reserve_amount: Decimal = Decimal("0")


class RpcConfig(BaseModel):
    """Solana RPC endpoint settings."""
    endpoint: str = ""
    timeout_seconds: int = 30


class TokenConfig(BaseModel):
    """Token pair and swap sizing."""
    input_mint: str = SOL_MINT
    output_mint: str = ""
    dividend_mint: str = ""
    swap_amount: Decimal = Decimal("0")
    slippage_bps: int = 0
    refresh_cache: bool = False
    cache_ttl_minutes: int = 60
    dexes: Optional[str] = None


class MonitorConfig(BaseModel):
    """Balance polling and retry settings."""
    check_interval_minutes: float = 5
    max_retries: int = 3
    retry_delay_seconds: float = 2


class JupiterConfig(BaseModel):
    """Aggregator endpoints and routing options."""
    quote_endpoint: str = JUPITER_QUOTE_ENDPOINT
    swap_endpoint: str = JUPITER_SWAP_ENDPOINT
    token_api_endpoint: str = JUPITER_TOKEN_ENDPOINT
    price_endpoint: str = JUPITER_PRICE_ENDPOINT
    only_direct_routes: bool = False
    priority_fee_lamports: int = DEFAULT_PRIORITY_FEE_LAMPORTS
    timeout_seconds: int = 30


class LoggingConfig(BaseModel):
    """Log sink settings."""
    level: str = LOG_LEVEL
    file_path: str = "logs/refillbot.log"
    rotation: str = "1 day"
    retention: str = "14 days"
    compress: bool = False


class BotConfig(BaseModel):
    """Complete bot configuration."""
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    rpc: RpcConfig = Field(default_factory=RpcConfig)
    token: TokenConfig = Field(default_factory=TokenConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    jupiter: JupiterConfig = Field(default_factory=JupiterConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def _validate(self) -> "BotConfig":
        if not self.wallet.private_key:
            raise ValueError("wallet private key is required")
        if not self.rpc.endpoint:
            raise ValueError("RPC endpoint is required")
        if not self.token.input_mint and not self.token.output_mint:
            raise ValueError("at least one token mint address must be provided")
        if self.wallet.min_sol_balance <= 0:
            raise ValueError("minimum SOL balance must be greater than 0")
        if self.token.swap_amount <= 0:
            raise ValueError("swap amount must be greater than 0")
        if self.token.slippage_bps <= 0:
            raise ValueError("slippage must be greater than 0 bps")
        if self.token.cache_ttl_minutes <= 0:
            raise ValueError("cache TTL must be greater than 0")
        if self.monitor.check_interval_minutes <= 0:
            raise ValueError("check interval must be greater than 0")
        if self.monitor.max_retries < 0:
            raise ValueError("max retries cannot be negative")
        return self

    @property
    def check_interval_seconds(self) -> float:
        return self.monitor.check_interval_minutes * 60

    @property
    def cache_ttl_seconds(self) -> float:
        return self.token.cache_ttl_minutes * 60


def _apply_env_overrides(raw: dict) -> dict:
    """Let secrets and endpoints come from the environment instead of the file."""
    private_key = os.getenv("REFILL_PRIVATE_KEY")
    if private_key:
        raw.setdefault("wallet", {})["private_key"] = private_key

    rpc_endpoint = os.getenv("REFILL_RPC_ENDPOINT")
    if rpc_endpoint:
        raw.setdefault("rpc", {})["endpoint"] = rpc_endpoint

    log_level = os.getenv("LOG_LEVEL")
    if log_level:
        raw.setdefault("logging", {})["level"] = log_level

    return raw


def load_config(config_path: Union[str, Path] = DEFAULT_CONFIG_PATH) -> BotConfig:
    """
    Load and validate the bot configuration.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Validated BotConfig

    Raises:
        ConfigError: If the file cannot be read or fails validation
    """
    path = Path(config_path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"error reading config file: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"error parsing config file: {e}") from e

    if not isinstance(raw, dict):
        raise ConfigError("config file must contain a mapping")

    try:
        config = BotConfig.model_validate(_apply_env_overrides(raw))
    except PydanticValidationError as e:
        raise ConfigError(f"config validation error: {e}") from e

    # Create logs directory if it doesn't exist
    logs_dir = Path(config.logging.file_path).parent
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"error creating logs directory: {e}") from e

    return config


__all__ = [
    'BotConfig',
    'WalletConfig',
    'RpcConfig',
    'TokenConfig',
    'MonitorConfig',
    'JupiterConfig',
    'LoggingConfig',
    'load_config',
    'DEFAULT_CONFIG_PATH',
    'SOL_MINT',
    'LAMPORTS_PER_SOL',
    'SOL_DECIMALS',
    'DEFAULT_COMPUTE_UNIT_LIMIT',
    'TOKEN_2022_COMPUTE_UNIT_LIMIT',
    'TOKEN_2022_TAG',
    'TOKEN_PROGRAM_ID',
    'TOKEN_2022_PROGRAM_ID',
    'DEFAULT_PRIORITY_FEE_LAMPORTS',
    'JUPITER_QUOTE_ENDPOINT',
    'JUPITER_SWAP_ENDPOINT',
    'JUPITER_TOKEN_ENDPOINT',
    'JUPITER_PRICE_ENDPOINT',
    'QUOTE_REQUESTS_PER_SECOND',
    'DIVIDEND_CACHE_DIR',
    'LOG_LEVEL',
]
