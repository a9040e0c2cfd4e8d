"""
Configuration management for the order stream client.

Loads environment variables and provides a typed configuration object for
the stream connection, the order store and the downstream cache revalidation.
"""

import os
import logging
from typing import Optional

from dotenv import load_dotenv
from eth_utils import is_hex_address, to_checksum_address

from .eip712 import MarketDomain
from .errors import ConfigError

# Load environment variables from .env file
load_dotenv()

DEFAULT_ORDER_STREAM_URL = "https://order-stream.beboundless.xyz"
DEFAULT_REVALIDATE_URL = "https://explorer.beboundless.xyz/api/orders/revalidate"
# TODO: chain, chain id and contract come from network config once more than sepolia is served
DEFAULT_PROOF_MARKET_CONTRACT_ADDRESS = "0x01e4130C977b39aaa28A744b8D3dEB23a5297654"
DEFAULT_CHAIN = "sepolia"
DEFAULT_CHAIN_ID = 11155111


class StreamConfig:
    """Configuration for the order stream ingestion client."""

    def __init__(self):
        # Identity and store (required)
        self.WS_WALLET_PRIVATE_KEY: str = self._get_required_env("WS_WALLET_PRIVATE_KEY")
        self.POSTGRES_URL: str = self._get_required_env("POSTGRES_URL", fallback="DATABASE_URL")

        # Order stream service
        self.ORDER_STREAM_URL: str = os.getenv("ORDER_STREAM_URL", DEFAULT_ORDER_STREAM_URL).rstrip("/")

        # Downstream cache revalidation
        self.REVALIDATE_URL: str = os.getenv("REVALIDATE_URL", DEFAULT_REVALIDATE_URL)
        self.REVALIDATE_INTERVAL_SECONDS: float = self._get_number_env("REVALIDATE_INTERVAL_SECONDS", 10.0, float)

        # Market network settings
        self.ORDER_CHAIN: str = os.getenv("ORDER_CHAIN", DEFAULT_CHAIN)
        self.ORDER_CHAIN_ID: int = self._get_number_env("ORDER_CHAIN_ID", DEFAULT_CHAIN_ID, int)
        self.PROOF_MARKET_CONTRACT_ADDRESS: str = os.getenv(
            "PROOF_MARKET_CONTRACT_ADDRESS", DEFAULT_PROOF_MARKET_CONTRACT_ADDRESS
        )

        # Ingestion settings
        self.ORDER_BATCH_SIZE: int = self._get_number_env("ORDER_BATCH_SIZE", 10, int)
        self.ORDER_MAX_QUEUE_SIZE: int = self._get_number_env("ORDER_MAX_QUEUE_SIZE", 1000, int)

        # Database pool
        self.DB_POOL_SIZE: int = self._get_number_env("DB_POOL_SIZE", 5, int)

        # Logging
        self.LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
        self.LOG_FORMAT: str = os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

        self._validate_config()

    def _get_required_env(self, key: str, fallback: Optional[str] = None) -> str:
        """Get required environment variable or raise ConfigError."""
        value = os.getenv(key)
        if not value and fallback:
            value = os.getenv(fallback)
        if not value:
            raise ConfigError(f"{key} env variable is not set")
        return value

    def _get_number_env(self, key: str, default, cast):
        """Get a numeric environment variable or raise ConfigError."""
        raw = os.getenv(key)
        if raw is None or raw.strip() == "":
            return default
        try:
            return cast(raw.strip())
        except ValueError:
            raise ConfigError(f"{key} must be a number, got {raw!r}")

    def _validate_config(self) -> None:
        """Validate configuration values."""
        if not is_hex_address(self.PROOF_MARKET_CONTRACT_ADDRESS):
            raise ConfigError(
                f"PROOF_MARKET_CONTRACT_ADDRESS is not a valid address: {self.PROOF_MARKET_CONTRACT_ADDRESS}"
            )
        if self.ORDER_BATCH_SIZE <= 0:
            raise ConfigError(f"ORDER_BATCH_SIZE must be positive, got {self.ORDER_BATCH_SIZE}")
        if self.ORDER_MAX_QUEUE_SIZE < self.ORDER_BATCH_SIZE:
            raise ConfigError("ORDER_MAX_QUEUE_SIZE must be at least ORDER_BATCH_SIZE")
        if not isinstance(logging.getLevelName(self.LOG_LEVEL.upper()), int):
            raise ConfigError(f"Unknown LOG_LEVEL: {self.LOG_LEVEL}")

    def market_domain(self) -> MarketDomain:
        """EIP-712 domain used for request digests."""
        return MarketDomain(
            chain_id=self.ORDER_CHAIN_ID,
            verifying_contract=to_checksum_address(self.PROOF_MARKET_CONTRACT_ADDRESS),
        )

    def __repr__(self) -> str:
        return (
            f"StreamConfig(stream={self.ORDER_STREAM_URL}, chain={self.ORDER_CHAIN}, "
            f"chain_id={self.ORDER_CHAIN_ID}, batch_size={self.ORDER_BATCH_SIZE}, "
            f"max_queue={self.ORDER_MAX_QUEUE_SIZE})"
        )
