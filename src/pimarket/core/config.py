"""
pimarket Configuration

All settings are read from environment variables with safe defaults.
The fee split defaults (9400/500/100 basis points) are part of the wire
contract with existing callers; override them only on private deployments.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

BASIS_POINTS = 10000
ZERO_ADDRESS = "0x" + "0" * 40

DEFAULT_SELLER_BPS = 9400
DEFAULT_ROYALTY_BPS = 500
DEFAULT_FEE_BPS = 100
DEFAULT_FEE_RECEIVER = "0x" + "fe" * 20

DEFAULT_NFT_NAME = "Aconomy"
DEFAULT_NFT_SYMBOL = "ACO"


def _get_int(env_var: str, default: int) -> int:
    raw = os.getenv(env_var, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{env_var} must be an integer, got {raw!r}",
            details={"env_var": env_var},
        ) from exc


@dataclass
class MarketConfig:
    """Effective configuration for a marketplace deployment."""

    seller_bps: int = DEFAULT_SELLER_BPS
    royalty_bps: int = DEFAULT_ROYALTY_BPS
    fee_bps: int = DEFAULT_FEE_BPS
    fee_receiver: str = DEFAULT_FEE_RECEIVER
    nft_name: str = DEFAULT_NFT_NAME
    nft_symbol: str = DEFAULT_NFT_SYMBOL
    log_level: str = "INFO"
    log_file: str | None = None
    environment: str = "development"

    @classmethod
    def from_env(cls) -> "MarketConfig":
        """Build a configuration from ``PIMARKET_*`` environment variables."""
        config = cls(
            seller_bps=_get_int("PIMARKET_SELLER_BPS", DEFAULT_SELLER_BPS),
            royalty_bps=_get_int("PIMARKET_ROYALTY_BPS", DEFAULT_ROYALTY_BPS),
            fee_bps=_get_int("PIMARKET_FEE_BPS", DEFAULT_FEE_BPS),
            fee_receiver=os.getenv("PIMARKET_FEE_RECEIVER", DEFAULT_FEE_RECEIVER).strip().lower(),
            nft_name=os.getenv("PIMARKET_NFT_NAME", DEFAULT_NFT_NAME),
            nft_symbol=os.getenv("PIMARKET_NFT_SYMBOL", DEFAULT_NFT_SYMBOL),
            log_level=os.getenv("PIMARKET_LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("PIMARKET_LOG_FILE") or None,
            environment=os.getenv("PIMARKET_ENVIRONMENT", "development"),
        )
        config.validate()
        logger.debug(
            "Market configuration loaded",
            extra={"event": "config.loaded", "environment": config.environment},
        )
        return config

    def validate(self) -> None:
        """
        Check the fee split and identities.

        Raises:
            ConfigurationError: If any basis point value is negative, the
                split does not sum to 10000, or the fee receiver is unset
        """
        for name in ("seller_bps", "royalty_bps", "fee_bps"):
            if getattr(self, name) < 0:
                raise ConfigurationError(f"{name} cannot be negative")

        total = self.seller_bps + self.royalty_bps + self.fee_bps
        if total != BASIS_POINTS:
            raise ConfigurationError(
                f"Fee split must sum to {BASIS_POINTS} basis points, got {total}",
                details={
                    "seller_bps": self.seller_bps,
                    "royalty_bps": self.royalty_bps,
                    "fee_bps": self.fee_bps,
                },
            )

        if not self.fee_receiver or self.fee_receiver == ZERO_ADDRESS:
            raise ConfigurationError("fee_receiver must be a non-zero address")

        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigurationError(f"Unknown log level {self.log_level!r}")

    def to_dict(self) -> dict:
        return {
            "seller_bps": self.seller_bps,
            "royalty_bps": self.royalty_bps,
            "fee_bps": self.fee_bps,
            "fee_receiver": self.fee_receiver,
            "nft_name": self.nft_name,
            "nft_symbol": self.nft_symbol,
            "log_level": self.log_level,
            "log_file": self.log_file,
            "environment": self.environment,
        }
