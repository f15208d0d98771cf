"""
Marketplace deployment.

Deploys the contract set the marketplace runs with: the piNFT collection
("Aconomy"/"ACO" by default), the sample ERC20 token and the piMarket
contract, all bound to one chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .chain import Chain
from .config import MarketConfig
from .contracts import ERC20Token, FeePolicy, PiMarket, PiNFT
from .market_metrics import MarketMetrics

logger = logging.getLogger(__name__)


@dataclass
class Deployment:
    """Handles to the deployed marketplace contracts."""

    chain: Chain
    pi_nft: PiNFT
    sample_erc20: ERC20Token
    pi_market: PiMarket
    deployer: str


def deploy_marketplace(
    deployer: str,
    config: MarketConfig | None = None,
    chain: Chain | None = None,
    metrics: MarketMetrics | None = None,
) -> Deployment:
    """
    Deploy piNFT, sampleERC20 and piMarket.

    Args:
        deployer: Account deploying the contracts; owns the sample ERC20
        config: Market configuration (environment defaults if omitted)
        chain: Chain to deploy on (a fresh one if omitted)
        metrics: Optional Prometheus metrics for the marketplace

    Returns:
        Deployment with all contract handles
    """
    config = config or MarketConfig.from_env()
    config.validate()
    chain = chain or Chain()

    pi_nft = chain.deploy(PiNFT(name=config.nft_name, symbol=config.nft_symbol))
    sample_erc20 = chain.deploy(
        ERC20Token(name="SampleERC20", symbol="SERC", owner=deployer)
    )
    pi_market = chain.deploy(PiMarket(fee_policy=FeePolicy.from_config(config), metrics=metrics))

    logger.info(
        "Marketplace deployed",
        extra={
            "event": "deployment.complete",
            "pi_nft": pi_nft.address,
            "sample_erc20": sample_erc20.address,
            "pi_market": pi_market.address,
            "fee_receiver": pi_market.fee_policy.fee_receiver,
        }
    )

    return Deployment(
        chain=chain,
        pi_nft=pi_nft,
        sample_erc20=sample_erc20,
        pi_market=pi_market,
        deployer=deployer.lower(),
    )
