import sys
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure the src directory is on the Python path before collection runs.
project_root = Path(__file__).resolve().parents[2]
sys.path.insert(0, str(project_root / "src"))

from pimarket.core.chain import Chain  # noqa: E402
from pimarket.core.config import MarketConfig  # noqa: E402
from pimarket.core.deployment import deploy_marketplace  # noqa: E402

GENESIS_TIME = 1_700_000_000


@pytest.fixture
def accounts():
    """Named test accounts (lowercase hex addresses)."""
    return SimpleNamespace(
        alice="0x" + "a1" * 20,
        bob="0x" + "b0" * 20,
        carol="0x" + "c4" * 20,
        dave="0x" + "da" * 20,
        validator="0x" + "7a" * 20,
        royalty="0x" + "77" * 20,
        fee_receiver="0x" + "fe" * 20,
    )


@pytest.fixture
def config(accounts):
    return MarketConfig(fee_receiver=accounts.fee_receiver)


@pytest.fixture
def chain():
    return Chain(timestamp=GENESIS_TIME)


@pytest.fixture
def deployment(accounts, config, chain):
    """Fresh piNFT / sampleERC20 / piMarket deployment owned by alice."""
    return deploy_marketplace(accounts.alice, config=config, chain=chain)


@pytest.fixture
def funded(deployment, accounts):
    """Deployment where every trading account holds 100000 native units."""
    for name in ("alice", "bob", "carol", "dave"):
        deployment.chain.fund(getattr(accounts, name), 100_000)
    return deployment


@pytest.fixture
def approved_token(funded, accounts):
    """Token 0 minted to alice with a 500 bps royalty, approved for the market."""
    nft = funded.pi_nft
    token_id = nft.mint_nft(accounts.alice, accounts.alice, "URI1", [(accounts.royalty, 500)])
    nft.approve(accounts.alice, funded.pi_market.address, token_id)
    return token_id
