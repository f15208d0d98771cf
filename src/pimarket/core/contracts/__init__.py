"""
piNFT marketplace contracts.

This module provides:
- ERC20: Fungible token held inside piNFTs
- ERC721: Base non-fungible token ledger
- PiNFT: NFTs with royalties and embedded ERC20 custody
- PiMarket: Fixed-price and auction marketplace
- FeePolicy: Seller/royalty/fee split of sale proceeds
"""

from .erc20 import ERC20Token
from .erc721 import ERC721Token, NFTEvent
from .fee_policy import FeePolicy, RoyaltyShare, SaleSplit, validate_royalties
from .pi_market import BidOrder, MarketEvent, PiMarket, SaleState, TokenMeta
from .pi_nft import PiNFT

__all__ = [
    # Token Standards
    "ERC20Token",
    "ERC721Token",
    "NFTEvent",
    # piNFT
    "PiNFT",
    "RoyaltyShare",
    "validate_royalties",
    # Marketplace
    "PiMarket",
    "TokenMeta",
    "BidOrder",
    "MarketEvent",
    "SaleState",
    # Fees
    "FeePolicy",
    "SaleSplit",
]
