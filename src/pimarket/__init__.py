"""
pimarket - piNFT Marketplace Engine

An in-process ledger simulation for trading piNFT tokens: non-fungible
tokens that hold embedded ERC20 balances and carry per-token royalties.

Main Components:
- Chain: hosting ledger with native balances, block clock and atomic transactions
- PiNFT: NFT ledger with royalty registry and embedded ERC20 custody
- PiMarket: fixed-price and auction sale engines with fee splitting
- SampleERC20: fungible token used for embedded balances
"""

__version__ = "0.1.0"
__author__ = "Aconomy Development Team"

__all__ = []
