"""
piNFT: NFTs that hold ERC20 balances.

Extends the ERC721 ledger with:
- A royalty registry: each token's ``(recipient, basis points)`` list is
  fixed at mint and never changes
- An embedded ERC20 sub-ledger: tokens can take custody of ERC20 balances
  (``add_erc20``) which only the current NFT owner can pull back out
  (``transfer_erc20``)

Custody follows the NFT. Whoever owns the token, including a buyer after a
marketplace sale, controls the embedded balances. While a token sits in
marketplace escrow the marketplace is its owner, so nobody can withdraw.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable

from ..chain import atomic, normalize
from ..exceptions import (
    ContractNotFound,
    InsufficientCustodyBalance,
    InvalidAmount,
    NotApproved,
    NotOwner,
)
from .erc20 import ERC20Token
from .erc721 import ERC721Token
from .fee_policy import RoyaltyShare, validate_royalties

logger = logging.getLogger(__name__)


@dataclass
class PiNFT(ERC721Token):
    """ERC721 collection with royalties and embedded ERC20 custody."""

    royalties: dict[int, list[RoyaltyShare]] = field(default_factory=dict)
    # tokenId -> erc20 contract -> custodied amount
    erc20_balances: dict[int, dict[str, int]] = field(default_factory=dict)

    # ==================== Minting ====================

    def mint_nft(
        self,
        caller: str,
        to: str,
        uri: str,
        royalties: Iterable = (),
    ) -> int:
        """
        Mint a piNFT with a fixed royalty list.

        Args:
            caller: Message sender
            to: Initial owner
            uri: Metadata URI
            royalties: ``RoyaltyShare`` entries or ``(account, bps)`` pairs

        Returns:
            The new token id (ids start at 0)

        Raises:
            RoyaltyOverflow: If royalty basis points sum above 10000
        """
        shares = validate_royalties(royalties)

        with atomic(self):
            token_id = self._mint(to, uri)
            self.royalties[token_id] = shares
            self._emit(
                "TokenMinted",
                normalize(caller),
                normalize(to),
                token_id,
                uri=uri,
                royalties=[share.to_dict() for share in shares],
            )

        logger.info(
            "piNFT minted",
            extra={
                "event": "pinft.mint",
                "collection": self.symbol,
                "token_id": token_id,
                "to": normalize(to)[:10],
                "royalty_bps": sum(share.value for share in shares),
            }
        )
        return token_id

    def get_royalties(self, token_id: int) -> list[RoyaltyShare]:
        self._require_minted(token_id)
        return list(self.royalties.get(token_id, []))

    # ==================== Embedded ERC20 ====================

    def view_balance(self, token_id: int, erc20_address: str) -> int:
        """Amount of ``erc20_address`` held by ``token_id``; 0 if none."""
        return self.erc20_balances.get(token_id, {}).get(normalize(erc20_address), 0)

    def erc20_contracts(self, token_id: int) -> list[str]:
        """ERC20 contracts with a non-zero balance inside ``token_id``."""
        return [
            address
            for address, amount in self.erc20_balances.get(token_id, {}).items()
            if amount > 0
        ]

    def add_erc20(
        self,
        caller: str,
        from_addr: str,
        token_id: int,
        erc20_address: str,
        amount: int,
    ) -> bool:
        """
        Move ERC20 tokens from ``from_addr`` into the custody of ``token_id``.

        ``from_addr`` must have approved this contract for at least
        ``amount`` on the ERC20 contract, and must be the caller.

        Raises:
            NotApproved: If caller is not from_addr or the allowance is short
            InvalidAmount: If amount is not positive
        """
        caller_norm = normalize(caller)
        from_norm = normalize(from_addr)
        erc20_norm = normalize(erc20_address)

        if caller_norm != from_norm:
            raise NotApproved("piNFT: caller cannot deposit on behalf of another account")
        if amount <= 0:
            raise InvalidAmount("piNFT: deposit amount must be positive")
        self._require_minted(token_id)
        erc20 = self._erc20(erc20_norm)

        with atomic(self):
            holdings = self.erc20_balances.setdefault(token_id, {})
            holdings[erc20_norm] = holdings.get(erc20_norm, 0) + amount
            balance = holdings[erc20_norm]
            self._emit(
                "ERC20Added",
                from_norm,
                self.address,
                token_id,
                erc20=erc20_norm,
                amount=amount,
                balance=balance,
            )

            erc20.transfer_from(self.address, from_norm, self.address, amount)

        logger.info(
            "ERC20 added to piNFT",
            extra={
                "event": "pinft.erc20_added",
                "token_id": token_id,
                "erc20": erc20_norm[:10],
                "amount": amount,
                "balance": balance,
            }
        )
        return True

    def transfer_erc20(
        self,
        caller: str,
        token_id: int,
        to: str,
        erc20_address: str,
        amount: int,
    ) -> bool:
        """
        Release embedded ERC20 tokens held by ``token_id`` to ``to``.

        Raises:
            NotOwner: If caller does not own the NFT
            InsufficientCustodyBalance: If the NFT holds less than amount
        """
        caller_norm = normalize(caller)
        to_norm = normalize(to)
        erc20_norm = normalize(erc20_address)

        if self.owner_of(token_id) != caller_norm:
            raise NotOwner("piNFT: only the token owner can withdraw ERC20 tokens")
        if amount <= 0:
            raise InvalidAmount("piNFT: withdrawal amount must be positive")

        held = self.view_balance(token_id, erc20_norm)
        if held < amount:
            raise InsufficientCustodyBalance(
                f"piNFT: token {token_id} holds {held}, cannot release {amount}",
                details={"token_id": token_id, "erc20": erc20_norm},
            )
        erc20 = self._erc20(erc20_norm)

        with atomic(self):
            holdings = self.erc20_balances[token_id]
            holdings[erc20_norm] = held - amount
            if holdings[erc20_norm] == 0:
                del holdings[erc20_norm]
            self._emit(
                "ERC20Transferred",
                self.address,
                to_norm,
                token_id,
                erc20=erc20_norm,
                amount=amount,
                balance=held - amount,
            )

            erc20.transfer(self.address, to_norm, amount)

        logger.info(
            "ERC20 released from piNFT",
            extra={
                "event": "pinft.erc20_transferred",
                "token_id": token_id,
                "erc20": erc20_norm[:10],
                "to": to_norm[:10],
                "amount": amount,
            }
        )
        return True

    def _erc20(self, address: str) -> ERC20Token:
        if self.chain is None:
            raise ContractNotFound("piNFT: contract is not deployed on a chain")
        return self.chain.get_contract(address, ERC20Token)

    # ==================== Serialization ====================

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data["royalties"] = {
            token_id: [share.to_dict() for share in shares]
            for token_id, shares in self.royalties.items()
        }
        data["erc20_balances"] = {
            token_id: dict(holdings)
            for token_id, holdings in self.erc20_balances.items()
        }
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "PiNFT":
        token = super().from_dict(data)
        token.royalties = {
            int(token_id): [RoyaltyShare(**share) for share in shares]
            for token_id, shares in data.get("royalties", {}).items()
        }
        token.erc20_balances = {
            int(token_id): dict(holdings)
            for token_id, holdings in data.get("erc20_balances", {}).items()
        }
        return token
