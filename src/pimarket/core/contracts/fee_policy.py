"""
Sale proceeds splitting.

Every settlement, fixed-price or auction, divides the payment three ways in
basis points: seller (9400), royalty pool (500) and platform fee (100).
The royalty pool is shared among the NFT's royalty recipients in
proportion to the basis points stored for each of them at mint.

Remainder policy: all integer truncation dust goes to the fee receiver, so
the payouts of a split always add up to the payment exactly. An NFT with no
royalty recipients pays its royalty pool to the seller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Sequence

from ..chain import normalize
from ..config import BASIS_POINTS, ZERO_ADDRESS, MarketConfig
from ..exceptions import ConfigurationError, InvalidAddress, InvalidAmount, RoyaltyOverflow


@dataclass(frozen=True)
class RoyaltyShare:
    """One royalty entry: recipient and basis points."""

    account: str
    value: int

    def to_dict(self) -> dict:
        return {"account": self.account, "value": self.value}


def validate_royalties(royalties: Iterable) -> list[RoyaltyShare]:
    """
    Normalize royalty entries given as ``RoyaltyShare`` or ``(account, bps)``.

    Raises:
        InvalidAddress: If a recipient is the zero address
        InvalidAmount: If an entry has negative basis points
        RoyaltyOverflow: If the basis points sum above 10000
    """
    shares = []
    for entry in royalties:
        if isinstance(entry, RoyaltyShare):
            account, value = entry.account, entry.value
        else:
            account, value = entry
        account = normalize(account)
        if not account or account == ZERO_ADDRESS:
            raise InvalidAddress("Royalty recipient is zero address")
        if value < 0:
            raise InvalidAmount("Royalty basis points cannot be negative")
        shares.append(RoyaltyShare(account=account, value=int(value)))

    total = sum(share.value for share in shares)
    if total > BASIS_POINTS:
        raise RoyaltyOverflow(
            f"Royalties sum to {total} basis points, above {BASIS_POINTS}",
            details={"royalty_bps": total},
        )
    return shares


@dataclass
class SaleSplit:
    """Payouts for one settlement."""

    amount: int
    seller_amount: int
    fee_amount: int
    royalty_payouts: list[tuple[str, int]] = field(default_factory=list)

    @property
    def royalty_amount(self) -> int:
        return sum(value for _, value in self.royalty_payouts)

    def total(self) -> int:
        return self.seller_amount + self.fee_amount + self.royalty_amount


@dataclass
class FeePolicy:
    """Basis point split applied identically to both sale paths."""

    fee_receiver: str
    seller_bps: int = 9400
    royalty_bps: int = 500
    fee_bps: int = 100

    def __post_init__(self) -> None:
        self.fee_receiver = normalize(self.fee_receiver)
        if min(self.seller_bps, self.royalty_bps, self.fee_bps) < 0:
            raise ConfigurationError("Fee split basis points cannot be negative")
        if self.seller_bps + self.royalty_bps + self.fee_bps != BASIS_POINTS:
            raise ConfigurationError(
                f"Fee split must sum to {BASIS_POINTS} basis points"
            )
        if not self.fee_receiver or self.fee_receiver == ZERO_ADDRESS:
            raise ConfigurationError("Fee receiver must be a non-zero address")

    @classmethod
    def from_config(cls, config: MarketConfig) -> "FeePolicy":
        return cls(
            fee_receiver=config.fee_receiver,
            seller_bps=config.seller_bps,
            royalty_bps=config.royalty_bps,
            fee_bps=config.fee_bps,
        )

    def split(self, amount: int, royalties: Sequence[RoyaltyShare]) -> SaleSplit:
        """
        Divide ``amount`` between seller, royalty recipients and fee receiver.

        Args:
            amount: Payment being settled
            royalties: The NFT's royalty entries

        Returns:
            SaleSplit whose parts sum to ``amount``
        """
        if amount < 0:
            raise InvalidAmount("Cannot split a negative amount")

        seller_amount = amount * self.seller_bps // BASIS_POINTS
        royalty_pool = amount * self.royalty_bps // BASIS_POINTS
        fee_amount = amount * self.fee_bps // BASIS_POINTS
        dust = amount - seller_amount - royalty_pool - fee_amount

        total_bps = sum(share.value for share in royalties)
        payouts: list[tuple[str, int]] = []
        if total_bps == 0:
            seller_amount += royalty_pool
        else:
            for share in royalties:
                if share.value == 0:
                    continue
                payouts.append((share.account, royalty_pool * share.value // total_bps))
            dust += royalty_pool - sum(value for _, value in payouts)

        return SaleSplit(
            amount=amount,
            seller_amount=seller_amount,
            fee_amount=fee_amount + dust,
            royalty_payouts=payouts,
        )

    def to_dict(self) -> dict:
        return {
            "fee_receiver": self.fee_receiver,
            "seller_bps": self.seller_bps,
            "royalty_bps": self.royalty_bps,
            "fee_bps": self.fee_bps,
        }
