"""
piMarket: fixed-price and auction marketplace for piNFTs.

Sale paths:
- Direct sale: ``sell_nft`` escrows the NFT at a fixed price, ``buy_nft``
  settles a single exact payment, ``cancel_sale`` returns the NFT.
- Auction: ``sell_nft_by_bid`` escrows the NFT with a starting price and a
  deadline, ``bid`` escrows native currency per bid, the seller picks the
  winner with ``execute_bid_order`` and losing bidders reclaim their funds
  with ``withdraw_bid_money``.

Both paths share one listing id sequence (starting at 1) and settle through
the same ``FeePolicy`` split.

Every listing moves from ACTIVE to exactly one terminal state (PURCHASED,
CANCELLED or EXECUTED) and never becomes active again.

Security features:
- Reentrancy guard on every state-changing call
- State is updated before any NFT or native value leaves the contract
- Every call runs in a chain transaction; failures roll back completely
"""

from __future__ import annotations

import contextlib
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Dict, Iterator, Optional

from ..chain import atomic, contract_address, normalize
from ..exceptions import (
    AlreadyWithdrawn,
    AuctionActive,
    AuctionExpired,
    BidSettled,
    ContractNotFound,
    IncorrectPayment,
    InsufficientPayment,
    InvalidAmount,
    InvalidBidIndex,
    ListingInactive,
    ListingNotFound,
    NotApproved,
    NotOwner,
    ReentrancyError,
)
from .fee_policy import FeePolicy, SaleSplit
from .pi_nft import PiNFT

if TYPE_CHECKING:
    from ..chain import Chain
    from ..market_metrics import MarketMetrics

logger = logging.getLogger(__name__)


class SaleState(Enum):
    """Lifecycle of a listing."""
    ACTIVE = "active"
    PURCHASED = "purchased"
    CANCELLED = "cancelled"
    EXECUTED = "executed"


@dataclass
class TokenMeta:
    """A sale listing. Kept forever as history once closed."""

    sale_id: int
    token_contract: str
    token_id: int
    price: int
    current_owner: str  # seller
    direct_sale: bool = True
    bid_sale: bool = False
    status: bool = True
    bid_start_time: int = 0
    bid_end_time: int = 0
    state: SaleState = SaleState.ACTIVE
    buyer: str = ""
    winning_bid: Optional[int] = None

    def to_dict(self) -> Dict:
        return {
            "sale_id": self.sale_id,
            "token_contract": self.token_contract,
            "token_id": self.token_id,
            "price": self.price,
            "current_owner": self.current_owner,
            "direct_sale": self.direct_sale,
            "bid_sale": self.bid_sale,
            "status": self.status,
            "bid_start_time": self.bid_start_time,
            "bid_end_time": self.bid_end_time,
            "state": self.state.value,
            "buyer": self.buyer,
            "winning_bid": self.winning_bid,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "TokenMeta":
        return cls(**{**data, "state": SaleState(data["state"])})


@dataclass
class BidOrder:
    """
    One bid on an auction listing.

    ``price`` never changes; ``refundable`` drops to 0 once the bid has been
    withdrawn or settled as the winning bid.
    """

    sale_id: int
    seller_address: str
    buyer_address: str
    price: int
    withdrawn: bool = False
    settled: bool = False
    placed_at: int = 0

    @property
    def refundable(self) -> int:
        if self.withdrawn or self.settled:
            return 0
        return self.price

    def to_dict(self) -> Dict:
        return {
            "sale_id": self.sale_id,
            "seller_address": self.seller_address,
            "buyer_address": self.buyer_address,
            "price": self.price,
            "withdrawn": self.withdrawn,
            "settled": self.settled,
            "placed_at": self.placed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "BidOrder":
        return cls(**data)


@dataclass
class MarketEvent:
    """Represents a marketplace event."""

    event_type: str
    sale_id: int
    token_id: int
    data: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass
class PiMarket:
    """Marketplace contract holding escrowed NFTs and bid funds."""

    fee_policy: FeePolicy
    address: str = ""

    token_meta: dict[int, TokenMeta] = field(default_factory=dict)
    bids: dict[int, list[BidOrder]] = field(default_factory=dict)
    next_sale_id: int = 1

    events: list[MarketEvent] = field(default_factory=list)

    # Hosting chain, bound on deployment
    chain: "Chain | None" = field(default=None, repr=False, compare=False)
    metrics: "MarketMetrics | None" = field(default=None, repr=False, compare=False)

    # Reentrancy guard
    _locked: bool = False

    def __post_init__(self) -> None:
        if not self.address:
            self.address = contract_address("piMarket")
        self.address = normalize(self.address)

    # ==================== View Functions ====================

    def get_listing(self, sale_id: int) -> TokenMeta:
        meta = self.token_meta.get(sale_id)
        if meta is None:
            raise ListingNotFound(f"piMarket: sale {sale_id} does not exist")
        return meta

    def get_bids(self, sale_id: int) -> list[BidOrder]:
        self.get_listing(sale_id)
        return list(self.bids.get(sale_id, []))

    def get_bid(self, sale_id: int, bid_index: int) -> BidOrder:
        bids = self.get_bids(sale_id)
        if bid_index < 0 or bid_index >= len(bids):
            raise InvalidBidIndex(
                f"piMarket: sale {sale_id} has no bid at index {bid_index}"
            )
        return bids[bid_index]

    def highest_bid_index(self, sale_id: int) -> Optional[int]:
        """Index of the largest bid still in escrow; earliest wins ties."""
        best_index = None
        best_price = -1
        for index, bid in enumerate(self.get_bids(sale_id)):
            if bid.refundable and bid.price > best_price:
                best_index, best_price = index, bid.price
        return best_index

    def escrow_balance(self) -> int:
        """Native currency currently held by the marketplace."""
        return self._chain.balance_of(self.address)

    # ==================== Direct Sale ====================

    def sell_nft(self, caller: str, nft_contract: str, token_id: int, price: int) -> int:
        """
        List an NFT at a fixed price.

        The caller must own the NFT and have approved this marketplace for it.

        Returns:
            The new sale id
        """
        if price <= 0:
            raise InvalidAmount("piMarket: price must be positive")

        with self._guard():
            sale_id = self._open_listing(caller, nft_contract, token_id, price)

        if self.metrics:
            self.metrics.record_listing("fixed")

        logger.info(
            "NFT listed for sale",
            extra={
                "event": "pimarket.sell",
                "sale_id": sale_id,
                "token_id": token_id,
                "price": price,
                "seller": normalize(caller)[:10],
            }
        )
        return sale_id

    def buy_nft(self, caller: str, sale_id: int, value: int) -> bool:
        """
        Buy a fixed-price listing with an exact payment of ``value``.

        Raises:
            ListingInactive: If the listing is closed or is an auction
            InsufficientPayment: If value is below the price
            IncorrectPayment: If value is above the price
        """
        buyer = normalize(caller)

        with self._guard():
            meta = self.get_listing(sale_id)
            if not meta.status or not meta.direct_sale:
                raise ListingInactive(f"piMarket: sale {sale_id} is not an active fixed-price sale")
            if buyer == meta.current_owner:
                raise NotApproved("piMarket: seller cannot buy their own listing")
            if value < meta.price:
                raise InsufficientPayment(
                    f"piMarket: payment {value} is below price {meta.price}",
                    details={"sale_id": sale_id, "price": meta.price, "value": value},
                )
            if value != meta.price:
                raise IncorrectPayment(
                    f"piMarket: payment {value} does not match price {meta.price}",
                    details={"sale_id": sale_id, "price": meta.price, "value": value},
                )

            self._chain.transfer_value(buyer, self.address, value)

            meta.status = False
            meta.state = SaleState.PURCHASED
            meta.buyer = buyer

            nft = self._nft(meta.token_contract)
            split = self.fee_policy.split(value, nft.get_royalties(meta.token_id))

            nft.transfer_from(self.address, self.address, buyer, meta.token_id)
            self._pay_out(meta.current_owner, split)
            self._emit_settlement("NFTPurchased", meta, buyer, split)

        if self.metrics:
            self.metrics.record_settlement(
                "fixed", split.amount, split.royalty_amount, split.fee_amount
            )
            self.metrics.set_escrow(self.escrow_balance())

        logger.info(
            "NFT purchased",
            extra={
                "event": "pimarket.buy",
                "sale_id": sale_id,
                "token_id": meta.token_id,
                "price": value,
                "buyer": buyer[:10],
            }
        )
        return True

    def cancel_sale(self, caller: str, sale_id: int) -> bool:
        """
        Close an active listing and return the NFT to its seller.

        Works for both sale types. Bids on a cancelled auction stay
        withdrawable.

        Raises:
            NotOwner: If caller did not create the listing
            ListingInactive: If the listing is already closed
        """
        caller_norm = normalize(caller)

        with self._guard():
            meta = self.get_listing(sale_id)
            if caller_norm != meta.current_owner:
                raise NotOwner("piMarket: only the seller can cancel the sale")
            if not meta.status:
                raise ListingInactive(f"piMarket: sale {sale_id} is not active")

            meta.status = False
            meta.state = SaleState.CANCELLED

            self._nft(meta.token_contract).transfer_from(
                self.address, self.address, meta.current_owner, meta.token_id
            )
            self._emit(
                "SaleCancelled",
                meta.sale_id,
                meta.token_id,
                seller=meta.current_owner,
                escrow=self.escrow_balance(),
            )

        if self.metrics:
            self.metrics.record_cancellation()

        logger.info(
            "Sale cancelled",
            extra={"event": "pimarket.cancel", "sale_id": sale_id, "token_id": meta.token_id}
        )
        return True

    def edit_sale_price(self, caller: str, sale_id: int, price: int) -> bool:
        """Change the price of an active fixed-price listing (seller only)."""
        if price <= 0:
            raise InvalidAmount("piMarket: price must be positive")

        with self._guard():
            meta = self.get_listing(sale_id)
            if normalize(caller) != meta.current_owner:
                raise NotOwner("piMarket: only the seller can edit the price")
            if not meta.status or not meta.direct_sale:
                raise ListingInactive(f"piMarket: sale {sale_id} is not an active fixed-price sale")

            old_price = meta.price
            meta.price = price
            self._emit(
                "SalePriceChanged",
                sale_id,
                meta.token_id,
                old_price=old_price,
                price=price,
                escrow=self.escrow_balance(),
            )

        return True

    # ==================== Auction ====================

    def sell_nft_by_bid(
        self,
        caller: str,
        nft_contract: str,
        token_id: int,
        price: int,
        duration: int,
    ) -> int:
        """
        Put an NFT up for auction.

        Args:
            caller: Seller (must own and have approved the NFT)
            nft_contract: piNFT contract address
            token_id: Token to auction
            price: Starting price; lower bids are rejected
            duration: Seconds from now until bidding closes

        Returns:
            The new sale id
        """
        if price <= 0:
            raise InvalidAmount("piMarket: starting price must be positive")
        if duration <= 0:
            raise InvalidAmount("piMarket: auction duration must be positive")

        with self._guard():
            sale_id = self._open_listing(
                caller, nft_contract, token_id, price, duration=duration
            )

        if self.metrics:
            self.metrics.record_listing("auction")

        logger.info(
            "NFT listed for auction",
            extra={
                "event": "pimarket.auction",
                "sale_id": sale_id,
                "token_id": token_id,
                "price": price,
                "duration": duration,
            }
        )
        return sale_id

    def bid(self, caller: str, sale_id: int, value: int) -> int:
        """
        Place a bid of ``value``, held in escrow by the marketplace.

        Bids are not required to beat earlier bids; a bidder may bid any
        number of times and each bid is tracked separately.

        Returns:
            The index of the new bid

        Raises:
            ListingInactive: If the listing is closed or not an auction
            AuctionExpired: If the deadline has passed
            InsufficientPayment: If value is below the starting price
        """
        bidder = normalize(caller)

        with self._guard():
            meta = self.get_listing(sale_id)
            if not meta.status or not meta.bid_sale:
                raise ListingInactive(f"piMarket: sale {sale_id} is not an active auction")
            if self._chain.now() > meta.bid_end_time:
                raise AuctionExpired(
                    f"piMarket: auction {sale_id} ended at {meta.bid_end_time}",
                    details={"sale_id": sale_id, "bid_end_time": meta.bid_end_time},
                )
            if bidder == meta.current_owner:
                raise NotApproved("piMarket: seller cannot bid on their own auction")
            if value < meta.price:
                raise InsufficientPayment(
                    f"piMarket: bid {value} is below starting price {meta.price}",
                    details={"sale_id": sale_id, "price": meta.price, "value": value},
                )

            self._chain.transfer_value(bidder, self.address, value)

            orders = self.bids.setdefault(sale_id, [])
            orders.append(
                BidOrder(
                    sale_id=sale_id,
                    seller_address=meta.current_owner,
                    buyer_address=bidder,
                    price=value,
                    placed_at=self._chain.now(),
                )
            )
            bid_index = len(orders) - 1
            self._emit(
                "BidPlaced",
                sale_id,
                meta.token_id,
                bidder=bidder,
                bid_index=bid_index,
                amount=value,
                escrow=self.escrow_balance(),
            )

        if self.metrics:
            self.metrics.record_bid()
            self.metrics.set_escrow(self.escrow_balance())

        logger.info(
            "Bid placed",
            extra={
                "event": "pimarket.bid",
                "sale_id": sale_id,
                "bid_index": bid_index,
                "amount": value,
                "bidder": bidder[:10],
            }
        )
        return bid_index

    def execute_bid_order(self, caller: str, sale_id: int, bid_index: int) -> bool:
        """
        Settle an auction against the bid at ``bid_index``.

        The seller chooses the index; the engine does not pick the maximum.
        Other bids are left in escrow for their bidders to withdraw.

        Raises:
            NotOwner: If caller is not the seller
            ListingInactive: If the auction is already closed
            InvalidBidIndex: If there is no bid at bid_index
            AlreadyWithdrawn: If that bid was withdrawn
        """
        with self._guard():
            meta = self.get_listing(sale_id)
            if normalize(caller) != meta.current_owner:
                raise NotOwner("piMarket: only the seller can execute a bid")
            if not meta.status or not meta.bid_sale:
                raise ListingInactive(f"piMarket: sale {sale_id} is not an active auction")
            order = self.get_bid(sale_id, bid_index)
            if order.withdrawn:
                raise AlreadyWithdrawn(f"piMarket: bid {bid_index} was withdrawn")

            order.settled = True
            meta.status = False
            meta.state = SaleState.EXECUTED
            meta.buyer = order.buyer_address
            meta.winning_bid = bid_index

            nft = self._nft(meta.token_contract)
            split = self.fee_policy.split(order.price, nft.get_royalties(meta.token_id))

            nft.transfer_from(self.address, self.address, order.buyer_address, meta.token_id)
            self._pay_out(meta.current_owner, split)
            self._emit_settlement(
                "BidExecuted", meta, order.buyer_address, split, bid_index=bid_index
            )

        if self.metrics:
            self.metrics.record_settlement(
                "auction", split.amount, split.royalty_amount, split.fee_amount
            )
            self.metrics.set_escrow(self.escrow_balance())

        logger.info(
            "Auction settled",
            extra={
                "event": "pimarket.execute_bid",
                "sale_id": sale_id,
                "bid_index": bid_index,
                "amount": order.price,
                "buyer": order.buyer_address[:10],
            }
        )
        return True

    def withdraw_bid_money(self, caller: str, sale_id: int, bid_index: int) -> bool:
        """
        Refund a losing bid to its bidder.

        Allowed once the auction is closed (settled or cancelled) or its
        deadline has passed.

        Raises:
            NotOwner: If caller did not place the bid
            BidSettled: If the bid won the auction
            AlreadyWithdrawn: If the bid was already refunded
            AuctionActive: If the auction is still open for bids
        """
        caller_norm = normalize(caller)

        with self._guard():
            meta = self.get_listing(sale_id)
            order = self.get_bid(sale_id, bid_index)
            if caller_norm != order.buyer_address:
                raise NotOwner("piMarket: only the bidder can withdraw this bid")
            if order.settled:
                raise BidSettled(f"piMarket: bid {bid_index} won the auction")
            if order.withdrawn:
                raise AlreadyWithdrawn(f"piMarket: bid {bid_index} already withdrawn")
            if meta.status and self._chain.now() <= meta.bid_end_time:
                raise AuctionActive(
                    f"piMarket: auction {sale_id} is open until {meta.bid_end_time}"
                )

            amount = order.price
            order.withdrawn = True

            self._chain.transfer_value(self.address, order.buyer_address, amount)
            self._emit(
                "BidWithdrawn",
                sale_id,
                meta.token_id,
                bidder=order.buyer_address,
                bid_index=bid_index,
                amount=amount,
                escrow=self.escrow_balance(),
            )

        if self.metrics:
            self.metrics.set_escrow(self.escrow_balance())

        logger.info(
            "Bid withdrawn",
            extra={
                "event": "pimarket.withdraw_bid",
                "sale_id": sale_id,
                "bid_index": bid_index,
                "amount": amount,
            }
        )
        return True

    # ==================== Helpers ====================

    @property
    def _chain(self) -> "Chain":
        if self.chain is None:
            raise ContractNotFound("piMarket: contract is not deployed on a chain")
        return self.chain

    @contextlib.contextmanager
    def _guard(self) -> Iterator[None]:
        """Chain transaction with a reentrancy guard taken under its lock."""
        with atomic(self):
            self._require_not_locked()
            self._locked = True
            try:
                yield
            finally:
                self._locked = False

    def _require_not_locked(self) -> None:
        if self._locked:
            raise ReentrancyError("piMarket: reentrant call")

    def _nft(self, address: str) -> PiNFT:
        return self._chain.get_contract(address, PiNFT)

    def _open_listing(
        self,
        caller: str,
        nft_contract: str,
        token_id: int,
        price: int,
        duration: int = 0,
    ) -> int:
        seller = normalize(caller)
        nft = self._nft(nft_contract)
        if nft.owner_of(token_id) != seller:
            raise NotOwner(f"piMarket: caller does not own token {token_id}")
        if nft.get_approved(token_id) != self.address:
            raise NotApproved(f"piMarket: marketplace is not approved for token {token_id}")

        sale_id = self.next_sale_id
        self.next_sale_id += 1

        meta = TokenMeta(
            sale_id=sale_id,
            token_contract=nft.address,
            token_id=token_id,
            price=price,
            current_owner=seller,
            direct_sale=duration == 0,
            bid_sale=duration > 0,
        )
        if duration:
            meta.bid_start_time = self._chain.now()
            meta.bid_end_time = meta.bid_start_time + duration
        self.token_meta[sale_id] = meta

        nft.transfer_from(self.address, seller, self.address, token_id)
        self._emit(
            "AuctionCreated" if meta.bid_sale else "SaleCreated",
            sale_id,
            token_id,
            seller=seller,
            price=price,
            bid_end_time=meta.bid_end_time,
            escrow=self.escrow_balance(),
        )
        return sale_id

    def _pay_out(self, seller: str, split: SaleSplit) -> None:
        chain = self._chain
        chain.transfer_value(self.address, seller, split.seller_amount)
        for recipient, amount in split.royalty_payouts:
            chain.transfer_value(self.address, recipient, amount)
        chain.transfer_value(self.address, self.fee_policy.fee_receiver, split.fee_amount)

    def _emit_settlement(
        self,
        event_type: str,
        meta: TokenMeta,
        buyer: str,
        split: SaleSplit,
        **extra,
    ) -> None:
        chain = self._chain
        parties = [meta.current_owner, self.fee_policy.fee_receiver, buyer]
        parties.extend(recipient for recipient, _ in split.royalty_payouts)
        self._emit(
            event_type,
            meta.sale_id,
            meta.token_id,
            buyer=buyer,
            amount=split.amount,
            seller_amount=split.seller_amount,
            royalty_amount=split.royalty_amount,
            fee_amount=split.fee_amount,
            balances={party: chain.balance_of(party) for party in parties},
            escrow=self.escrow_balance(),
            **extra,
        )

    def _emit(self, event_type: str, sale_id: int, token_id: int, **data) -> None:
        self.events.append(
            MarketEvent(event_type=event_type, sale_id=sale_id, token_id=token_id, data=data)
        )

    # ==================== Serialization ====================

    def to_dict(self) -> Dict:
        return {
            "address": self.address,
            "fee_policy": self.fee_policy.to_dict(),
            "token_meta": {
                sale_id: meta.to_dict() for sale_id, meta in self.token_meta.items()
            },
            "bids": {
                sale_id: [order.to_dict() for order in orders]
                for sale_id, orders in self.bids.items()
            },
            "next_sale_id": self.next_sale_id,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "PiMarket":
        market = cls(
            fee_policy=FeePolicy(**data["fee_policy"]),
            address=data.get("address", ""),
        )
        market.token_meta = {
            int(sale_id): TokenMeta.from_dict(meta)
            for sale_id, meta in data.get("token_meta", {}).items()
        }
        market.bids = {
            int(sale_id): [BidOrder.from_dict(order) for order in orders]
            for sale_id, orders in data.get("bids", {}).items()
        }
        market.next_sale_id = data.get("next_sale_id", 1)
        return market
