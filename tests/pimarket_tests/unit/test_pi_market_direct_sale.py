"""
Tests for piMarket fixed-price sales.
"""

import threading

import pytest

from pimarket.core.contracts.pi_market import SaleState
from pimarket.core.exceptions import (
    IncorrectPayment,
    InsufficientBalance,
    InsufficientPayment,
    InvalidAmount,
    ListingInactive,
    ListingNotFound,
    NotApproved,
    NotOwner,
    ReentrancyError,
)


@pytest.fixture
def market(funded):
    return funded.pi_market


@pytest.fixture
def sale_id(funded, market, accounts, approved_token):
    return market.sell_nft(accounts.alice, funded.pi_nft.address, approved_token, 5000)


def test_sell_escrows_nft(funded, market, accounts, sale_id):
    meta = market.get_listing(sale_id)

    assert sale_id == 1
    assert meta.price == 5000
    assert meta.current_owner == accounts.alice
    assert meta.direct_sale and not meta.bid_sale
    assert meta.status and meta.state is SaleState.ACTIVE
    assert funded.pi_nft.owner_of(0) == market.address
    assert market.events[-1].event_type == "SaleCreated"
    assert market.events[-1].data["escrow"] == 0


def test_sell_requires_ownership(funded, market, accounts, approved_token):
    with pytest.raises(NotOwner):
        market.sell_nft(accounts.bob, funded.pi_nft.address, approved_token, 5000)


def test_sell_requires_market_approval(funded, market, accounts):
    token_id = funded.pi_nft.mint_nft(accounts.alice, accounts.alice, "URI2")
    with pytest.raises(NotApproved):
        market.sell_nft(accounts.alice, funded.pi_nft.address, token_id, 5000)
    assert market.next_sale_id == 1


def test_sell_rejects_zero_price(funded, market, accounts, approved_token):
    with pytest.raises(InvalidAmount):
        market.sell_nft(accounts.alice, funded.pi_nft.address, approved_token, 0)


def test_buy_splits_payment(funded, market, accounts, sale_id):
    chain = funded.chain

    assert market.buy_nft(accounts.bob, sale_id, 5000) is True

    assert funded.pi_nft.owner_of(0) == accounts.bob
    assert chain.balance_of(accounts.alice) == 100_000 + 4700
    assert chain.balance_of(accounts.royalty) == 250
    assert chain.balance_of(accounts.fee_receiver) == 50
    assert chain.balance_of(accounts.bob) == 100_000 - 5000
    assert market.escrow_balance() == 0

    meta = market.get_listing(sale_id)
    assert not meta.status
    assert meta.state is SaleState.PURCHASED
    assert meta.buyer == accounts.bob

    event = market.events[-1]
    assert event.event_type == "NFTPurchased"
    assert event.data["seller_amount"] == 4700
    assert event.data["royalty_amount"] == 250
    assert event.data["fee_amount"] == 50


def test_buy_underpayment(funded, market, accounts, sale_id):
    with pytest.raises(InsufficientPayment) as exc_info:
        market.buy_nft(accounts.bob, sale_id, 4999)
    assert exc_info.value.reason == "INSUFFICIENT_PAYMENT"
    assert funded.chain.balance_of(accounts.bob) == 100_000
    assert market.get_listing(sale_id).status


def test_buy_overpayment(market, accounts, sale_id):
    with pytest.raises(IncorrectPayment):
        market.buy_nft(accounts.bob, sale_id, 5001)


def test_buy_without_funds(funded, market, accounts, sale_id):
    poor = "0x" + "99" * 20
    with pytest.raises(InsufficientBalance):
        market.buy_nft(poor, sale_id, 5000)
    assert funded.pi_nft.owner_of(0) == market.address
    assert market.get_listing(sale_id).status


def test_seller_cannot_buy_own_listing(market, accounts, sale_id):
    with pytest.raises(NotApproved):
        market.buy_nft(accounts.alice, sale_id, 5000)


def test_buy_twice(market, accounts, sale_id):
    market.buy_nft(accounts.bob, sale_id, 5000)
    with pytest.raises(ListingInactive):
        market.buy_nft(accounts.carol, sale_id, 5000)


def test_buy_unknown_listing(market, accounts):
    with pytest.raises(ListingNotFound):
        market.buy_nft(accounts.bob, 42, 5000)


def test_cancel_returns_nft(funded, market, accounts, sale_id):
    market.cancel_sale(accounts.alice, sale_id)

    meta = market.get_listing(sale_id)
    assert funded.pi_nft.owner_of(0) == accounts.alice
    assert meta.state is SaleState.CANCELLED
    assert not meta.status
    event = market.events[-1]
    assert event.event_type == "SaleCancelled"
    assert event.data["escrow"] == 0
    with pytest.raises(ListingInactive):
        market.buy_nft(accounts.bob, sale_id, 5000)


def test_only_seller_cancels(market, accounts, sale_id):
    with pytest.raises(NotOwner):
        market.cancel_sale(accounts.bob, sale_id)


def test_cancel_twice(market, accounts, sale_id):
    market.cancel_sale(accounts.alice, sale_id)
    with pytest.raises(ListingInactive):
        market.cancel_sale(accounts.alice, sale_id)


def test_relist_after_cancel_gets_new_sale_id(funded, market, accounts, sale_id):
    nft = funded.pi_nft
    market.cancel_sale(accounts.alice, sale_id)
    nft.approve(accounts.alice, market.address, 0)

    new_id = market.sell_nft(accounts.alice, nft.address, 0, 6000)

    assert new_id == sale_id + 1
    assert market.get_listing(sale_id).state is SaleState.CANCELLED


def test_buyer_resells_and_royalty_paid_again(funded, market, accounts, sale_id):
    nft = funded.pi_nft
    market.buy_nft(accounts.bob, sale_id, 5000)
    nft.approve(accounts.bob, market.address, 0)
    resale = market.sell_nft(accounts.bob, nft.address, 0, 10_000)

    market.buy_nft(accounts.carol, resale, 10_000)

    assert nft.owner_of(0) == accounts.carol
    assert funded.chain.balance_of(accounts.royalty) == 250 + 500
    assert funded.chain.balance_of(accounts.fee_receiver) == 50 + 100


def test_edit_sale_price(market, accounts, sale_id):
    market.edit_sale_price(accounts.alice, sale_id, 6000)

    assert market.get_listing(sale_id).price == 6000
    with pytest.raises(InsufficientPayment):
        market.buy_nft(accounts.bob, sale_id, 5000)
    market.buy_nft(accounts.bob, sale_id, 6000)


def test_edit_sale_price_only_seller(market, accounts, sale_id):
    with pytest.raises(NotOwner):
        market.edit_sale_price(accounts.bob, sale_id, 1)


def test_failed_call_releases_reentrancy_guard(market, accounts, sale_id):
    with pytest.raises(InsufficientPayment):
        market.buy_nft(accounts.bob, sale_id, 1)
    assert market._locked is False
    market.buy_nft(accounts.bob, sale_id, 5000)


def test_reentrant_call_rejected(market, accounts, sale_id):
    market._locked = True
    with pytest.raises(ReentrancyError):
        market.buy_nft(accounts.bob, sale_id, 5000)


def test_concurrent_call_waits_for_running_operation(funded, market, accounts, sale_id, monkeypatch):
    nft = funded.pi_nft
    entered = threading.Event()
    release = threading.Event()
    original_transfer = nft.transfer_from

    def held_transfer(*args, **kwargs):
        entered.set()
        release.wait(timeout=5)
        return original_transfer(*args, **kwargs)

    monkeypatch.setattr(nft, "transfer_from", held_transfer)
    errors = []

    def run(call, *args):
        try:
            call(*args)
        except Exception as exc:
            errors.append(exc)

    buyer = threading.Thread(target=run, args=(market.buy_nft, accounts.bob, sale_id, 5000))
    seller = threading.Thread(target=run, args=(market.cancel_sale, accounts.alice, sale_id))

    buyer.start()
    assert entered.wait(timeout=5)
    seller.start()
    seller.join(timeout=0.2)
    # blocked on the chain lock while the purchase is in flight
    assert seller.is_alive()

    release.set()
    buyer.join(timeout=5)
    seller.join(timeout=5)

    assert not any(isinstance(exc, ReentrancyError) for exc in errors)
    assert [type(exc) for exc in errors] == [ListingInactive]
    assert nft.owner_of(0) == accounts.bob
    assert market._locked is False
