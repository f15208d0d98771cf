"""
Tests for sale proceeds splitting and royalty validation.
"""

import pytest
from hypothesis import given, strategies as st

from pimarket.core.config import MarketConfig
from pimarket.core.contracts.fee_policy import FeePolicy, RoyaltyShare, validate_royalties
from pimarket.core.exceptions import (
    ConfigurationError,
    InvalidAddress,
    InvalidAmount,
    RoyaltyOverflow,
)

FEE_RECEIVER = "0x" + "fe" * 20
SELLER = "0x" + "a1" * 20
ROYALTY_A = "0x" + "77" * 20
ROYALTY_B = "0x" + "78" * 20


@pytest.fixture
def policy():
    return FeePolicy(fee_receiver=FEE_RECEIVER)


def test_split_direct_sale_price(policy):
    split = policy.split(5000, [RoyaltyShare(ROYALTY_A, 500)])
    assert split.seller_amount == 4700
    assert split.royalty_payouts == [(ROYALTY_A, 250)]
    assert split.fee_amount == 50
    assert split.total() == 5000


def test_split_auction_price(policy):
    split = policy.split(7000, [RoyaltyShare(ROYALTY_A, 500)])
    assert split.seller_amount == 6580
    assert split.royalty_amount == 350
    assert split.fee_amount == 70


def test_royalty_pool_shared_by_stored_basis_points(policy):
    split = policy.split(10_000, [RoyaltyShare(ROYALTY_A, 300), RoyaltyShare(ROYALTY_B, 100)])
    # pool is 500; 3:1 between the recipients
    assert split.royalty_payouts == [(ROYALTY_A, 375), (ROYALTY_B, 125)]
    assert split.fee_amount == 100


def test_truncation_dust_goes_to_fee_receiver(policy):
    split = policy.split(
        999,
        [RoyaltyShare(ROYALTY_A, 1), RoyaltyShare(ROYALTY_B, 1), RoyaltyShare(SELLER, 1)],
    )
    # seller 939, pool 49 split 16/16/16, fee 9 plus 2 + 1 dust
    assert split.seller_amount == 939
    assert [value for _, value in split.royalty_payouts] == [16, 16, 16]
    assert split.fee_amount == 12
    assert split.total() == 999


def test_no_royalty_recipients_pays_pool_to_seller(policy):
    split = policy.split(5000, [])
    assert split.royalty_payouts == []
    assert split.seller_amount == 4950
    assert split.fee_amount == 50


def test_zero_bps_entries_receive_nothing(policy):
    split = policy.split(5000, [RoyaltyShare(ROYALTY_A, 0), RoyaltyShare(ROYALTY_B, 500)])
    assert split.royalty_payouts == [(ROYALTY_B, 250)]


def test_split_rejects_negative_amount(policy):
    with pytest.raises(InvalidAmount):
        policy.split(-1, [])


def test_policy_must_sum_to_basis_points():
    with pytest.raises(ConfigurationError):
        FeePolicy(fee_receiver=FEE_RECEIVER, seller_bps=9000, royalty_bps=500, fee_bps=100)


def test_policy_rejects_zero_fee_receiver():
    with pytest.raises(ConfigurationError):
        FeePolicy(fee_receiver="0x" + "0" * 40)


def test_policy_from_config():
    config = MarketConfig(seller_bps=9000, royalty_bps=700, fee_bps=300, fee_receiver=FEE_RECEIVER)
    policy = FeePolicy.from_config(config)
    assert policy.to_dict() == {
        "fee_receiver": FEE_RECEIVER,
        "seller_bps": 9000,
        "royalty_bps": 700,
        "fee_bps": 300,
    }


def test_validate_royalties_accepts_pairs_and_shares():
    shares = validate_royalties([("0x" + "AB" * 20, 300), RoyaltyShare(ROYALTY_B, 200)])
    assert shares == [RoyaltyShare("0x" + "ab" * 20, 300), RoyaltyShare(ROYALTY_B, 200)]


def test_validate_royalties_allows_exactly_full_basis_points():
    assert sum(s.value for s in validate_royalties([(ROYALTY_A, 6000), (ROYALTY_B, 4000)])) == 10000


def test_validate_royalties_overflow():
    with pytest.raises(RoyaltyOverflow) as exc_info:
        validate_royalties([(ROYALTY_A, 6000), (ROYALTY_B, 4001)])
    assert exc_info.value.reason == "ROYALTY_OVERFLOW"
    assert exc_info.value.details["royalty_bps"] == 10001


def test_validate_royalties_rejects_zero_address():
    with pytest.raises(InvalidAddress):
        validate_royalties([("0x" + "0" * 40, 100)])


def test_validate_royalties_rejects_negative_value():
    with pytest.raises(InvalidAmount):
        validate_royalties([(ROYALTY_A, -1)])


@given(
    amount=st.integers(min_value=0, max_value=10**30),
    values=st.lists(st.integers(min_value=0, max_value=2500), max_size=4),
)
def test_split_parts_always_sum_to_amount(amount, values):
    policy = FeePolicy(fee_receiver=FEE_RECEIVER)
    recipients = ["0x" + f"{index + 1:02x}" * 20 for index in range(len(values))]
    royalties = [RoyaltyShare(account, value) for account, value in zip(recipients, values)]

    split = policy.split(amount, royalties)

    assert split.total() == amount
    assert split.seller_amount >= amount * 9400 // 10000
    assert all(value >= 0 for _, value in split.royalty_payouts)
