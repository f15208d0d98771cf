"""
Tests for piNFT: minting, royalties, approvals and embedded ERC20 custody.
"""

import pytest

from pimarket.core.contracts.pi_nft import PiNFT
from pimarket.core.exceptions import (
    InsufficientCustodyBalance,
    InvalidAddress,
    InvalidAmount,
    NotApproved,
    NotOwner,
    RoyaltyOverflow,
    TokenNotFound,
)


@pytest.fixture
def nft(deployment):
    return deployment.pi_nft


@pytest.fixture
def erc20(deployment, accounts):
    """sampleERC20 with 1000 minted to the validator, approved for piNFT."""
    token = deployment.sample_erc20
    token.mint(accounts.alice, accounts.validator, 1000)
    token.approve(accounts.validator, deployment.pi_nft.address, 500)
    return token


def test_collection_metadata(nft):
    assert nft.name == "Aconomy"
    assert nft.symbol == "ACO"


def test_mint_ids_start_at_zero(nft, accounts):
    first = nft.mint_nft(accounts.alice, accounts.alice, "URI1", [(accounts.royalty, 500)])
    second = nft.mint_nft(accounts.alice, accounts.bob, "URI2")

    assert (first, second) == (0, 1)
    assert nft.owner_of(0) == accounts.alice
    assert nft.owner_of(1) == accounts.bob
    assert nft.token_uri(0) == "URI1"
    assert nft.total_supply() == 2
    assert nft.events[-1].event_type == "TokenMinted"


def test_royalties_fixed_at_mint(nft, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.alice, "URI1", [(accounts.royalty, 500)])
    royalties = nft.get_royalties(token_id)
    assert [(share.account, share.value) for share in royalties] == [(accounts.royalty, 500)]


def test_royalty_overflow_rejects_mint(nft, accounts):
    with pytest.raises(RoyaltyOverflow):
        nft.mint_nft(
            accounts.alice,
            accounts.alice,
            "URI1",
            [(accounts.royalty, 6000), (accounts.bob, 4001)],
        )
    assert nft.total_supply() == 0
    assert nft.next_token_id == 0


def test_mint_to_zero_address(nft, accounts):
    with pytest.raises(InvalidAddress):
        nft.mint_nft(accounts.alice, "0x" + "0" * 40, "URI1")


def test_unknown_token(nft):
    assert not nft.exists(99)
    with pytest.raises(TokenNotFound):
        nft.owner_of(99)
    with pytest.raises(TokenNotFound):
        nft.get_royalties(99)


def test_approve_and_transfer_clears_approval(nft, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.alice, "URI1")
    nft.approve(accounts.alice, accounts.bob, token_id)
    assert nft.get_approved(token_id) == accounts.bob

    nft.transfer_from(accounts.bob, accounts.alice, accounts.carol, token_id)

    assert nft.owner_of(token_id) == accounts.carol
    transfer = nft.events[-1]
    assert transfer.event_type == "Transfer"
    assert transfer.data == {"from_balance": 0, "to_balance": 1}
    assert nft.get_approved(token_id) == "0x" + "0" * 40
    assert nft.balance_of(accounts.alice) == 0
    assert nft.balance_of(accounts.carol) == 1


def test_only_owner_approves(nft, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.alice, "URI1")
    with pytest.raises(NotOwner):
        nft.approve(accounts.bob, accounts.bob, token_id)
    with pytest.raises(NotApproved):
        nft.approve(accounts.alice, accounts.alice, token_id)


def test_unapproved_transfer(nft, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.alice, "URI1")
    with pytest.raises(NotApproved):
        nft.transfer_from(accounts.bob, accounts.alice, accounts.bob, token_id)


def test_add_erc20_takes_custody(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1")

    nft.add_erc20(accounts.validator, accounts.validator, token_id, erc20.address, 500)

    assert nft.view_balance(token_id, erc20.address) == 500
    assert erc20.balance_of(nft.address) == 500
    assert erc20.balance_of(accounts.validator) == 500
    assert nft.erc20_contracts(token_id) == [erc20.address]
    event = nft.events[-1]
    assert event.event_type == "ERC20Added"
    assert event.data["balance"] == 500


def test_add_erc20_requires_allowance(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1")
    with pytest.raises(NotApproved):
        nft.add_erc20(accounts.validator, accounts.validator, token_id, erc20.address, 501)

    # rolled back: no custody recorded and no tokens moved
    assert nft.view_balance(token_id, erc20.address) == 0
    assert erc20.balance_of(accounts.validator) == 1000
    assert not any(event.event_type == "ERC20Added" for event in nft.events)


def test_add_erc20_on_behalf_of_another_account(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1")
    with pytest.raises(NotApproved):
        nft.add_erc20(accounts.bob, accounts.validator, token_id, erc20.address, 100)


def test_add_erc20_rejects_zero_amount(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1")
    with pytest.raises(InvalidAmount):
        nft.add_erc20(accounts.validator, accounts.validator, token_id, erc20.address, 0)


def test_add_erc20_to_unknown_token(nft, erc20, accounts):
    with pytest.raises(TokenNotFound):
        nft.add_erc20(accounts.validator, accounts.validator, 5, erc20.address, 100)


def test_transfer_erc20_by_owner(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1")
    nft.add_erc20(accounts.validator, accounts.validator, token_id, erc20.address, 500)

    nft.transfer_erc20(accounts.validator, token_id, accounts.bob, erc20.address, 200)

    assert nft.view_balance(token_id, erc20.address) == 300
    assert erc20.balance_of(accounts.bob) == 200
    assert erc20.balance_of(nft.address) == 300


def test_transfer_erc20_full_balance_clears_entry(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1")
    nft.add_erc20(accounts.validator, accounts.validator, token_id, erc20.address, 500)

    nft.transfer_erc20(accounts.validator, token_id, accounts.validator, erc20.address, 500)

    assert nft.view_balance(token_id, erc20.address) == 0
    assert nft.erc20_contracts(token_id) == []
    assert erc20.balance_of(accounts.validator) == 1000


def test_transfer_erc20_not_owner(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1")
    nft.add_erc20(accounts.validator, accounts.validator, token_id, erc20.address, 500)

    with pytest.raises(NotOwner):
        nft.transfer_erc20(accounts.bob, token_id, accounts.bob, erc20.address, 100)


def test_transfer_erc20_beyond_custody(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1")
    nft.add_erc20(accounts.validator, accounts.validator, token_id, erc20.address, 500)

    with pytest.raises(InsufficientCustodyBalance):
        nft.transfer_erc20(accounts.validator, token_id, accounts.validator, erc20.address, 501)


def test_custody_follows_the_nft(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1")
    nft.add_erc20(accounts.validator, accounts.validator, token_id, erc20.address, 500)
    nft.transfer_from(accounts.validator, accounts.validator, accounts.bob, token_id)

    with pytest.raises(NotOwner):
        nft.transfer_erc20(accounts.validator, token_id, accounts.validator, erc20.address, 1)
    nft.transfer_erc20(accounts.bob, token_id, accounts.bob, erc20.address, 500)
    assert erc20.balance_of(accounts.bob) == 500


def test_round_trip_serialization(nft, erc20, accounts):
    token_id = nft.mint_nft(accounts.alice, accounts.validator, "URI1", [(accounts.royalty, 250)])
    nft.add_erc20(accounts.validator, accounts.validator, token_id, erc20.address, 100)

    restored = PiNFT.from_dict(nft.to_dict())

    assert restored.owner_of(token_id) == accounts.validator
    assert restored.get_royalties(token_id) == nft.get_royalties(token_id)
    assert restored.view_balance(token_id, erc20.address) == 100
    assert restored.next_token_id == 1
