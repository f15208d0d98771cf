"""
ERC20 Token Standard Implementation.

Fungible token used as the embedded balance inside piNFTs (the
``sampleERC20`` contract of the marketplace deployment):
- Basic token operations (transfer, approve, transferFrom)
- Owner-only minting
- Metadata (name, symbol, decimals)
- Events (Transfer, Approval)

Security features:
- Zero address checks
- Balance underflow prevention
- Allowance validation
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict

from ..chain import atomic, contract_address, normalize
from ..config import ZERO_ADDRESS
from ..exceptions import (
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    NotApproved,
    NotOwner,
)

if TYPE_CHECKING:
    from ..chain import Chain

logger = logging.getLogger(__name__)


@dataclass
class TokenEvent:
    """Represents an ERC20 event."""

    event_type: str  # "Transfer" or "Approval"
    from_address: str
    to_address: str
    value: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ERC20Token:
    """
    ERC20 token with owner-only minting.

    All balances and allowances live in memory; the hosting chain snapshots
    them through ``to_dict``/``from_dict`` to roll back failed transactions.
    """

    # Token metadata
    name: str
    symbol: str
    decimals: int = 18
    total_supply: int = 0

    # Contract address
    address: str = ""

    # Owner (for minting permissions)
    owner: str = ""

    # State
    balances: dict[str, int] = field(default_factory=dict)
    allowances: dict[str, dict[str, int]] = field(default_factory=dict)

    # Event log
    events: list[TokenEvent] = field(default_factory=list)

    # Hosting chain, bound on deployment
    chain: "Chain | None" = field(default=None, repr=False, compare=False)

    UINT256_MAX: int = 2**256 - 1

    def __post_init__(self) -> None:
        if not self.address:
            self.address = contract_address(f"{self.name}{self.symbol}")
        self.address = normalize(self.address)
        self.owner = normalize(self.owner)

    # ==================== View Functions ====================

    def balance_of(self, account: str) -> int:
        """Get the token balance of an account."""
        return self.balances.get(normalize(account), 0)

    def allowance(self, owner: str, spender: str) -> int:
        """Get the allowance granted by owner to spender."""
        return self.allowances.get(normalize(owner), {}).get(normalize(spender), 0)

    # ==================== State-Changing Functions ====================

    def transfer(self, sender: str, recipient: str, amount: int) -> bool:
        """
        Transfer tokens from sender to recipient.

        Args:
            sender: Address sending tokens (msg.sender)
            recipient: Address receiving tokens
            amount: Amount to transfer

        Returns:
            True if successful

        Raises:
            InsufficientBalance: If sender holds less than amount
        """
        sender_norm = normalize(sender)
        recipient_norm = normalize(recipient)

        self._validate_address(recipient_norm, "recipient")
        self._validate_amount(amount)

        with atomic(self):
            sender_balance = self.balances.get(sender_norm, 0)
            if sender_balance < amount:
                raise InsufficientBalance(
                    f"ERC20: transfer amount exceeds balance "
                    f"({amount} > {sender_balance})"
                )

            self.balances[sender_norm] = sender_balance - amount
            self.balances[recipient_norm] = self.balances.get(recipient_norm, 0) + amount

            self._emit_transfer(sender_norm, recipient_norm, amount)

        logger.debug(
            "ERC20 transfer",
            extra={
                "event": "erc20.transfer",
                "token": self.symbol,
                "from": sender_norm[:10],
                "to": recipient_norm[:10],
                "amount": amount,
            }
        )

        return True

    def approve(self, owner: str, spender: str, amount: int) -> bool:
        """
        Approve spender to spend tokens on behalf of owner.

        Args:
            owner: Token owner (msg.sender)
            spender: Address being approved
            amount: Amount to approve

        Returns:
            True if successful
        """
        owner_norm = normalize(owner)
        spender_norm = normalize(spender)

        self._validate_address(spender_norm, "spender")
        self._validate_amount(amount)

        with atomic(self):
            self.allowances.setdefault(owner_norm, {})[spender_norm] = amount
            self._emit_approval(owner_norm, spender_norm, amount)

        return True

    def transfer_from(
        self, spender: str, from_addr: str, to_addr: str, amount: int
    ) -> bool:
        """
        Transfer tokens using an allowance.

        Args:
            spender: Address executing transfer (msg.sender)
            from_addr: Token owner
            to_addr: Recipient
            amount: Amount to transfer

        Returns:
            True if successful

        Raises:
            NotApproved: If the allowance is below amount
            InsufficientBalance: If from_addr holds less than amount
        """
        spender_norm = normalize(spender)
        from_norm = normalize(from_addr)
        to_norm = normalize(to_addr)

        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)

        with atomic(self):
            current_allowance = self.allowance(from_norm, spender_norm)
            if current_allowance < amount:
                raise NotApproved(
                    f"ERC20: insufficient allowance ({current_allowance} < {amount})"
                )

            from_balance = self.balances.get(from_norm, 0)
            if from_balance < amount:
                raise InsufficientBalance(
                    f"ERC20: transfer amount exceeds balance ({amount} > {from_balance})"
                )

            # Unlimited allowances are never decremented
            if current_allowance != self.UINT256_MAX:
                self.allowances[from_norm][spender_norm] = current_allowance - amount

            self.balances[from_norm] = from_balance - amount
            self.balances[to_norm] = self.balances.get(to_norm, 0) + amount

            self._emit_transfer(from_norm, to_norm, amount)

        return True

    # ==================== Minting ====================

    def mint(self, minter: str, to: str, amount: int) -> bool:
        """
        Mint new tokens (owner only).

        Raises:
            NotOwner: If minter is not the token owner
        """
        self._require_owner(minter)

        to_norm = normalize(to)
        self._validate_address(to_norm, "recipient")
        self._validate_amount(amount)

        with atomic(self):
            self.total_supply += amount
            self.balances[to_norm] = self.balances.get(to_norm, 0) + amount
            self._emit_transfer(ZERO_ADDRESS, to_norm, amount)

        logger.info(
            "ERC20 mint",
            extra={
                "event": "erc20.mint",
                "token": self.symbol,
                "to": to_norm[:10],
                "amount": amount,
                "new_supply": self.total_supply,
            }
        )

        return True

    # ==================== Helpers ====================

    def _validate_address(self, address: str, field_name: str) -> None:
        if address == ZERO_ADDRESS or not address:
            raise InvalidAddress(f"ERC20: {field_name} is zero address")

    def _validate_amount(self, amount: int) -> None:
        if amount < 0:
            raise InvalidAmount("ERC20: amount cannot be negative")
        if amount > self.UINT256_MAX:
            raise InvalidAmount("ERC20: amount exceeds uint256")

    def _require_owner(self, caller: str) -> None:
        if normalize(caller) != self.owner:
            raise NotOwner("ERC20: caller is not owner")

    def _emit_transfer(self, from_addr: str, to_addr: str, amount: int) -> None:
        self.events.append(
            TokenEvent(
                event_type="Transfer",
                from_address=from_addr,
                to_address=to_addr,
                value=amount,
            )
        )

    def _emit_approval(self, owner: str, spender: str, amount: int) -> None:
        self.events.append(
            TokenEvent(
                event_type="Approval",
                from_address=owner,
                to_address=spender,
                value=amount,
            )
        )

    # ==================== Serialization ====================

    def to_dict(self) -> Dict:
        """Serialize token state to dictionary."""
        return {
            "name": self.name,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "total_supply": self.total_supply,
            "address": self.address,
            "owner": self.owner,
            "balances": dict(self.balances),
            "allowances": {k: dict(v) for k, v in self.allowances.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ERC20Token":
        """Deserialize token state from dictionary."""
        token = cls(
            name=data["name"],
            symbol=data["symbol"],
            decimals=data.get("decimals", 18),
            total_supply=data.get("total_supply", 0),
            address=data.get("address", ""),
            owner=data.get("owner", ""),
        )
        token.balances = dict(data.get("balances", {}))
        token.allowances = {
            k: dict(v) for k, v in data.get("allowances", {}).items()
        }
        return token
