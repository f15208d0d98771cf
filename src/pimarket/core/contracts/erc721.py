"""
ERC721 Non-Fungible Token (NFT) Standard Implementation.

Base ownership ledger for piNFTs:
- Basic NFT operations (transferFrom, approve)
- Single approved address per token, cleared on every transfer
- Metadata extension (tokenURI)
- Sequential minting starting at token id 0

Security features:
- Owner verification
- Approval validation
- Zero address checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict

from ..chain import atomic, contract_address, normalize
from ..config import ZERO_ADDRESS
from ..exceptions import InvalidAddress, NotApproved, NotOwner, TokenNotFound

if TYPE_CHECKING:
    from ..chain import Chain

logger = logging.getLogger(__name__)


@dataclass
class NFTEvent:
    """Represents an NFT contract event."""

    event_type: str  # "Transfer", "Approval", plus subclass events
    from_address: str
    to_address: str
    token_id: int
    data: dict = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


@dataclass
class ERC721Token:
    """
    ERC721 token ledger.

    Security features:
    - Owner verification on all transfers
    - Approval management
    """

    # Collection metadata
    name: str
    symbol: str

    # Contract address
    address: str = ""

    # Token state
    owners: dict[int, str] = field(default_factory=dict)  # tokenId -> owner
    balances: dict[str, int] = field(default_factory=dict)  # owner -> count
    token_approvals: dict[int, str] = field(default_factory=dict)  # tokenId -> approved

    # Metadata
    token_uris: dict[int, str] = field(default_factory=dict)

    next_token_id: int = 0

    # Events
    events: list[NFTEvent] = field(default_factory=list)

    # Hosting chain, bound on deployment
    chain: "Chain | None" = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if not self.address:
            self.address = contract_address(f"{self.name}{self.symbol}")
        self.address = normalize(self.address)

    # ==================== View Functions ====================

    def balance_of(self, owner: str) -> int:
        """Get number of NFTs owned by an address."""
        return self.balances.get(normalize(owner), 0)

    def owner_of(self, token_id: int) -> str:
        """
        Get the owner of an NFT.

        Raises:
            TokenNotFound: If token doesn't exist
        """
        owner = self.owners.get(token_id)
        if not owner:
            raise TokenNotFound(f"ERC721: token {token_id} does not exist")
        return owner

    def get_approved(self, token_id: int) -> str:
        """Get approved address for a token (zero address if none)."""
        self._require_minted(token_id)
        return self.token_approvals.get(token_id, ZERO_ADDRESS)

    def token_uri(self, token_id: int) -> str:
        self._require_minted(token_id)
        return self.token_uris.get(token_id, "")

    def total_supply(self) -> int:
        return len(self.owners)

    def exists(self, token_id: int) -> bool:
        return token_id in self.owners

    # ==================== State-Changing Functions ====================

    def approve(self, caller: str, to: str, token_id: int) -> bool:
        """
        Approve an address to transfer a specific token.

        Replaces any previous approval; only one address is approved at a time.

        Args:
            caller: Message sender (must be owner)
            to: Address to approve
            token_id: Token ID

        Returns:
            True if successful
        """
        owner = self.owner_of(token_id)
        caller_norm = normalize(caller)
        to_norm = normalize(to)

        if to_norm == owner:
            raise NotApproved("ERC721: approval to current owner")

        if caller_norm != owner:
            raise NotOwner("ERC721: approve caller is not owner")

        with atomic(self):
            self.token_approvals[token_id] = to_norm
            self._emit("Approval", owner, to_norm, token_id, owner_balance=self.balance_of(owner))

        return True

    def transfer_from(
        self, caller: str, from_addr: str, to_addr: str, token_id: int
    ) -> bool:
        """
        Transfer an NFT.

        Args:
            caller: Message sender (owner or approved address)
            from_addr: Current owner
            to_addr: New owner
            token_id: Token ID

        Returns:
            True if successful
        """
        with atomic(self):
            self._transfer(caller, from_addr, to_addr, token_id)
        return True

    def _transfer(
        self, caller: str, from_addr: str, to_addr: str, token_id: int
    ) -> None:
        """Internal transfer logic."""
        from_norm = normalize(from_addr)
        to_norm = normalize(to_addr)
        caller_norm = normalize(caller)

        owner = self.owner_of(token_id)
        if owner != from_norm:
            raise NotOwner("ERC721: transfer from incorrect owner")

        if not self._is_approved_or_owner(caller_norm, token_id):
            raise NotApproved("ERC721: caller is not owner nor approved")

        if to_norm == ZERO_ADDRESS or not to_norm:
            raise InvalidAddress("ERC721: transfer to zero address")

        self.token_approvals.pop(token_id, None)

        self.balances[from_norm] = self.balances.get(from_norm, 1) - 1
        self.balances[to_norm] = self.balances.get(to_norm, 0) + 1
        self.owners[token_id] = to_norm

        self._emit(
            "Transfer",
            from_norm,
            to_norm,
            token_id,
            from_balance=self.balances[from_norm],
            to_balance=self.balances[to_norm],
        )

        logger.debug(
            "ERC721 transfer",
            extra={
                "event": "erc721.transfer",
                "collection": self.symbol,
                "token_id": token_id,
                "from": from_norm[:10],
                "to": to_norm[:10],
            }
        )

    def _mint(self, to: str, uri: str = "") -> int:
        """Allocate the next token id to ``to``. Caller must hold a transaction."""
        to_norm = normalize(to)
        if to_norm == ZERO_ADDRESS or not to_norm:
            raise InvalidAddress("ERC721: mint to zero address")

        token_id = self.next_token_id
        self.next_token_id += 1

        self.owners[token_id] = to_norm
        self.balances[to_norm] = self.balances.get(to_norm, 0) + 1
        if uri:
            self.token_uris[token_id] = uri

        self._emit("Transfer", ZERO_ADDRESS, to_norm, token_id, to_balance=self.balances[to_norm])
        return token_id

    # ==================== Helpers ====================

    def _require_minted(self, token_id: int) -> None:
        if not self.exists(token_id):
            raise TokenNotFound(f"ERC721: token {token_id} does not exist")

    def _is_approved_or_owner(self, caller: str, token_id: int) -> bool:
        owner = self.owner_of(token_id)
        return caller == owner or self.token_approvals.get(token_id) == caller

    def _emit(
        self,
        event_type: str,
        from_addr: str,
        to_addr: str,
        token_id: int,
        **data,
    ) -> None:
        self.events.append(
            NFTEvent(
                event_type=event_type,
                from_address=from_addr,
                to_address=to_addr,
                token_id=token_id,
                data=data,
            )
        )

    # ==================== Serialization ====================

    def to_dict(self) -> Dict:
        """Serialize NFT state to dictionary."""
        return {
            "name": self.name,
            "symbol": self.symbol,
            "address": self.address,
            "owners": dict(self.owners),
            "balances": dict(self.balances),
            "token_approvals": dict(self.token_approvals),
            "token_uris": dict(self.token_uris),
            "next_token_id": self.next_token_id,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "ERC721Token":
        """Deserialize NFT state from dictionary."""
        token = cls(
            name=data["name"],
            symbol=data["symbol"],
            address=data.get("address", ""),
        )
        token.owners = {int(k): v for k, v in data.get("owners", {}).items()}
        token.balances = dict(data.get("balances", {}))
        token.token_approvals = {
            int(k): v for k, v in data.get("token_approvals", {}).items()
        }
        token.token_uris = {int(k): v for k, v in data.get("token_uris", {}).items()}
        token.next_token_id = data.get("next_token_id", 0)
        return token
