"""
In-process hosting ledger.

The chain owns everything the contracts themselves do not: native-currency
balances, the block clock, the contract registry and transaction atomicity.

Every state-changing contract call runs inside ``Chain.transaction()``.
Transactions are serialized by a reentrant lock; the outermost transaction
snapshots each deployed contract and the native ledger and restores them if
the call raises, so a failed operation leaves no partial state behind.
"""

from __future__ import annotations

import contextlib
import hashlib
import itertools
import logging
import threading
import time
from typing import Any, Iterator

from .config import ZERO_ADDRESS
from .exceptions import (
    ContractNotFound,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    get_error_context,
)

logger = logging.getLogger(__name__)

_address_nonce = itertools.count()


def contract_address(seed: str) -> str:
    """Derive a fresh 20-byte hex address for a contract."""
    addr_input = f"{seed}{time.time_ns()}{next(_address_nonce)}".encode()
    addr_hash = hashlib.sha3_256(addr_input).digest()
    return f"0x{addr_hash[-20:].hex()}"


def normalize(address: str) -> str:
    """Normalize address to lowercase."""
    return address.lower()


def atomic(contract: Any) -> contextlib.AbstractContextManager:
    """Transaction scope for ``contract``; a no-op before deployment."""
    if contract.chain is None:
        return contextlib.nullcontext()
    return contract.chain.transaction()


# Bound at deployment, never part of serialized contract state
_RUNTIME_ATTRIBUTES = ("chain", "metrics")


def load_state(contract: Any, data: dict, event_count: int) -> None:
    """Overwrite ``contract`` in place from its ``to_dict()`` form."""
    runtime = {
        name: getattr(contract, name)
        for name in _RUNTIME_ATTRIBUTES
        if hasattr(contract, name)
    }
    events = contract.events[:event_count]
    restored = type(contract).from_dict(data)
    contract.__dict__.update(restored.__dict__)
    contract.__dict__.update(runtime)
    contract.events = events


class Chain:
    """
    Hosting ledger for marketplace contracts.

    Attributes:
        balances: Native currency balance per address
        timestamp: Current block timestamp in seconds
        block_number: Number of committed transactions
        contracts: Deployed contracts keyed by lowercase address
    """

    def __init__(self, timestamp: int | None = None) -> None:
        self.balances: dict[str, int] = {}
        self.timestamp = int(time.time()) if timestamp is None else timestamp
        self.block_number = 0
        self.contracts: dict[str, Any] = {}
        self._lock = threading.RLock()
        self._depth = 0

    # ==================== Clock ====================

    def now(self) -> int:
        return self.timestamp

    def advance_time(self, seconds: int) -> int:
        """Move the block clock forward and return the new timestamp."""
        if seconds < 0:
            raise InvalidAmount("Cannot move the clock backwards")
        self.timestamp += seconds
        return self.timestamp

    # ==================== Contracts ====================

    def deploy(self, contract: Any) -> Any:
        """Register ``contract`` and bind it to this chain."""
        with self._lock:
            address = normalize(contract.address)
            contract.chain = self
            self.contracts[address] = contract
            self.balances.setdefault(address, 0)

        logger.info(
            "Contract deployed",
            extra={
                "event": "chain.deploy",
                "contract_type": type(contract).__name__,
                "address": address,
            }
        )
        return contract

    def get_contract(self, address: str, expected_type: type | None = None) -> Any:
        """
        Look up a deployed contract.

        Raises:
            ContractNotFound: If nothing (of the expected type) is deployed there
        """
        contract = self.contracts.get(normalize(address))
        if contract is None:
            raise ContractNotFound(f"No contract deployed at {address}")
        if expected_type is not None and not isinstance(contract, expected_type):
            raise ContractNotFound(
                f"Contract at {address} is not a {expected_type.__name__}"
            )
        return contract

    # ==================== Native Currency ====================

    def balance_of(self, address: str) -> int:
        return self.balances.get(normalize(address), 0)

    def fund(self, address: str, amount: int) -> int:
        """Credit native currency to ``address`` out of thin air (genesis/faucet)."""
        if amount < 0:
            raise InvalidAmount("Funding amount cannot be negative")
        address_norm = normalize(address)
        with self._lock:
            self.balances[address_norm] = self.balances.get(address_norm, 0) + amount
            return self.balances[address_norm]

    def transfer_value(self, sender: str, recipient: str, amount: int) -> None:
        """
        Move native currency between two addresses.

        Raises:
            InvalidAmount: If amount is negative
            InvalidAddress: If recipient is the zero address
            InsufficientBalance: If sender cannot cover the amount
        """
        if amount < 0:
            raise InvalidAmount("Value cannot be negative")
        sender_norm = normalize(sender)
        recipient_norm = normalize(recipient)
        if not recipient_norm or recipient_norm == ZERO_ADDRESS:
            raise InvalidAddress("Value transfer to zero address")
        if amount == 0:
            return

        with self._lock:
            sender_balance = self.balances.get(sender_norm, 0)
            if sender_balance < amount:
                raise InsufficientBalance(
                    f"Insufficient native balance ({sender_balance} < {amount})",
                    details={"address": sender_norm},
                )
            self.balances[sender_norm] = sender_balance - amount
            self.balances[recipient_norm] = self.balances.get(recipient_norm, 0) + amount

    # ==================== Transactions ====================

    @contextlib.contextmanager
    def transaction(self) -> Iterator["Chain"]:
        """
        Run a block of contract calls atomically.

        Nested transactions join the outermost one; only the outermost
        snapshots and restores.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            snapshot = self._snapshot()
            self._depth = 1
            try:
                yield self
            except Exception as exc:
                self._restore(snapshot)
                logger.info(
                    "Transaction reverted",
                    extra={"event": "chain.revert", **get_error_context(exc)},
                )
                raise
            else:
                self.block_number += 1
            finally:
                self._depth = 0

    def _snapshot(self) -> dict:
        return {
            "balances": dict(self.balances),
            "contracts": {
                address: (contract.to_dict(), len(contract.events))
                for address, contract in self.contracts.items()
            },
        }

    def _restore(self, snapshot: dict) -> None:
        self.balances = dict(snapshot["balances"])
        saved = snapshot["contracts"]
        for address in list(self.contracts):
            if address not in saved:
                del self.contracts[address]
        for address, (data, event_count) in saved.items():
            load_state(self.contracts[address], data, event_count)
