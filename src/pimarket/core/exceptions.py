"""
Marketplace exception hierarchy for pimarket.

Every failure aborts the transaction that raised it. Market errors carry a
machine-readable ``reason`` code so callers can assert outcomes without
parsing messages.
"""

from __future__ import annotations
from typing import Optional, Any, Dict


class BlockchainError(Exception):
    """Base exception for all ledger-related errors.

    Attributes:
        message: Human-readable error description
        details: Additional context about the error
        recoverable: Whether the operation can be retried
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable


# ==================== Contract Execution Errors ====================


class MarketError(BlockchainError):
    """Raised when a contract operation reverts.

    Subclasses set ``reason`` to a stable code.
    """

    reason: str = "REVERTED"


class NotOwner(MarketError):
    """Raised when the caller does not own the token or listing."""
    reason = "NOT_OWNER"


class NotApproved(MarketError):
    """Raised when the caller lacks approval for the requested transfer."""
    reason = "NOT_APPROVED"


class ListingInactive(MarketError):
    """Raised when operating on a listing that is no longer active."""
    reason = "LISTING_INACTIVE"


class AuctionExpired(MarketError):
    """Raised when bidding after the auction deadline."""
    reason = "AUCTION_EXPIRED"


class AuctionActive(MarketError):
    """Raised when withdrawing a bid from an auction that is still running."""
    reason = "AUCTION_ACTIVE"


class InsufficientPayment(MarketError):
    """Raised when the attached payment is below the required amount."""
    reason = "INSUFFICIENT_PAYMENT"


class IncorrectPayment(InsufficientPayment):
    """Raised when a fixed-price payment does not match the price exactly."""
    reason = "INCORRECT_PAYMENT"


class InsufficientCustodyBalance(MarketError):
    """Raised when an NFT holds fewer embedded tokens than requested."""
    reason = "INSUFFICIENT_CUSTODY_BALANCE"


class InsufficientBalance(MarketError):
    """Raised when an account lacks native or token balance."""
    reason = "INSUFFICIENT_BALANCE"


class RoyaltyOverflow(MarketError):
    """Raised when royalty basis points exceed 10000."""
    reason = "ROYALTY_OVERFLOW"


class AlreadyWithdrawn(MarketError):
    """Raised when a bid's funds have already left escrow."""
    reason = "ALREADY_WITHDRAWN"


class BidSettled(AlreadyWithdrawn):
    """Raised when withdrawing the bid that won the auction."""
    reason = "BID_SETTLED"


class InvalidBidIndex(MarketError):
    """Raised when a bid index is out of range."""
    reason = "INVALID_BID_INDEX"


class InvalidAmount(MarketError):
    """Raised for negative or zero amounts, prices and durations."""
    reason = "INVALID_AMOUNT"


class InvalidAddress(MarketError):
    """Raised for the zero address or an empty address."""
    reason = "INVALID_ADDRESS"


class TokenNotFound(MarketError):
    """Raised when an NFT token id has never been minted."""
    reason = "TOKEN_NOT_FOUND"


class ListingNotFound(MarketError):
    """Raised when a listing id was never assigned."""
    reason = "LISTING_NOT_FOUND"


class ContractNotFound(MarketError):
    """Raised when no contract is deployed at an address."""
    reason = "CONTRACT_NOT_FOUND"


class ReentrancyError(MarketError):
    """Raised when a guarded contract is entered while already executing."""
    reason = "REENTRANT_CALL"


# ==================== Configuration Errors ====================


class ConfigurationError(BlockchainError):
    """Raised when market configuration is invalid."""


# ==================== Utility Functions ====================


def get_error_context(exc: Exception) -> Dict[str, Any]:
    """Extract error context from an exception for logging.

    Args:
        exc: The exception to extract context from

    Returns:
        Dictionary containing error type, message, and any additional details
    """
    context: Dict[str, Any] = {
        "error_type": type(exc).__name__,
        "error_message": str(exc),
    }

    if isinstance(exc, BlockchainError):
        context["recoverable"] = exc.recoverable
        if exc.details:
            context["details"] = exc.details

    if isinstance(exc, MarketError):
        context["reason"] = exc.reason

    return context
