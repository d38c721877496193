"""
Auction error taxonomy.

Every engine operation either returns the new state or raises one of these.
``retryable`` tells the caller whether repeating the same command may succeed.
"""

from typing import Optional


class AuctionError(Exception):
    """Base exception for auction engine failures."""
    code = "auction_error"
    retryable = False

    def __init__(self, message: str, auction_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.auction_id = auction_id


class AuctionNotFoundError(AuctionError):
    code = "not_found"

    def __init__(self, auction_id: str):
        super().__init__(f"Auction {auction_id} not found", auction_id)


class InvalidStateError(AuctionError):
    """Operation not legal in the auction's current status."""
    code = "invalid_state"

    def __init__(self, message: str, auction_id: Optional[str] = None, status: Optional[str] = None):
        super().__init__(message, auction_id)
        self.status = status


class BidTooLowError(AuctionError):
    code = "too_low"

    def __init__(
        self,
        amount: float,
        minimum_bid: float,
        auction_id: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"Bid of {amount:,.2f} is below the minimum of {minimum_bid:,.2f}",
            auction_id,
        )
        self.amount = amount
        self.minimum_bid = minimum_bid


class InvalidBidError(AuctionError):
    """Malformed bid command (non-positive amount, auto-bid ceiling below amount)."""
    code = "invalid_bid"


class InvalidAuctionError(AuctionError):
    """Auction parameters violate the record's invariants."""
    code = "invalid_auction"


class AuctionConflictError(AuctionError):
    """A concurrent mutation won; the same command can be retried."""
    code = "conflict"
    retryable = True


class AuctionTimeoutError(AuctionError):
    """Persistence did not answer in time; the command may be retried."""
    code = "timeout"
    retryable = True


class StaleVersionError(Exception):
    """Raised by stores when a commit targets an outdated auction version."""
    pass


class StoreTimeoutError(Exception):
    """Raised by stores when the backing database timed out."""
    pass
