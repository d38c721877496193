"""
Bid validation and proxy (auto) bidding.

Proxy resolution is collapsed rather than simulated step by step: a command
stores at most three bids (the incoming bid, the defending proxy's answer and
the challenger's proxy answer), each at least one increment above the bid
before it.
"""

import math
from typing import Optional

from models.entities.auctions import AuctionData
from models.entities.bids import BidData
from models.operations.auction_changes import AuctionChange
from models.operations.errors import BidTooLowError, InvalidBidError, InvalidStateError


def increment_for(data: AuctionData, amount: float) -> float:
    return data.config.increment.step_for(amount)


def minimum_bid(data: AuctionData) -> float:
    """Smallest amount the next bid may have."""
    return data.current_bid + increment_for(data, data.current_bid)


def validate_bid(
    data: AuctionData,
    amount: float,
    auto_bid_max: Optional[float] = None,
    auction_id: Optional[str] = None,
) -> float:
    """Check a bid against the auction and return the bidder's ceiling.

    Bids below the reserve price are accepted; the reserve only decides
    whether the auction can close as sold.
    """
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidBidError("Bid amount must be a positive number", auction_id)
    if auto_bid_max is not None:
        if not math.isfinite(auto_bid_max):
            raise InvalidBidError("Auto-bid maximum must be a finite number", auction_id)
        if auto_bid_max < amount:
            raise InvalidBidError("Auto-bid maximum cannot be below the bid amount", auction_id)
    if data.status != "live":
        raise InvalidStateError(
            f"Auction is not accepting bids (status: {data.status})", auction_id, data.status
        )
    minimum = minimum_bid(data)
    if amount < minimum:
        raise BidTooLowError(amount, minimum, auction_id)
    return max(amount, auto_bid_max or amount)


def place_bid(
    change: AuctionChange,
    bidder_id: str,
    amount: float,
    auto_bid_max: Optional[float] = None,
) -> BidData:
    """Apply a bid to ``change`` and return the bid record it stored."""
    data = change.data
    ceiling = validate_bid(data, amount, auto_bid_max, change.auction_id)

    leader = data.high_bidder_id
    if leader is None or leader == bidder_id:
        # first bid, or the leader raising their own bid and/or ceiling
        held = data.high_bidder_max if leader == bidder_id else None
        return change.record_bid(
            bidder_id, amount, leader_max=max(ceiling, held or 0.0), auto_bid_max=auto_bid_max
        )

    defender_max = max(data.high_bidder_max or 0.0, data.current_bid)
    if ceiling <= defender_max < amount + increment_for(data, amount):
        # The leader's proxy already holds this amount and cannot answer
        # one increment higher, so the earlier bid keeps the lead.
        minimum = defender_max + increment_for(data, defender_max)
        raise BidTooLowError(
            amount,
            minimum,
            change.auction_id,
            message=f"Outbid by an automatic bid; the minimum is now {minimum:,.2f}",
        )

    bid = change.record_bid(bidder_id, amount, leader_max=ceiling, auto_bid_max=auto_bid_max)
    _resolve_proxies(change, leader, defender_max, bidder_id, ceiling)
    return bid


def _next_amount(data: AuctionData, target: float) -> float:
    """``target`` raised, if needed, to clear one increment over the current bid."""
    return max(target, data.current_bid + increment_for(data, data.current_bid))


def _resolve_proxies(
    change: AuctionChange,
    defender_id: str,
    defender_max: float,
    challenger_id: str,
    challenger_max: float,
) -> None:
    data = change.data

    # The defender's proxy answers only if it can top the incoming bid.
    if defender_max < data.current_bid + increment_for(data, data.current_bid):
        return

    # Enough headroom to beat the challenger's ceiling: stop one step above it.
    beat_challenger = _next_amount(data, challenger_max + increment_for(data, challenger_max))
    if defender_max >= beat_challenger:
        change.record_bid(defender_id, beat_challenger, leader_max=defender_max, is_auto=True)
        return

    change.record_bid(defender_id, defender_max, leader_max=defender_max, is_auto=True)

    # Equal ceilings, or a ceiling within one step, leave the earlier bidder ahead.
    beat_defender = _next_amount(data, defender_max + increment_for(data, defender_max))
    if challenger_max >= beat_defender:
        change.record_bid(challenger_id, beat_defender, leader_max=challenger_max, is_auto=True)
