"""
Working copy of one auction while a command is applied to it.

An ``AuctionChange`` is built from the record read out of the store, mutated
by the transition / bidding / buy-now rules, and then handed to the store as a
single commit: the new auction state plus the bids and events it appends.
Nothing here touches persistence.
"""

from datetime import datetime
from typing import Any, List, Optional, Tuple

from models.entities.auctions import Auction, AuctionData, AuctionStatus, TERMINAL_STATUSES
from models.entities.auction_events import AuctionEventData, AuctionEventType
from models.entities.bids import BidData
from models.operations.errors import InvalidStateError

# Directed edges of the status machine; terminal statuses have none.
ALLOWED_TRANSITIONS = {
    "preview": frozenset({"live", "cancelled"}),
    "live": frozenset({"ended", "sold", "cancelled"}),
    "ended": frozenset(),
    "sold": frozenset(),
    "cancelled": frozenset(),
}


class AuctionChange:
    def __init__(self, auction: Auction, now: datetime):
        self.auction_id = auction.id
        self.version = auction.version
        self.now = now
        self.data: AuctionData = auction.data.model_copy(deep=True)
        self.bids: List[BidData] = []
        self.events: List[AuctionEventData] = []

    @property
    def changed(self) -> bool:
        return bool(self.events)

    def to_auction(self) -> Auction:
        return Auction(id=self.auction_id, data=self.data, version=self.version)

    def savepoint(self) -> Tuple[AuctionData, int, int]:
        return self.data.model_copy(deep=True), len(self.bids), len(self.events)

    def rollback(self, savepoint: Tuple[AuctionData, int, int]) -> None:
        data, n_bids, n_events = savepoint
        self.data = data
        del self.bids[n_bids:]
        del self.events[n_events:]

    def record_event(self, event_type: AuctionEventType, **payload: Any) -> AuctionEventData:
        self.data.event_seq += 1
        event = AuctionEventData(
            auction_id=self.auction_id,
            seq=self.data.event_seq,
            event_type=event_type,
            payload=payload,
            occurred_at=self.now,
        )
        self.events.append(event)
        return event

    def record_bid(
        self,
        bidder_id: str,
        amount: float,
        leader_max: float,
        auto_bid_max: Optional[float] = None,
        is_auto: bool = False,
    ) -> BidData:
        """Store an accepted bid and make it the high bid.

        ``leader_max`` is the proxy ceiling the bidder holds once this bid
        leads; it is kept so the record can be rebuilt from the event log.
        """
        d = self.data
        previous_bid = d.current_bid
        d.bid_count += 1
        bid = BidData(
            auction_id=self.auction_id,
            seq=d.bid_count,
            bidder_id=bidder_id,
            amount=amount,
            auto_bid_max=auto_bid_max,
            is_auto=is_auto,
            placed_at=self.now,
        )
        d.current_bid = amount
        d.high_bid_id = bid.bid_id
        d.high_bidder_id = bidder_id
        d.high_bidder_max = leader_max
        self.bids.append(bid)
        self.record_event(
            "bid_placed",
            bid_id=bid.bid_id,
            bid_seq=bid.seq,
            bidder_id=bidder_id,
            amount=amount,
            previous_bid=previous_bid,
            bid_count=d.bid_count,
            is_auto=is_auto,
            auto_bid_max=auto_bid_max,
            leader_max=leader_max,
        )
        return bid

    def set_status(self, status: AuctionStatus, reason: str) -> AuctionEventData:
        old = self.data.status
        if status not in ALLOWED_TRANSITIONS[old]:
            raise InvalidStateError(
                f"Cannot move auction from {old} to {status}", self.auction_id, old
            )
        self.data.status = status
        if status in TERMINAL_STATUSES:
            self.data.closed_at = self.now
            if status == "sold" and self.data.winner_id is None:
                self.data.winner_id = self.data.high_bidder_id
        return self.record_event(
            "status_changed", from_status=old, to_status=status, reason=reason
        )
