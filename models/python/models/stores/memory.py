import itertools
from typing import Dict, List, Optional, Sequence

from models.entities.auctions import Auction, AuctionData, AuctionStatus
from models.entities.auction_events import AuctionEvent, AuctionEventData
from models.entities.bids import Bid, BidData
from models.operations.errors import StaleVersionError
from models.stores.base import AuctionStore


class MemoryAuctionStore(AuctionStore):
    """Single-process store.

    Methods never await while touching state, so each call is atomic with
    respect to other coroutines on the same event loop. Records are copied
    in and out so callers cannot alias stored state.
    """

    def __init__(self):
        self._auctions: Dict[str, Auction] = {}
        self._bids: Dict[str, List[BidData]] = {}
        self._events: Dict[str, List[AuctionEventData]] = {}
        self._versions = itertools.count(1)

    async def insert_auction(
        self, auction_id: str, data: AuctionData, events: Sequence[AuctionEventData]
    ) -> Auction:
        if auction_id in self._auctions:
            raise ValueError(f"Auction {auction_id} already exists")
        stored = Auction(id=auction_id, data=data.model_copy(deep=True), version=next(self._versions))
        self._auctions[auction_id] = stored
        self._bids[auction_id] = []
        self._events[auction_id] = [e.model_copy(deep=True) for e in events]
        return stored.model_copy(deep=True)

    async def get_auction(self, auction_id: str) -> Optional[Auction]:
        stored = self._auctions.get(auction_id)
        return stored.model_copy(deep=True) if stored else None

    async def list_auctions(
        self,
        statuses: Optional[Sequence[AuctionStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Auction]:
        matches = [
            a for a in self._auctions.values()
            if statuses is None or a.data.status in statuses
        ]
        matches.sort(key=lambda a: (a.data.start_time, a.id))
        return [a.model_copy(deep=True) for a in matches[offset:offset + limit]]

    async def commit(
        self,
        auction: Auction,
        bids: Sequence[BidData],
        events: Sequence[AuctionEventData],
    ) -> Auction:
        current = self._auctions.get(auction.id)
        if current is None or current.version != auction.version:
            raise StaleVersionError(auction.id)

        log = self._events[auction.id]
        expected_seq = log[-1].seq + 1 if log else 1
        for event in events:
            if event.seq != expected_seq:
                raise StaleVersionError(auction.id)
            expected_seq += 1

        stored = Auction(id=auction.id, data=auction.data.model_copy(deep=True), version=next(self._versions))
        self._auctions[auction.id] = stored
        self._bids[auction.id].extend(b.model_copy(deep=True) for b in bids)
        log.extend(e.model_copy(deep=True) for e in events)
        return stored.model_copy(deep=True)

    async def list_bids(self, auction_id: str, limit: int = 50) -> List[Bid]:
        bids = self._bids.get(auction_id, [])
        newest_first = sorted(bids, key=lambda b: b.seq, reverse=True)[:limit]
        return [Bid(id=b.bid_id, data=b.model_copy(deep=True)) for b in newest_first]

    async def list_events(
        self, auction_id: str, after_seq: int = 0, limit: Optional[int] = None
    ) -> List[AuctionEvent]:
        events = [e for e in self._events.get(auction_id, []) if e.seq > after_seq]
        if limit is not None:
            events = events[:limit]
        return [AuctionEvent(id=e.event_id, data=e.model_copy(deep=True)) for e in events]
