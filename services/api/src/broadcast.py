"""
In-process fan-out of committed auction changes.

The engine publishes every commit here; each SSE connection subscribes to
one auction and drains its own bounded queue. A subscriber that falls behind
loses its oldest messages rather than slowing the publisher down.
"""

import asyncio
from collections import defaultdict
from contextlib import contextmanager
from typing import Dict, Iterator, List, Sequence, Set

from pydantic import BaseModel

from models.entities.auctions import Auction
from models.entities.auction_events import AuctionEventData
from utils import log

logger = log.get_logger(__name__)


class AuctionUpdate(BaseModel):
    auction: Auction
    events: List[AuctionEventData]


class AuctionBroadcaster:
    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: Dict[str, Set[asyncio.Queue]] = defaultdict(set)

    def subscriber_count(self, auction_id: str) -> int:
        return len(self._subscribers.get(auction_id, ()))

    async def publish(self, auction: Auction, events: Sequence[AuctionEventData]) -> None:
        update = AuctionUpdate(auction=auction, events=list(events))
        for queue in list(self._subscribers.get(auction.id, ())):
            if queue.full():
                queue.get_nowait()
                logger.debug(f"Dropped oldest update for a slow subscriber of {auction.id}")
            queue.put_nowait(update)

    @contextmanager
    def subscribe(self, auction_id: str) -> Iterator[asyncio.Queue]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers[auction_id].add(queue)
        try:
            yield queue
        finally:
            self._subscribers[auction_id].discard(queue)
            if not self._subscribers[auction_id]:
                del self._subscribers[auction_id]
