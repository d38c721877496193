from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

from models.entities.auctions import Auction, AuctionData, AuctionStatus
from models.entities.auction_events import AuctionEvent, AuctionEventData
from models.entities.bids import Bid, BidData


class AuctionStore(ABC):
    """Persistence the auction engine depends on.

    ``commit`` is the only mutation of an existing auction. It must replace
    the record and append its bids and events as one unit, and only if the
    stored version still equals ``auction.version``; otherwise it raises
    ``StaleVersionError`` and changes nothing visible.
    """

    @abstractmethod
    async def insert_auction(
        self, auction_id: str, data: AuctionData, events: Sequence[AuctionEventData]
    ) -> Auction:
        ...

    @abstractmethod
    async def get_auction(self, auction_id: str) -> Optional[Auction]:
        ...

    @abstractmethod
    async def list_auctions(
        self,
        statuses: Optional[Sequence[AuctionStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Auction]:
        """Auctions ordered by start time, optionally filtered by status."""

    @abstractmethod
    async def commit(
        self,
        auction: Auction,
        bids: Sequence[BidData],
        events: Sequence[AuctionEventData],
    ) -> Auction:
        ...

    @abstractmethod
    async def list_bids(self, auction_id: str, limit: int = 50) -> List[Bid]:
        """Committed bids, newest first."""

    @abstractmethod
    async def list_events(
        self, auction_id: str, after_seq: int = 0, limit: Optional[int] = None
    ) -> List[AuctionEvent]:
        """Committed events with ``seq > after_seq``, oldest first."""

    async def close(self) -> None:
        pass
