from typing import List
from pydantic import Field
from clients.couchbase import BaseModelCouchbase

from models.entities.auctions import AuctionData
from models.entities.auction_events import AuctionEventData
from models.entities.bids import BidData


class AuctionDocumentData(AuctionData):
    # Bids and events of the last commit, written atomically with the auction
    # (the CAS replace is the commit point) and copied out to their own
    # collections afterwards.
    outbox_bids: List[BidData] = Field(default_factory=list)
    outbox_events: List[AuctionEventData] = Field(default_factory=list)


class AuctionDocument(BaseModelCouchbase[AuctionDocumentData]):
    _collection_name = "auctions"
