from clients.couchbase import BaseModelCouchbase

from models.entities.auction_events import AuctionEventData


class AuctionEventDocument(BaseModelCouchbase[AuctionEventData]):
    _collection_name = "auction_events"
