from clients.couchbase import BaseModelCouchbase

from models.entities.bids import BidData


class BidDocument(BaseModelCouchbase[BidData]):
    _collection_name = "bids"
