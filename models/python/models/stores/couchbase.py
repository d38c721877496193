"""
Couchbase-backed auction store.

Same CAS discipline as the rest of the Couchbase models: the auction document
is replaced with the CAS value it was read with, so a concurrent writer makes
the commit fail with ``CASMismatchException`` (surfaced as
``StaleVersionError``) instead of being overwritten.

Bids and events cannot be written in the same atomic step as the auction, so
each commit carries them inside the auction document (the outbox). They are
copied to the ``bids`` / ``auction_events`` collections under deterministic
keys right after the commit, and again on every later read of the auction
until a newer commit replaces the outbox. Copies are upserts, so repeating
them is harmless, and a commit is only possible after a read that flushed the
previous outbox.
"""

import logging
from typing import List, Optional, Sequence

from clients.couchbase import (
    AmbiguousTimeoutException,
    CASMismatchException,
    DocumentExistsException,
    DocumentNotFoundException,
    UnAmbiguousTimeoutException,
    QueryScanConsistency,
)

from models.entities.auctions import Auction, AuctionData, AuctionStatus
from models.entities.auction_events import AuctionEvent, AuctionEventData
from models.entities.bids import Bid, BidData
from models.entities.couchbase.auctions import AuctionDocument, AuctionDocumentData
from models.entities.couchbase.auction_events import AuctionEventDocument
from models.entities.couchbase.bids import BidDocument
from models.operations.errors import StaleVersionError, StoreTimeoutError
from models.stores.base import AuctionStore

logger = logging.getLogger(__name__)

_TIMEOUTS = (AmbiguousTimeoutException, UnAmbiguousTimeoutException)
_OUTBOX_FIELDS = {"outbox_bids", "outbox_events"}


def _to_auction(doc: AuctionDocument) -> Auction:
    data = AuctionData.model_validate(doc.data.model_dump(exclude=_OUTBOX_FIELDS))
    return Auction(id=doc.id, data=data, version=doc.cas)


class CouchbaseAuctionStore(AuctionStore):

    async def ensure_collections(self) -> None:
        for document in (AuctionDocument, BidDocument, AuctionEventDocument):
            keyspace = document.get_keyspace()
            if await keyspace.ensure_collection():
                logger.info(f"Created collection {keyspace}")

    async def _flush_outbox(self, doc: AuctionDocument) -> None:
        for bid in doc.data.outbox_bids:
            await BidDocument.create_or_update(bid.bid_id, bid)
        for event in doc.data.outbox_events:
            await AuctionEventDocument.create_or_update(event.event_id, event)

    async def _read(self, auction_id: str) -> Optional[AuctionDocument]:
        try:
            doc = await AuctionDocument.get(auction_id)
            if doc is not None:
                await self._flush_outbox(doc)
            return doc
        except _TIMEOUTS as e:
            raise StoreTimeoutError(str(e)) from e

    async def insert_auction(
        self, auction_id: str, data: AuctionData, events: Sequence[AuctionEventData]
    ) -> Auction:
        doc_data = AuctionDocumentData(**data.model_dump(), outbox_events=list(events))
        try:
            doc = await AuctionDocument.create(auction_id, doc_data)
        except DocumentExistsException as e:
            raise ValueError(f"Auction {auction_id} already exists") from e
        except _TIMEOUTS as e:
            raise StoreTimeoutError(str(e)) from e
        await self._flush_outbox(doc)
        return _to_auction(doc)

    async def get_auction(self, auction_id: str) -> Optional[Auction]:
        doc = await self._read(auction_id)
        return _to_auction(doc) if doc else None

    async def list_auctions(
        self,
        statuses: Optional[Sequence[AuctionStatus]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Auction]:
        keyspace = AuctionDocument.get_keyspace()
        where = "1=1"
        params = {}
        if statuses:
            where = "status IN $statuses"
            params["statuses"] = list(statuses)
        query = (
            f"SELECT META().id, * FROM {keyspace} "
            f"WHERE {where} "
            f"ORDER BY start_time ASC, META().id ASC "
            f"LIMIT {int(limit)} OFFSET {int(offset)}"
        )
        try:
            rows = await keyspace.query(
                query, scan_consistency=QueryScanConsistency.REQUEST_PLUS, **params
            )
        except _TIMEOUTS as e:
            raise StoreTimeoutError(str(e)) from e
        return [
            _to_auction(AuctionDocument(id=row["id"], data=row["auctions"]))
            for row in rows if row.get("auctions")
        ]

    async def commit(
        self,
        auction: Auction,
        bids: Sequence[BidData],
        events: Sequence[AuctionEventData],
    ) -> Auction:
        doc = AuctionDocument(
            id=auction.id,
            data=AuctionDocumentData(
                **auction.data.model_dump(),
                outbox_bids=list(bids),
                outbox_events=list(events),
            ),
            cas=auction.version,
        )
        try:
            doc = await AuctionDocument.update(doc)
        except (CASMismatchException, DocumentNotFoundException) as e:
            raise StaleVersionError(auction.id) from e
        except _TIMEOUTS as e:
            raise StoreTimeoutError(str(e)) from e

        try:
            await self._flush_outbox(doc)
        except Exception as e:
            # committed; the next read of this auction retries the copy
            logger.warning(f"Outbox flush for auction {auction.id} deferred: {e}")
        return _to_auction(doc)

    async def list_bids(self, auction_id: str, limit: int = 50) -> List[Bid]:
        doc = await self._read(auction_id)
        if doc is None:
            return []
        keyspace = BidDocument.get_keyspace()
        query = (
            f"SELECT META().id, * FROM {keyspace} "
            f"WHERE auction_id = $auction_id AND seq <= $bid_count "
            f"ORDER BY seq DESC "
            f"LIMIT {int(limit)}"
        )
        try:
            rows = await keyspace.query(
                query,
                scan_consistency=QueryScanConsistency.REQUEST_PLUS,
                auction_id=auction_id,
                bid_count=doc.data.bid_count,
            )
        except _TIMEOUTS as e:
            raise StoreTimeoutError(str(e)) from e
        return [
            Bid(id=row["id"], data=row["bids"])
            for row in rows if row.get("bids")
        ]

    async def list_events(
        self, auction_id: str, after_seq: int = 0, limit: Optional[int] = None
    ) -> List[AuctionEvent]:
        doc = await self._read(auction_id)
        if doc is None:
            return []
        keyspace = AuctionEventDocument.get_keyspace()
        limit_clause = f" LIMIT {int(limit)}" if limit is not None else ""
        query = (
            f"SELECT META().id, * FROM {keyspace} "
            f"WHERE auction_id = $auction_id AND seq > $after_seq AND seq <= $event_seq "
            f"ORDER BY seq ASC{limit_clause}"
        )
        try:
            rows = await keyspace.query(
                query,
                scan_consistency=QueryScanConsistency.REQUEST_PLUS,
                auction_id=auction_id,
                after_seq=after_seq,
                event_seq=doc.data.event_seq,
            )
        except _TIMEOUTS as e:
            raise StoreTimeoutError(str(e)) from e
        return [
            AuctionEvent(id=row["id"], data=row["auction_events"])
            for row in rows if row.get("auction_events")
        ]
