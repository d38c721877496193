"""
Auction engine: the only writer of auction state.

Every mutation of one auction (bid, buy-now, cancel, time transition) runs
under that auction's exclusivity:
- an in-process ``asyncio.Lock`` per auction id serializes commands here
- ``_run`` re-reads the record on each attempt and the store's version check
  (CAS) rejects a commit if another process got there first; the command is
  then re-validated against the fresh record, with exponential backoff
  (10 ms, 20 ms, 40 ms, ...), and ``AuctionConflictError`` is raised once the
  retries are used up.
Before a command is applied, any time transitions due at ``now`` are applied
to the same working copy, so a bid that arrives after ``end_time`` but before
the sweep sees the auction closed and the overdue transition is committed.

Different auctions never share a lock and proceed in parallel.
"""

import asyncio
import logging
import uuid
import weakref
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Optional, Protocol, Sequence, TypeVar

from pydantic import BaseModel

from models.entities.auctions import (
    OPEN_STATUSES,
    Auction,
    AuctionConfig,
    AuctionData,
    AuctionStatus,
)
from models.entities.auction_events import AuctionEvent, AuctionEventData
from models.entities.bids import Bid
from models.operations import auction_bidding, auction_buy_now
from models.operations.auction_changes import AuctionChange
from models.operations.auction_events import creation_payload, projection_mismatches, replay
from models.operations.auction_transitions import apply_time_transitions
from models.operations.errors import (
    AuctionConflictError,
    AuctionError,
    AuctionNotFoundError,
    AuctionTimeoutError,
    InvalidAuctionError,
    StaleVersionError,
    StoreTimeoutError,
)
from models.stores.base import AuctionStore

logger = logging.getLogger(__name__)

R = TypeVar("R")


class EngineSettings(BaseModel):
    store_timeout_seconds: float = 5.0
    lock_timeout_seconds: float = 5.0
    max_retries: int = 5
    # Expiry policy: close as sold when the reserve is met, otherwise ended.
    # When False every expiry closes as ended.
    sold_when_reserve_met: bool = True


class AuctionNotifier(Protocol):
    async def publish(self, auction: Auction, events: Sequence[AuctionEventData]) -> None:
        ...


class TickSummary(BaseModel):
    checked: int = 0
    transitioned: int = 0
    failed: int = 0


class AuditResult(BaseModel):
    auction_id: str
    consistent: bool
    mismatches: List[str] = []


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class AuctionEngine:

    def __init__(
        self,
        store: AuctionStore,
        notifier: Optional[AuctionNotifier] = None,
        settings: Optional[EngineSettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.notifier = notifier
        self.settings = settings or EngineSettings()
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    # -----------------------------------------------------------------------
    # Plumbing
    # -----------------------------------------------------------------------

    async def _store_call(self, awaitable: Awaitable[R], auction_id: Optional[str] = None) -> R:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.settings.store_timeout_seconds)
        except (asyncio.TimeoutError, StoreTimeoutError):
            logger.warning(f"Store timed out (auction={auction_id})")
            raise AuctionTimeoutError("Auction storage did not respond in time", auction_id)

    @asynccontextmanager
    async def _exclusive(self, auction_id: str):
        lock = self._locks.get(auction_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[auction_id] = lock
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.settings.lock_timeout_seconds)
        except asyncio.TimeoutError:
            raise AuctionConflictError(
                "Auction is busy with another operation, please retry", auction_id
            )
        try:
            yield
        finally:
            lock.release()

    async def _load(self, auction_id: str) -> Auction:
        auction = await self._store_call(self.store.get_auction(auction_id), auction_id)
        if auction is None:
            raise AuctionNotFoundError(auction_id)
        return auction

    async def _publish(self, auction: Auction, events: Sequence[AuctionEventData]) -> None:
        if self.notifier is None:
            return
        try:
            await self.notifier.publish(auction, events)
        except Exception as e:
            logger.warning(f"Failed to publish update for auction {auction.id}: {e}")

    async def _run(
        self,
        auction_id: str,
        command: Optional[Callable[[AuctionChange], R]] = None,
        now: Optional[datetime] = None,
    ) -> Auction:
        """Apply due time transitions and then ``command`` atomically.

        If the command is rejected, the time transitions are still committed
        and the rejection is raised afterwards.
        """
        async with self._exclusive(auction_id):
            backoff_ms = 10
            for attempt in range(self.settings.max_retries + 1):
                auction = await self._load(auction_id)
                change = AuctionChange(auction, _aware(now) if now else self._clock())
                apply_time_transitions(change, self.settings.sold_when_reserve_met)

                rejection: Optional[AuctionError] = None
                if command is not None:
                    savepoint = change.savepoint()
                    try:
                        command(change)
                    except AuctionError as e:
                        change.rollback(savepoint)
                        rejection = e

                if not change.changed:
                    if rejection is not None:
                        raise rejection
                    return auction

                try:
                    committed = await self._store_call(
                        self.store.commit(change.to_auction(), change.bids, change.events),
                        auction_id,
                    )
                except StaleVersionError:
                    if attempt == self.settings.max_retries:
                        logger.warning(
                            f"Auction {auction_id}: gave up after {attempt + 1} conflicting attempts"
                        )
                        raise AuctionConflictError(
                            "Concurrent update conflict, please retry", auction_id
                        )
                    await asyncio.sleep(backoff_ms / 1000)
                    backoff_ms *= 2
                    continue

                self._log_commit(change)
                await self._publish(committed, change.events)
                if rejection is not None:
                    raise rejection
                return committed

        raise AuctionConflictError("Max retries exceeded", auction_id)

    def _log_commit(self, change: AuctionChange) -> None:
        for event in change.events:
            if event.event_type == "status_changed":
                p = event.payload
                logger.info(
                    f"Auction {change.auction_id}: {p['from_status']} -> {p['to_status']} "
                    f"({p['reason']})"
                )
            elif event.event_type == "bid_placed":
                p = event.payload
                logger.debug(
                    f"Auction {change.auction_id}: bid #{p['bid_count']} of {p['amount']} "
                    f"by {p['bidder_id']}{' (auto)' if p['is_auto'] else ''}"
                )

    # -----------------------------------------------------------------------
    # Creation and queries
    # -----------------------------------------------------------------------

    async def create_auction(
        self,
        property_id: str,
        start_time: datetime,
        end_time: datetime,
        preview_start: Optional[datetime] = None,
        config: Optional[AuctionConfig] = None,
        auction_id: Optional[str] = None,
    ) -> Auction:
        """Create an auction in ``preview`` with an ``auction_created`` event."""
        config = config or AuctionConfig()
        start_time = _aware(start_time)
        end_time = _aware(end_time)
        preview_start = _aware(preview_start) if preview_start else start_time

        if not property_id:
            raise InvalidAuctionError("property_id is required")
        if not preview_start <= start_time < end_time:
            raise InvalidAuctionError("Schedule must satisfy preview_start <= start_time < end_time")
        if config.reserve_price < 0:
            raise InvalidAuctionError("Reserve price cannot be negative")
        if config.buy_now_price is not None and config.buy_now_price <= config.reserve_price:
            raise InvalidAuctionError("Buy-now price must be above the reserve price")
        if not 0 <= config.commission_rate <= 1:
            raise InvalidAuctionError("Commission rate must be between 0 and 1")

        auction_id = auction_id or str(uuid.uuid4())
        now = self._clock()
        data = AuctionData(
            property_id=property_id,
            config=config,
            preview_start=preview_start,
            start_time=start_time,
            end_time=end_time,
            created_at=now,
        )
        change = AuctionChange(Auction(id=auction_id, data=data), now)
        change.record_event("auction_created", **creation_payload(data))

        try:
            auction = await self._store_call(
                self.store.insert_auction(auction_id, change.data, change.events), auction_id
            )
        except ValueError as e:
            raise InvalidAuctionError(str(e), auction_id)
        logger.info(
            f"Auction {auction_id} created for property {property_id}: "
            f"{start_time.isoformat()} -> {end_time.isoformat()}"
        )
        await self._publish(auction, change.events)
        return auction

    async def get_auction(self, auction_id: str) -> Auction:
        return await self._load(auction_id)

    async def list_auctions(
        self,
        status: Optional[AuctionStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Auction]:
        statuses = [status] if status else None
        return await self._store_call(
            self.store.list_auctions(statuses=statuses, limit=limit, offset=offset)
        )

    async def list_bids(self, auction_id: str, limit: int = 50) -> List[Bid]:
        await self._load(auction_id)
        return await self._store_call(self.store.list_bids(auction_id, limit=limit), auction_id)

    async def list_events(
        self, auction_id: str, after_seq: int = 0, limit: Optional[int] = None
    ) -> List[AuctionEvent]:
        """Events of an auction in commit order (ascending ``seq``)."""
        await self._load(auction_id)
        return await self._store_call(
            self.store.list_events(auction_id, after_seq=after_seq, limit=limit), auction_id
        )

    async def audit(self, auction_id: str) -> AuditResult:
        """Replay the event log and compare it with the stored record."""
        auction = await self._load(auction_id)
        events = await self._store_call(self.store.list_events(auction_id), auction_id)
        try:
            rebuilt = replay(e.data for e in events if e.data.seq <= auction.data.event_seq)
        except ValueError as e:
            # missing or out-of-order events; nothing to compare against
            logger.error(f"Event log of auction {auction_id} cannot be replayed: {e}")
            return AuditResult(auction_id=auction_id, consistent=False, mismatches=[str(e)])
        mismatches = projection_mismatches(auction.data, rebuilt)
        if mismatches:
            logger.error(f"Auction {auction_id} diverges from its event log: {mismatches}")
        return AuditResult(auction_id=auction_id, consistent=not mismatches, mismatches=mismatches)

    # -----------------------------------------------------------------------
    # Commands
    # -----------------------------------------------------------------------

    async def place_bid(
        self,
        auction_id: str,
        bidder_id: str,
        amount: float,
        auto_bid_max: Optional[float] = None,
    ) -> Auction:
        try:
            return await self._run(
                auction_id,
                lambda change: auction_bidding.place_bid(change, bidder_id, amount, auto_bid_max),
            )
        except AuctionError as e:
            logger.debug(f"Bid of {amount} by {bidder_id} on {auction_id} rejected: {e.code}")
            raise

    async def buy_now(self, auction_id: str, buyer_id: str) -> Auction:
        auction = await self._run(
            auction_id, lambda change: auction_buy_now.buy_now(change, buyer_id)
        )
        logger.info(
            f"Auction {auction_id} bought now by {buyer_id} at {auction.data.current_bid}"
        )
        return auction

    async def cancel_auction(self, auction_id: str, reason: str = "cancelled_by_admin") -> Auction:
        """Administrative cancellation of a preview or live auction."""
        return await self._run(
            auction_id, lambda change: change.set_status("cancelled", reason=reason)
        )

    async def advance(self, auction_id: str, now: Optional[datetime] = None) -> Auction:
        """Apply the time transitions due for one auction at ``now``."""
        return await self._run(auction_id, now=now)

    async def tick(self, now: Optional[datetime] = None) -> TickSummary:
        """Evaluate time transitions for every open auction.

        Each auction is advanced under its own exclusivity; a failure on one
        is logged and does not stop the sweep.
        """
        now = _aware(now) if now else self._clock()
        summary = TickSummary()
        offset, page = 0, 200
        due: List[Auction] = []
        while True:
            batch = await self._store_call(
                self.store.list_auctions(statuses=list(OPEN_STATUSES), limit=page, offset=offset)
            )
            due.extend(batch)
            if len(batch) < page:
                break
            offset += page

        for auction in due:
            summary.checked += 1
            try:
                advanced = await self.advance(auction.id, now)
            except AuctionError as e:
                summary.failed += 1
                logger.warning(f"Tick failed for auction {auction.id}: {e}")
                continue
            if advanced.data.status != auction.data.status:
                summary.transitioned += 1

        if summary.transitioned or summary.failed:
            logger.info(
                f"Tick at {now.isoformat()}: checked={summary.checked} "
                f"transitioned={summary.transitioned} failed={summary.failed}"
            )
        return summary
