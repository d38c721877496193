from datetime import datetime, timedelta, timezone

import pytest

from models.entities.auctions import AuctionConfig
from models.operations.auctions import AuctionEngine
from models.stores.memory import MemoryAuctionStore

T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingNotifier:
    def __init__(self):
        self.updates = []

    async def publish(self, auction, events):
        self.updates.append((auction, list(events)))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryAuctionStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(store, notifier, clock):
    return AuctionEngine(store, notifier=notifier, clock=clock)


@pytest.fixture
def open_auction(engine, clock):
    """Async factory: a live (default) or preview auction starting around the clock's now."""

    async def _open(live: bool = True, engine: AuctionEngine = engine, **config):
        if live:
            start = clock.now
        else:
            start = clock.now + timedelta(hours=1)
        auction = await engine.create_auction(
            property_id="prop-1",
            preview_start=clock.now - timedelta(days=7),
            start_time=start,
            end_time=start + timedelta(hours=1),
            config=AuctionConfig(**config),
        )
        if live:
            auction = await engine.advance(auction.id)
        return auction

    return _open
