"""
Demo data for local development.

Creates three property auctions at different points of their lifecycle:
- a live auction with bidding already under way (reserve not yet met)
- an auction in its preview week
- a live auction with a buy-now price

Run standalone:   python seed.py     (against the in-memory store, prints ids)
Or via API:       POST /api/seed
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import List

from models.entities.auctions import AuctionConfig
from models.operations.auctions import AuctionEngine
from utils import log

logger = log.get_logger(__name__)


async def run_seed(engine: AuctionEngine) -> List[str]:
    now = datetime.now(timezone.utc)
    ids = []

    penthouse = await engine.create_auction(
        property_id="luxury-downtown-penthouse",
        preview_start=now - timedelta(days=3),
        start_time=now - timedelta(hours=1),
        end_time=now + timedelta(hours=2),
        config=AuctionConfig(
            auction_type="live", reserve_price=750_000, buy_now_price=950_000
        ),
    )
    await engine.advance(penthouse.id)
    await engine.place_bid(penthouse.id, "demo-bidder-1", 700_000, auto_bid_max=740_000)
    await engine.place_bid(penthouse.id, "demo-bidder-2", 720_000)
    ids.append(penthouse.id)

    family_house = await engine.create_auction(
        property_id="modern-family-house",
        preview_start=now - timedelta(days=5),
        start_time=now + timedelta(days=2),
        end_time=now + timedelta(days=2, hours=1),
        config=AuctionConfig(auction_type="live", reserve_price=1_200_000),
    )
    ids.append(family_house.id)

    apartment = await engine.create_auction(
        property_id="historic-district-apartment",
        preview_start=now - timedelta(days=7),
        start_time=now - timedelta(hours=1),
        end_time=now + timedelta(minutes=30),
        config=AuctionConfig(reserve_price=500_000, buy_now_price=650_000),
    )
    await engine.advance(apartment.id)
    await engine.place_bid(apartment.id, "demo-bidder-3", 520_000)
    ids.append(apartment.id)

    logger.info(f"Seeded {len(ids)} demo auctions")
    return ids


if __name__ == "__main__":
    from models.stores.memory import MemoryAuctionStore

    log.init("INFO")
    seeded = asyncio.run(run_seed(AuctionEngine(MemoryAuctionStore())))
    for auction_id in seeded:
        print(auction_id)
