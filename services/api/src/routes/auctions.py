"""
API endpoints for auctions and bidding.

POST   /auctions/                  — create auction (admin)
GET    /auctions/                  — list auctions, optionally by status
GET    /auctions/{id}              — auction detail with countdown
GET    /auctions/{id}/bids         — bid history, newest first
GET    /auctions/{id}/events       — event log, oldest first
POST   /auctions/{id}/bid          — place a bid (optionally with an auto-bid maximum)
POST   /auctions/{id}/buy-now      — instant purchase at the buy-now price
POST   /auctions/{id}/cancel       — cancel auction (admin)
GET    /auctions/{id}/settlement   — commission split of a sold auction
GET    /auctions/{id}/stream       — SSE stream for live updates
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from broadcast import AuctionBroadcaster
from models.entities.auctions import Auction, AuctionConfig, AuctionStatus, IncrementPolicy
from models.entities.auction_events import AuctionEvent
from models.entities.bids import Bid
from models.operations.auction_bidding import minimum_bid
from models.operations.auction_events import public_payload
from models.operations.auction_settlement import Settlement, compute_settlement
from models.operations.auction_transitions import countdown
from models.operations.auctions import AuctionEngine
from utils import log

from .dependencies import get_broadcaster, get_engine, require_admin, require_authenticated

logger = log.get_logger(__name__)

router = APIRouter(prefix="/auctions", tags=["auctions"])

STREAM_KEEPALIVE_SECONDS = 15.0


# ---------------------------------------------------------------------------
# Request / Response schemas
# ---------------------------------------------------------------------------

class CreateAuctionRequest(BaseModel):
    property_id: str
    auction_type: Literal["timed", "live"] = "timed"
    start_time: datetime
    end_time: datetime
    preview_start: Optional[datetime] = None
    preview_days: Optional[int] = Field(default=None, ge=0)
    reserve_price: float = 0.0
    buy_now_price: Optional[float] = None
    commission_rate: float = 0.05
    increment: Optional[IncrementPolicy] = None


class PlaceBidRequest(BaseModel):
    amount: float
    auto_bid_max: Optional[float] = None


class AuctionResponse(BaseModel):
    id: str
    property_id: str
    auction_type: str
    preview_start: datetime
    start_time: datetime
    end_time: datetime
    status: str
    reserve_price: float
    buy_now_price: Optional[float] = None
    buy_now_available: bool
    commission_rate: float
    increment: IncrementPolicy
    current_bid: float
    bid_count: int
    minimum_bid: Optional[float] = None
    reserve_met: bool
    high_bidder_id: Optional[str] = None
    winner_id: Optional[str] = None
    closed_at: Optional[datetime] = None
    # Countdown
    phase: str
    seconds_remaining: int


class PlaceBidResponse(BaseModel):
    auction: AuctionResponse
    leading: bool


class BidResponse(BaseModel):
    id: str
    bidder_id: str
    amount: float
    is_auto: bool
    placed_at: datetime
    is_winning: bool


class EventResponse(BaseModel):
    id: str
    seq: int
    event_type: str
    payload: Dict[str, Any]
    occurred_at: datetime


def _auction_to_response(auction: Auction, now: Optional[datetime] = None) -> AuctionResponse:
    d = auction.data
    cfg = d.config
    clock = countdown(d, now or datetime.now(timezone.utc))
    return AuctionResponse(
        id=auction.id,
        property_id=d.property_id,
        auction_type=cfg.auction_type,
        preview_start=d.preview_start,
        start_time=d.start_time,
        end_time=d.end_time,
        status=d.status,
        reserve_price=cfg.reserve_price,
        buy_now_price=cfg.buy_now_price,
        buy_now_available=(
            d.status == "live"
            and cfg.buy_now_price is not None
            and d.current_bid < cfg.buy_now_price
        ),
        commission_rate=cfg.commission_rate,
        increment=cfg.increment,
        current_bid=d.current_bid,
        bid_count=d.bid_count,
        minimum_bid=minimum_bid(d) if d.status == "live" else None,
        reserve_met=d.reserve_met,
        high_bidder_id=d.high_bidder_id,
        winner_id=d.winner_id,
        closed_at=d.closed_at,
        phase=clock.phase,
        seconds_remaining=clock.seconds_remaining,
    )


def _bid_to_response(bid: Bid, auction: Auction) -> BidResponse:
    d = bid.data
    return BidResponse(
        id=bid.id,
        bidder_id=d.bidder_id,
        amount=d.amount,
        is_auto=d.is_auto,
        placed_at=d.placed_at,
        is_winning=bid.id == auction.data.high_bid_id,
    )


def _event_to_response(event: AuctionEvent) -> EventResponse:
    d = event.data
    return EventResponse(
        id=event.id,
        seq=d.seq,
        event_type=d.event_type,
        payload=public_payload(d),
        occurred_at=d.occurred_at,
    )


# ---------------------------------------------------------------------------
# POST /auctions/ — create auction
# ---------------------------------------------------------------------------

@router.post("/", response_model=AuctionResponse, status_code=201)
async def route_auction_create(
    body: CreateAuctionRequest,
    engine: AuctionEngine = Depends(get_engine),
    _admin: None = Depends(require_admin),
):
    """Create an auction in preview."""
    preview_start = body.preview_start
    if preview_start is None and body.preview_days is not None:
        preview_start = body.start_time - timedelta(days=body.preview_days)

    config = AuctionConfig(
        auction_type=body.auction_type,
        reserve_price=body.reserve_price,
        buy_now_price=body.buy_now_price,
        commission_rate=body.commission_rate,
        increment=body.increment or IncrementPolicy(),
    )
    auction = await engine.create_auction(
        property_id=body.property_id,
        start_time=body.start_time,
        end_time=body.end_time,
        preview_start=preview_start,
        config=config,
    )
    return _auction_to_response(auction)


# ---------------------------------------------------------------------------
# GET /auctions/ — list auctions
# ---------------------------------------------------------------------------

@router.get("/", response_model=List[AuctionResponse])
async def route_auctions_list(
    status: Optional[AuctionStatus] = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    engine: AuctionEngine = Depends(get_engine),
):
    auctions = await engine.list_auctions(status=status, limit=limit, offset=offset)
    now = datetime.now(timezone.utc)
    return [_auction_to_response(a, now) for a in auctions]


# ---------------------------------------------------------------------------
# GET /auctions/{id} — auction detail
# ---------------------------------------------------------------------------

@router.get("/{auction_id}", response_model=AuctionResponse)
async def route_auction_detail(auction_id: str, engine: AuctionEngine = Depends(get_engine)):
    auction = await engine.get_auction(auction_id)
    return _auction_to_response(auction)


# ---------------------------------------------------------------------------
# GET /auctions/{id}/bids — bid history
# ---------------------------------------------------------------------------

@router.get("/{auction_id}/bids", response_model=List[BidResponse])
async def route_auction_bids(
    auction_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    engine: AuctionEngine = Depends(get_engine),
):
    """Bid history, newest first, with the current high bid flagged."""
    auction = await engine.get_auction(auction_id)
    bids = await engine.list_bids(auction_id, limit=limit)
    return [_bid_to_response(b, auction) for b in bids]


# ---------------------------------------------------------------------------
# GET /auctions/{id}/events — event log
# ---------------------------------------------------------------------------

@router.get("/{auction_id}/events", response_model=List[EventResponse])
async def route_auction_events(
    auction_id: str,
    after_seq: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    engine: AuctionEngine = Depends(get_engine),
):
    """Events in commit order; pass the last seen ``seq`` to read forward."""
    events = await engine.list_events(auction_id, after_seq=after_seq, limit=limit)
    return [_event_to_response(e) for e in events]


# ---------------------------------------------------------------------------
# POST /auctions/{id}/bid — place a bid
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/bid", response_model=PlaceBidResponse, status_code=201)
async def route_place_bid(
    auction_id: str,
    body: PlaceBidRequest,
    bidder_id: str = Depends(require_authenticated),
    engine: AuctionEngine = Depends(get_engine),
):
    auction = await engine.place_bid(
        auction_id, bidder_id, body.amount, auto_bid_max=body.auto_bid_max
    )
    return PlaceBidResponse(
        auction=_auction_to_response(auction),
        leading=auction.data.high_bidder_id == bidder_id,
    )


# ---------------------------------------------------------------------------
# POST /auctions/{id}/buy-now — instant purchase
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/buy-now", response_model=AuctionResponse)
async def route_buy_now(
    auction_id: str,
    buyer_id: str = Depends(require_authenticated),
    engine: AuctionEngine = Depends(get_engine),
):
    auction = await engine.buy_now(auction_id, buyer_id)
    return _auction_to_response(auction)


# ---------------------------------------------------------------------------
# POST /auctions/{id}/cancel — cancel auction
# ---------------------------------------------------------------------------

@router.post("/{auction_id}/cancel", response_model=AuctionResponse)
async def route_auction_cancel(
    auction_id: str,
    engine: AuctionEngine = Depends(get_engine),
    _admin: None = Depends(require_admin),
):
    auction = await engine.cancel_auction(auction_id)
    return _auction_to_response(auction)


# ---------------------------------------------------------------------------
# GET /auctions/{id}/settlement — commission split
# ---------------------------------------------------------------------------

@router.get("/{auction_id}/settlement", response_model=Settlement)
async def route_auction_settlement(auction_id: str, engine: AuctionEngine = Depends(get_engine)):
    auction = await engine.get_auction(auction_id)
    settlement = compute_settlement(auction.data)
    if settlement is None:
        raise HTTPException(status_code=404, detail="Auction has not been sold")
    return settlement


# ---------------------------------------------------------------------------
# GET /auctions/{id}/stream — SSE for live updates
# ---------------------------------------------------------------------------

def _sse(event: str, data: dict) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def _update_payload(auction: Auction) -> dict:
    return _auction_to_response(auction).model_dump(mode="json")


def _ended_payload(auction: Auction) -> dict:
    d = auction.data
    return {
        "auction_id": auction.id,
        "status": d.status,
        "winner_id": d.winner_id,
        "final_bid": d.current_bid if d.status == "sold" else None,
    }


@router.get("/{auction_id}/stream")
async def route_auction_stream(
    auction_id: str,
    request: Request,
    engine: AuctionEngine = Depends(get_engine),
    broadcaster: AuctionBroadcaster = Depends(get_broadcaster),
):
    """Server-Sent Events stream for live auction updates.

    Sends the current state first, then one ``update`` per committed change
    and a final ``ended`` event once the auction reaches a terminal status.
    """
    # 404 before the response starts
    await engine.get_auction(auction_id)

    async def event_generator():
        with broadcaster.subscribe(auction_id) as queue:
            # Snapshot taken after subscribing, so no commit falls between the two.
            auction = await engine.get_auction(auction_id)
            yield _sse("update", _update_payload(auction))
            if auction.data.is_terminal:
                yield _sse("ended", _ended_payload(auction))
                return

            while True:
                try:
                    update = await asyncio.wait_for(queue.get(), timeout=STREAM_KEEPALIVE_SECONDS)
                except asyncio.TimeoutError:
                    if await request.is_disconnected():
                        break
                    yield ": keepalive\n\n"
                    continue

                if update.auction.data.event_seq <= auction.data.event_seq:
                    continue  # already in the snapshot
                yield _sse("update", _update_payload(update.auction))
                if update.auction.data.is_terminal:
                    yield _sse("ended", _ended_payload(update.auction))
                    break

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
