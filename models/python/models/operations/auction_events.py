"""
Event-log projection.

The auction record is a materialized view of its events: replaying the log
from ``auction_created`` onwards rebuilds the same state the engine commits.
"""

from typing import Iterable, List, Optional

from models.entities.auctions import AuctionConfig, AuctionData
from models.entities.auction_events import AuctionEventData

# Fields a replay must reproduce exactly.
PROJECTED_FIELDS = (
    "status",
    "current_bid",
    "bid_count",
    "high_bid_id",
    "high_bidder_id",
    "high_bidder_max",
    "winner_id",
    "sold_via_buy_now",
    "closed_at",
    "event_seq",
)


def creation_payload(data: AuctionData) -> dict:
    return {
        "property_id": data.property_id,
        "config": data.config.model_dump(mode="json"),
        "preview_start": data.preview_start.isoformat(),
        "start_time": data.start_time.isoformat(),
        "end_time": data.end_time.isoformat(),
    }


def replay(events: Iterable[AuctionEventData]) -> AuctionData:
    """Rebuild an auction's state from its complete, ordered event log."""
    data: Optional[AuctionData] = None
    for event in events:
        if data is None:
            if event.event_type != "auction_created" or event.seq != 1:
                raise ValueError("Event log must start with auction_created at seq 1")
            p = event.payload
            data = AuctionData(
                property_id=p["property_id"],
                config=AuctionConfig.model_validate(p["config"]),
                preview_start=p["preview_start"],
                start_time=p["start_time"],
                end_time=p["end_time"],
                created_at=event.occurred_at,
                event_seq=event.seq,
            )
            continue

        if event.seq != data.event_seq + 1:
            raise ValueError(
                f"Gap in event log of {event.auction_id}: "
                f"expected seq {data.event_seq + 1}, got {event.seq}"
            )
        _apply(data, event)
        data.event_seq = event.seq

    if data is None:
        raise ValueError("Cannot replay an empty event log")
    return data


def _apply(data: AuctionData, event: AuctionEventData) -> None:
    p = event.payload
    if event.event_type == "bid_placed":
        data.current_bid = p["amount"]
        data.bid_count = p["bid_count"]
        data.high_bid_id = p["bid_id"]
        data.high_bidder_id = p["bidder_id"]
        data.high_bidder_max = p.get("leader_max")
    elif event.event_type == "buy_now_executed":
        data.current_bid = p["price"]
        data.high_bid_id = None
        data.high_bidder_id = p["buyer_id"]
        data.high_bidder_max = None
        data.winner_id = p["buyer_id"]
        data.sold_via_buy_now = True
    elif event.event_type == "status_changed":
        data.status = p["to_status"]
        if data.is_terminal:
            data.closed_at = event.occurred_at
            if data.status == "sold" and data.winner_id is None:
                data.winner_id = data.high_bidder_id
    else:
        raise ValueError(f"Unexpected {event.event_type} event at seq {event.seq}")


def projection_mismatches(stored: AuctionData, replayed: AuctionData) -> List[str]:
    """Names of projected fields on which the record and its log disagree."""
    return [
        name for name in PROJECTED_FIELDS
        if getattr(stored, name) != getattr(replayed, name)
    ]


# Payload keys only the engine needs; hidden from public event feeds.
PRIVATE_PAYLOAD_KEYS = frozenset({"auto_bid_max", "leader_max"})


def public_payload(event: AuctionEventData) -> dict:
    return {k: v for k, v in event.payload.items() if k not in PRIVATE_PAYLOAD_KEYS}
