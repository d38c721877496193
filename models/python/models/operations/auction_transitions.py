"""Time-driven status transitions and the countdown view."""

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel

from models.entities.auctions import AuctionData, AuctionStatus
from models.operations.auction_changes import AuctionChange


def due_status(
    data: AuctionData, now: datetime, sold_when_reserve_met: bool = True
) -> Optional[AuctionStatus]:
    """The status ``data`` should be in at ``now``, or None if it is current."""
    if data.status == "preview" and now >= data.start_time:
        return "live"
    if data.status == "live" and now >= data.end_time:
        if sold_when_reserve_met and data.reserve_met:
            return "sold"
        return "ended"
    return None


def _close_reason(data: AuctionData, target: AuctionStatus) -> str:
    if target == "sold":
        return "reserve_met"
    if data.bid_count == 0:
        return "no_bids"
    if data.current_bid < data.config.reserve_price:
        return "reserve_not_met"
    return "expired"


def apply_time_transitions(
    change: AuctionChange, sold_when_reserve_met: bool = True
) -> List[AuctionStatus]:
    """Apply every transition due at ``change.now``; idempotent per instant.

    An auction whose whole window has passed goes preview -> live -> ended
    (or sold) in one call, each step recorded as its own event.
    """
    applied: List[AuctionStatus] = []
    while (target := due_status(change.data, change.now, sold_when_reserve_met)) is not None:
        if target == "live":
            reason = "start_time_reached"
        else:
            reason = _close_reason(change.data, target)
        change.set_status(target, reason=reason)
        applied.append(target)
    return applied


class Countdown(BaseModel):
    phase: Literal["upcoming", "preview", "live", "ended"]
    seconds_remaining: int
    next_boundary: Optional[datetime] = None


def countdown(data: AuctionData, now: datetime) -> Countdown:
    """Phase and time left until the next schedule boundary, for display."""
    if data.is_terminal:
        return Countdown(phase="ended", seconds_remaining=0)

    if now < data.preview_start:
        phase, boundary = "upcoming", data.preview_start
    elif now < data.start_time:
        phase, boundary = "preview", data.start_time
    elif now < data.end_time:
        phase, boundary = "live", data.end_time
    else:
        return Countdown(phase="ended", seconds_remaining=0)

    remaining = max(0, int((boundary - now).total_seconds()))
    return Countdown(phase=phase, seconds_remaining=remaining, next_boundary=boundary)
