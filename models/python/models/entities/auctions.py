import math
from typing import List, Literal, Optional
from datetime import datetime
from pydantic import BaseModel, Field, model_validator

from models.entities.base import EntityData

AuctionStatus = Literal["preview", "live", "ended", "sold", "cancelled"]
AuctionType = Literal["timed", "live"]

TERMINAL_STATUSES = frozenset({"ended", "sold", "cancelled"})
OPEN_STATUSES = ("preview", "live")

# (current bid below, step); the last tier has no upper bound
DEFAULT_INCREMENT_TIERS = [
    (100_000.0, 1_000.0),
    (500_000.0, 5_000.0),
    (1_000_000.0, 10_000.0),
    (None, 25_000.0),
]


class IncrementTier(BaseModel):
    below: Optional[float] = None  # None means "and above"
    step: float = Field(gt=0)


class IncrementPolicy(BaseModel):
    """Minimum raise over the current bid.

    ``tiered`` looks the step up by the current bid, ``fixed`` always uses
    ``amount`` and ``percent`` takes ``rate`` of the current bid rounded up to
    a whole unit, never less than ``amount``.
    """
    mode: Literal["tiered", "fixed", "percent"] = "tiered"
    amount: float = Field(default=1_000.0, gt=0)
    rate: float = Field(default=0.01, gt=0, le=1)
    tiers: List[IncrementTier] = Field(
        default_factory=lambda: [
            IncrementTier(below=b, step=s)
            for b, s in DEFAULT_INCREMENT_TIERS
        ]
    )

    @model_validator(mode="after")
    def _check_tiers(self) -> "IncrementPolicy":
        # step_for(a) <= step_for(b) whenever a <= b
        if not self.tiers or self.tiers[-1].below is not None:
            raise ValueError("The last increment tier must have no upper bound")
        bounds = [t.below for t in self.tiers[:-1]]
        if any(b is None for b in bounds):
            raise ValueError("Only the last increment tier may be unbounded")
        if any(lo >= hi for lo, hi in zip(bounds, bounds[1:])):
            raise ValueError("Increment tiers must be in ascending order of their bounds")
        steps = [t.step for t in self.tiers]
        if any(lo > hi for lo, hi in zip(steps, steps[1:])):
            raise ValueError("Increment steps cannot decrease as the price rises")
        return self

    def step_for(self, current_bid: float) -> float:
        if self.mode == "fixed":
            return self.amount
        if self.mode == "percent":
            return max(self.amount, float(math.ceil(current_bid * self.rate)))
        for tier in self.tiers:
            if tier.below is None or current_bid < tier.below:
                return tier.step
        return self.tiers[-1].step


class AuctionConfig(BaseModel):
    """Immutable auction parameters set at creation time."""
    auction_type: AuctionType = "timed"
    reserve_price: float = 0.0
    buy_now_price: Optional[float] = None
    commission_rate: float = 0.05
    increment: IncrementPolicy = Field(default_factory=IncrementPolicy)


class AuctionData(EntityData):
    property_id: str
    config: AuctionConfig

    # Schedule: preview_start <= start_time < end_time
    preview_start: datetime
    start_time: datetime
    end_time: datetime

    status: AuctionStatus = "preview"

    # Denormalized high-bid state, kept in step with the event log
    current_bid: float = 0.0
    bid_count: int = 0
    high_bid_id: Optional[str] = None
    high_bidder_id: Optional[str] = None
    # Proxy ceiling of the current leader; never exposed to other bidders
    high_bidder_max: Optional[float] = None

    # Set when status becomes sold
    winner_id: Optional[str] = None
    sold_via_buy_now: bool = False
    closed_at: Optional[datetime] = None

    # Highest event sequence number committed for this auction
    event_seq: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def reserve_met(self) -> bool:
        return self.bid_count > 0 and self.current_bid >= self.config.reserve_price


class Auction(BaseModel):
    """An auction record as read from a store.

    ``version`` is the store's optimistic-concurrency token (a counter in
    memory, the CAS value in Couchbase); commits are refused when it is stale.
    """
    id: str
    data: AuctionData
    version: Optional[int] = None

