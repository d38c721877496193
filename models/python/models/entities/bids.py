from typing import Optional
from datetime import datetime
from pydantic import BaseModel

from models.entities.base import EntityData


class BidData(EntityData):
    auction_id: str
    seq: int  # server-assigned, 1-based per auction; defines arrival order
    bidder_id: str
    amount: float
    auto_bid_max: Optional[float] = None
    is_auto: bool = False  # placed by the proxy on the bidder's behalf
    placed_at: datetime

    @property
    def bid_id(self) -> str:
        return bid_key(self.auction_id, self.seq)


class Bid(BaseModel):
    id: str
    data: BidData


def bid_key(auction_id: str, seq: int) -> str:
    return f"{auction_id}::bid::{seq:010d}"
