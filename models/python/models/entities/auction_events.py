from typing import Any, Dict, Literal
from datetime import datetime
from pydantic import BaseModel, Field

from models.entities.base import EntityData

AuctionEventType = Literal[
    "auction_created",
    "bid_placed",
    "status_changed",
    "buy_now_executed",
]


class AuctionEventData(EntityData):
    auction_id: str
    seq: int  # monotonic per auction, assigned under the auction's exclusivity
    event_type: AuctionEventType
    payload: Dict[str, Any] = Field(default_factory=dict)
    occurred_at: datetime

    @property
    def event_id(self) -> str:
        return event_key(self.auction_id, self.seq)


class AuctionEvent(BaseModel):
    id: str
    data: AuctionEventData


def event_key(auction_id: str, seq: int) -> str:
    return f"{auction_id}::evt::{seq:010d}"
