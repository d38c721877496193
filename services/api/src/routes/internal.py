"""
Operational endpoints: manual sweep, projection audit, health.
Secured with ADMIN_API_KEY when it is configured.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

import conf
from models.operations.auctions import AuditResult, AuctionEngine, TickSummary
from utils import log

from .dependencies import get_engine, require_admin

logger = log.get_logger(__name__)

router = APIRouter(prefix="/internal", tags=["internal"])


class TickRequest(BaseModel):
    now: Optional[datetime] = None


@router.post("/tick", response_model=TickSummary, dependencies=[Depends(require_admin)])
async def route_tick(body: Optional[TickRequest] = None, engine: AuctionEngine = Depends(get_engine)):
    """Run one status sweep now (for external cron or manual use)."""
    now = body.now if body and body.now else datetime.now(timezone.utc)
    return await engine.tick(now)


@router.get(
    "/auctions/{auction_id}/audit",
    response_model=AuditResult,
    dependencies=[Depends(require_admin)],
)
async def route_audit(auction_id: str, engine: AuctionEngine = Depends(get_engine)):
    """Replay the auction's event log and compare it with the stored record."""
    return await engine.audit(auction_id)


@router.get("/health")
async def route_health():
    return {"status": "ok", "store": conf.get_store_backend()}
