from fastapi import APIRouter, Depends, Request
from utils import log

from .auctions import router as auctions_router
from .dependencies import require_admin
from .internal import router as internal_router

logger = log.get_logger(__name__)

router = APIRouter(prefix="/api")
router.include_router(auctions_router)
router.include_router(internal_router)


@router.post("/seed", tags=["dev"], dependencies=[Depends(require_admin)])
async def route_seed(request: Request):
    """Populate the store with demo auctions (dev only)."""
    from seed import run_seed

    ids = await run_seed(request.app.state.engine)
    return {"status": "ok", "seeded": len(ids), "auction_ids": ids}
