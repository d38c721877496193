from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

import conf
from broadcast import AuctionBroadcaster
from models.operations.auctions import AuctionEngine
from utils import log

logger = log.get_logger(__name__)


def get_engine(request: Request) -> AuctionEngine:
    return request.app.state.engine


def get_broadcaster(request: Request) -> AuctionBroadcaster:
    return request.app.state.broadcaster


async def current_user_get(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> Optional[str]:
    """Caller identity as asserted by the upstream auth gateway."""
    if x_user_id:
        x_user_id = x_user_id.strip()
    return x_user_id or None


async def require_authenticated(user_id: Optional[str] = Depends(current_user_get)) -> str:
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return user_id


async def require_admin(
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
):
    expected = conf.get_admin_api_key()
    if not expected:
        # No key configured: admin routes are open (local development)
        return
    if x_admin_key != expected:
        logger.warning("Rejected admin request with missing or invalid X-Admin-Key")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin API key",
        )
