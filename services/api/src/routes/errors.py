from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from models.operations.errors import AuctionError, BidTooLowError
from utils import log

logger = log.get_logger(__name__)

HTTP_STATUS_BY_CODE = {
    "not_found": 404,
    "invalid_state": 409,
    "too_low": 422,
    "invalid_bid": 422,
    "invalid_auction": 422,
    "conflict": 409,
    "timeout": 503,
}


async def auction_error_handler(request: Request, exc: AuctionError) -> JSONResponse:
    body = {"detail": exc.message, "code": exc.code, "retryable": exc.retryable}
    if isinstance(exc, BidTooLowError):
        body["minimum_bid"] = exc.minimum_bid
    headers = {"Retry-After": "1"} if exc.retryable else None
    return JSONResponse(
        status_code=HTTP_STATUS_BY_CODE.get(exc.code, 400), content=body, headers=headers
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AuctionError, auction_error_handler)
