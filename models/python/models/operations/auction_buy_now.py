from models.operations.auction_changes import AuctionChange
from models.operations.errors import InvalidStateError


def buy_now(change: AuctionChange, buyer_id: str) -> None:
    """Close a live auction at its buy-now price in favour of ``buyer_id``.

    Buy-now does not create a bid and leaves ``bid_count`` alone. It is no
    longer offered once bidding has reached the buy-now price.
    """
    data = change.data
    price = data.config.buy_now_price
    if price is None:
        raise InvalidStateError(
            "Buy now option not available for this auction", change.auction_id, data.status
        )
    if data.status != "live":
        raise InvalidStateError(
            f"Auction is not accepting purchases (status: {data.status})",
            change.auction_id,
            data.status,
        )
    if data.current_bid >= price:
        raise InvalidStateError(
            "Bidding has already reached the buy-now price", change.auction_id, data.status
        )

    previous_bid = data.current_bid
    data.current_bid = price
    data.high_bid_id = None
    data.high_bidder_id = buyer_id
    data.high_bidder_max = None
    data.winner_id = buyer_id
    data.sold_via_buy_now = True
    change.record_event(
        "buy_now_executed", buyer_id=buyer_id, price=price, previous_bid=previous_bid
    )
    change.set_status("sold", reason="buy_now")
