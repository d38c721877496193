from typing import Optional

from pydantic import BaseModel

from models.entities.auctions import AuctionData

DEVELOPER_SHARE_RATE = 0.07
BUY_NOW_FEE_RATE = 0.01


class Settlement(BaseModel):
    winner_id: str
    winning_bid: float
    overprice: float
    platform_share: float
    developer_share: float
    commission_amount: float
    buy_now_fee: float
    final_price: float


def compute_settlement(data: AuctionData) -> Optional[Settlement]:
    """Commission split for a sold auction; None while it is not sold.

    Commission is charged on the overprice (winning bid above reserve): the
    platform takes ``commission_rate`` of it and the developer a fixed 7 %.
    A buy-now purchase carries an extra 1 % fee on top of the price.
    """
    if data.status != "sold" or data.winner_id is None:
        return None

    price = data.current_bid
    overprice = max(0.0, price - data.config.reserve_price)
    platform_share = round(overprice * data.config.commission_rate, 2)
    developer_share = round(overprice * DEVELOPER_SHARE_RATE, 2)
    buy_now_fee = round(price * BUY_NOW_FEE_RATE, 2) if data.sold_via_buy_now else 0.0

    return Settlement(
        winner_id=data.winner_id,
        winning_bid=price,
        overprice=overprice,
        platform_share=platform_share,
        developer_share=developer_share,
        commission_amount=round(platform_share + developer_share, 2),
        buy_now_fee=buy_now_fee,
        final_price=round(price + buy_now_fee, 2),
    )
