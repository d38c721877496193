from datetime import timedelta

import pytest

from models.entities.auctions import AuctionConfig, AuctionData
from models.operations.auction_settlement import compute_settlement

from conftest import T0


def _data(**fields) -> AuctionData:
    return AuctionData(
        property_id="prop-1",
        config=AuctionConfig(reserve_price=100_000, buy_now_price=150_000, commission_rate=0.05),
        preview_start=T0,
        start_time=T0,
        end_time=T0 + timedelta(hours=1),
        **fields,
    )


def test_commission_is_charged_on_overprice():
    s = compute_settlement(
        _data(status="sold", current_bid=120_000, bid_count=3, winner_id="b2")
    )
    assert s.winner_id == "b2"
    assert s.overprice == 20_000
    assert s.platform_share == 1_000
    assert s.developer_share == 1_400
    assert s.commission_amount == 2_400
    assert s.buy_now_fee == 0
    assert s.final_price == 120_000


def test_buy_now_adds_a_fee():
    s = compute_settlement(
        _data(status="sold", current_bid=150_000, winner_id="buyer", sold_via_buy_now=True)
    )
    assert s.overprice == 50_000
    assert s.platform_share == 2_500
    assert s.developer_share == 3_500
    assert s.buy_now_fee == 1_500
    assert s.final_price == 151_500


def test_sale_at_reserve_has_no_commission():
    s = compute_settlement(
        _data(status="sold", current_bid=100_000, bid_count=1, winner_id="b1")
    )
    assert s.overprice == 0
    assert s.commission_amount == 0


@pytest.mark.parametrize("status", ["preview", "live", "ended", "cancelled"])
def test_no_settlement_unless_sold(status):
    assert compute_settlement(_data(status=status, current_bid=120_000, bid_count=1)) is None
