import math
from datetime import timedelta

import pytest
from pydantic import ValidationError

from models.entities.auctions import Auction, AuctionConfig, AuctionData, IncrementPolicy, IncrementTier
from models.operations.auction_bidding import minimum_bid, place_bid, validate_bid
from models.operations.auction_changes import AuctionChange
from models.operations.errors import BidTooLowError, InvalidBidError, InvalidStateError

from conftest import T0

FIXED_1000 = IncrementPolicy(mode="fixed", amount=1_000)


def _change(status="live", increment=FIXED_1000, **fields) -> AuctionChange:
    data = AuctionData(
        property_id="prop-1",
        config=AuctionConfig(reserve_price=100_000, increment=increment),
        preview_start=T0 - timedelta(days=7),
        start_time=T0,
        end_time=T0 + timedelta(hours=1),
        status=status,
        **fields,
    )
    return AuctionChange(Auction(id="a-1", data=data, version=1), T0 + timedelta(minutes=5))


# ---------------------------------------------------------------------------
# Increment policies
# ---------------------------------------------------------------------------

def test_tiered_increment_follows_price_bands():
    policy = IncrementPolicy()
    assert policy.step_for(0) == 1_000
    assert policy.step_for(99_999) == 1_000
    assert policy.step_for(100_000) == 5_000
    assert policy.step_for(499_999) == 5_000
    assert policy.step_for(500_000) == 10_000
    assert policy.step_for(1_000_000) == 25_000
    assert policy.step_for(50_000_000) == 25_000


def test_custom_tiers():
    policy = IncrementPolicy(tiers=[IncrementTier(below=10_000, step=100), IncrementTier(step=500)])
    assert policy.step_for(9_999) == 100
    assert policy.step_for(10_000) == 500


@pytest.mark.parametrize(
    "tiers",
    [
        [IncrementTier(below=100_000, step=10_000), IncrementTier(step=1_000)],
        [IncrementTier(below=50_000, step=100), IncrementTier(below=10_000, step=200), IncrementTier(step=500)],
        [IncrementTier(below=10_000, step=100), IncrementTier(below=50_000, step=500)],
        [IncrementTier(step=100), IncrementTier(step=500)],
    ],
)
def test_inconsistent_tier_tables_are_rejected(tiers):
    with pytest.raises(ValidationError):
        IncrementPolicy(tiers=tiers)


def test_fixed_increment():
    assert IncrementPolicy(mode="fixed", amount=2_500).step_for(1_000_000) == 2_500


def test_percent_increment_has_a_floor():
    policy = IncrementPolicy(mode="percent", rate=0.05, amount=1_000)
    assert policy.step_for(10_000) == 1_000
    assert policy.step_for(100_000) == 5_000
    assert policy.step_for(100_010) == 5_001


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def test_first_bid_minimum_is_one_increment():
    change = _change()
    assert minimum_bid(change.data) == 1_000
    with pytest.raises(BidTooLowError):
        validate_bid(change.data, 999)


def test_bid_below_reserve_is_accepted():
    change = _change()
    place_bid(change, "b1", 90_000)
    assert change.data.current_bid == 90_000
    assert change.data.bid_count == 1
    assert change.data.status == "live"
    assert not change.data.reserve_met


@pytest.mark.parametrize("amount", [0, -5, math.nan, math.inf])
def test_non_positive_or_non_finite_amount_is_invalid(amount):
    with pytest.raises(InvalidBidError):
        validate_bid(_change().data, amount)


def test_auto_bid_max_below_amount_is_invalid():
    with pytest.raises(InvalidBidError):
        validate_bid(_change().data, 50_000, auto_bid_max=40_000)


@pytest.mark.parametrize("status", ["preview", "ended", "sold", "cancelled"])
def test_bids_only_accepted_while_live(status):
    with pytest.raises(InvalidStateError) as exc_info:
        validate_bid(_change(status=status).data, 50_000)
    assert exc_info.value.status == status


def test_too_low_reports_the_minimum():
    change = _change(current_bid=100_000, bid_count=1, high_bidder_id="b1")
    with pytest.raises(BidTooLowError) as exc_info:
        validate_bid(change.data, 100_500)
    assert exc_info.value.minimum_bid == 101_000
    assert exc_info.value.code == "too_low"
    assert not exc_info.value.retryable


def test_equal_second_bid_is_too_low():
    change = _change()
    place_bid(change, "b1", 105_000)
    with pytest.raises(BidTooLowError):
        place_bid(change, "b2", 105_000)
    assert change.data.high_bidder_id == "b1"


# ---------------------------------------------------------------------------
# Proxy bidding
# ---------------------------------------------------------------------------

def test_proxy_defends_one_increment_above_challenger():
    change = _change()
    place_bid(change, "alice", 10_000, auto_bid_max=50_000)
    place_bid(change, "bob", 20_000)

    d = change.data
    assert d.high_bidder_id == "alice"
    assert d.current_bid == 21_000
    assert d.high_bidder_max == 50_000
    assert [(b.bidder_id, b.amount, b.is_auto) for b in change.bids] == [
        ("alice", 10_000, False),
        ("bob", 20_000, False),
        ("alice", 21_000, True),
    ]


def test_higher_proxy_outbids_exhausted_defender():
    change = _change()
    place_bid(change, "alice", 10_000, auto_bid_max=50_000)
    place_bid(change, "bob", 20_000, auto_bid_max=60_000)

    d = change.data
    assert d.high_bidder_id == "bob"
    assert d.current_bid == 51_000
    assert d.high_bidder_max == 60_000
    assert [(b.bidder_id, b.amount) for b in change.bids[-2:]] == [
        ("alice", 50_000),
        ("bob", 51_000),
    ]


def test_equal_ceilings_keep_earlier_bidder_ahead():
    change = _change()
    place_bid(change, "alice", 10_000, auto_bid_max=50_000)
    place_bid(change, "bob", 30_000, auto_bid_max=50_000)

    assert change.data.high_bidder_id == "alice"
    assert change.data.current_bid == 50_000
    assert change.data.bid_count == 3


def test_plain_bid_matching_the_hidden_ceiling_is_outbid():
    change = _change()
    place_bid(change, "alice", 10_000, auto_bid_max=50_000)
    with pytest.raises(BidTooLowError) as exc_info:
        place_bid(change, "bob", 50_000)

    assert exc_info.value.minimum_bid == 51_000
    assert "Outbid by an automatic bid" in str(exc_info.value)
    assert change.data.high_bidder_id == "alice"
    assert change.data.current_bid == 10_000
    assert change.data.bid_count == 1

    # a bid one increment clear of the ceiling takes the lead
    place_bid(change, "bob", 51_000)
    assert change.data.high_bidder_id == "bob"
    assert change.data.current_bid == 51_000


def test_challenger_within_one_increment_of_defender_stays_behind():
    change = _change()
    place_bid(change, "alice", 10_000, auto_bid_max=50_000)
    place_bid(change, "bob", 30_000, auto_bid_max=50_500)

    assert change.data.high_bidder_id == "alice"
    assert change.data.current_bid == 50_000


def test_no_proxy_answer_without_headroom():
    change = _change()
    place_bid(change, "alice", 10_000)
    place_bid(change, "bob", 11_000)
    assert change.data.high_bidder_id == "bob"
    assert change.data.bid_count == 2


def test_leader_raising_keeps_their_ceiling():
    change = _change()
    place_bid(change, "alice", 10_000, auto_bid_max=20_000)
    place_bid(change, "alice", 15_000)
    assert change.data.current_bid == 15_000
    assert change.data.high_bidder_max == 20_000


def test_stored_bids_strictly_increase_by_the_increment():
    change = _change()
    place_bid(change, "alice", 10_000, auto_bid_max=80_000)
    place_bid(change, "bob", 12_000, auto_bid_max=40_000)
    place_bid(change, "carol", 60_000, auto_bid_max=90_000)

    amounts = [b.amount for b in change.bids]
    for previous, current in zip(amounts, amounts[1:]):
        assert current >= previous + 1_000
    assert [b.seq for b in change.bids] == list(range(1, len(amounts) + 1))
    assert change.data.high_bidder_id == "carol"
    assert change.data.current_bid == 81_000


def test_proxy_answer_clears_the_increment_of_the_bid_it_answers():
    # Built without validation: a table whose step shrinks as the price rises.
    shrinking = IncrementPolicy.model_construct(
        mode="tiered",
        tiers=[IncrementTier(below=100_000, step=10_000), IncrementTier(step=1_000)],
    )
    change = _change(increment=shrinking)
    place_bid(change, "alice", 10_000, auto_bid_max=200_000)
    place_bid(change, "bob", 95_000, auto_bid_max=100_000)

    d = change.data
    assert d.high_bidder_id == "alice"
    assert d.current_bid == 105_000
    amounts = [b.amount for b in change.bids]
    for previous, current in zip(amounts, amounts[1:]):
        assert current >= previous + shrinking.step_for(previous)


def test_bid_events_carry_the_bid_ids():
    change = _change()
    bid = place_bid(change, "alice", 10_000)
    event = change.events[-1]
    assert event.event_type == "bid_placed"
    assert event.payload["bid_id"] == bid.bid_id == change.data.high_bid_id
    assert event.payload["previous_bid"] == 0
