import asyncio
import json
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from broadcast import AuctionBroadcaster
from models.operations.auctions import AuctionEngine, EngineSettings
from models.stores.memory import MemoryAuctionStore
from routes.base import router
from routes.errors import register_error_handlers


class SlowStore(MemoryAuctionStore):
    slow = False

    async def get_auction(self, auction_id):
        if self.slow:
            await asyncio.sleep(1)
        return await super().get_auction(auction_id)


@pytest.fixture
def store():
    return SlowStore()


@pytest.fixture
def client(monkeypatch, store):
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    broadcaster = AuctionBroadcaster()
    app = FastAPI()
    app.include_router(router)
    register_error_handlers(app)
    app.state.broadcaster = broadcaster
    app.state.engine = AuctionEngine(
        store, notifier=broadcaster, settings=EngineSettings(store_timeout_seconds=0.1)
    )
    return TestClient(app)


def _create(client, started=True, headers=None, **overrides):
    now = datetime.now(timezone.utc)
    start = now - timedelta(minutes=1) if started else now + timedelta(days=1)
    body = {
        "property_id": "luxury-penthouse",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=2)).isoformat(),
        "preview_days": 7,
        "reserve_price": 100_000,
        "buy_now_price": 150_000,
    }
    body.update(overrides)
    return client.post("/api/auctions/", json=body, headers=headers or {})


def _parse(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _bid(client, auction_id, amount, user="u1", **extra):
    return client.post(
        f"/api/auctions/{auction_id}/bid",
        json={"amount": amount, **extra},
        headers={"X-User-Id": user},
    )


def test_create_auction(client):
    response = _create(client)
    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "preview"
    assert body["bid_count"] == 0
    assert body["minimum_bid"] is None
    assert body["buy_now_available"] is False
    start = _parse(body["start_time"])
    preview = _parse(body["preview_start"])
    assert start - preview == timedelta(days=7)


def test_create_rejects_bad_schedule(client):
    now = datetime.now(timezone.utc)
    response = _create(client, end_time=(now - timedelta(days=1)).isoformat())
    assert response.status_code == 422
    assert response.json()["code"] == "invalid_auction"


def test_admin_key_guards_creation(client, monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "s3cret")
    assert _create(client).status_code == 401
    assert _create(client, headers={"X-Admin-Key": "s3cret"}).status_code == 201


def test_bid_requires_identity(client):
    auction_id = _create(client).json()["id"]
    response = client.post(f"/api/auctions/{auction_id}/bid", json={"amount": 90_000})
    assert response.status_code == 401


def test_bid_opens_started_auction_and_leads(client):
    auction_id = _create(client).json()["id"]
    response = _bid(client, auction_id, 90_000)
    assert response.status_code == 201
    body = response.json()
    assert body["leading"] is True
    assert body["auction"]["status"] == "live"
    assert body["auction"]["current_bid"] == 90_000
    assert body["auction"]["reserve_met"] is False
    assert body["auction"]["minimum_bid"] == 91_000
    assert body["auction"]["phase"] == "live"


def test_bid_too_low_reports_minimum(client):
    auction_id = _create(client).json()["id"]
    _bid(client, auction_id, 90_000)
    response = _bid(client, auction_id, 90_500, user="u2")
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "too_low"
    assert body["minimum_bid"] == 91_000
    assert body["retryable"] is False


def test_bid_on_unstarted_auction_is_conflict_state(client):
    auction_id = _create(client, started=False).json()["id"]
    response = _bid(client, auction_id, 90_000)
    assert response.status_code == 409
    assert response.json()["code"] == "invalid_state"


def test_unknown_auction_is_404(client):
    response = client.get("/api/auctions/missing")
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_proxy_ceiling_stays_private(client):
    auction_id = _create(client).json()["id"]
    _bid(client, auction_id, 10_000, user="alice", auto_bid_max=50_000)
    response = _bid(client, auction_id, 20_000, user="bob")
    assert response.json()["leading"] is False

    events = client.get(f"/api/auctions/{auction_id}/events").json()
    bid_events = [e for e in events if e["event_type"] == "bid_placed"]
    assert len(bid_events) == 3
    for event in bid_events:
        assert "auto_bid_max" not in event["payload"]
        assert "leader_max" not in event["payload"]

    bids = client.get(f"/api/auctions/{auction_id}/bids").json()
    assert [b["bidder_id"] for b in bids] == ["alice", "bob", "alice"]
    assert [b["is_winning"] for b in bids] == [True, False, False]
    assert bids[0]["is_auto"] is True


def test_buy_now_then_settlement(client):
    auction_id = _create(client).json()["id"]
    assert client.get(f"/api/auctions/{auction_id}/settlement").status_code == 404

    response = client.post(f"/api/auctions/{auction_id}/buy-now", headers={"X-User-Id": "buyer"})
    assert response.status_code == 200
    assert response.json()["status"] == "sold"
    assert response.json()["winner_id"] == "buyer"

    assert _bid(client, auction_id, 160_000).status_code == 409

    settlement = client.get(f"/api/auctions/{auction_id}/settlement").json()
    assert settlement["final_price"] == 151_500
    assert settlement["buy_now_fee"] == 1_500


def test_cancel_and_list_by_status(client):
    first = _create(client, started=False).json()["id"]
    second = _create(client, started=False).json()["id"]
    response = client.post(f"/api/auctions/{first}/cancel")
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"

    cancelled = client.get("/api/auctions/", params={"status": "cancelled"}).json()
    assert [a["id"] for a in cancelled] == [first]
    preview = client.get("/api/auctions/", params={"status": "preview"}).json()
    assert [a["id"] for a in preview] == [second]


def test_internal_tick_and_audit(client):
    auction_id = _create(client).json()["id"]
    _bid(client, auction_id, 120_000)

    later = datetime.now(timezone.utc) + timedelta(days=1)
    summary = client.post("/api/internal/tick", json={"now": later.isoformat()}).json()
    assert summary == {"checked": 1, "transitioned": 1, "failed": 0}
    assert client.get(f"/api/auctions/{auction_id}").json()["status"] == "sold"

    audit = client.get(f"/api/internal/auctions/{auction_id}/audit").json()
    assert audit["consistent"] is True


def test_store_timeout_is_503_with_retry_after(client, store):
    auction_id = _create(client).json()["id"]
    store.slow = True
    response = client.get(f"/api/auctions/{auction_id}")
    assert response.status_code == 503
    assert response.json()["code"] == "timeout"
    assert response.json()["retryable"] is True
    assert response.headers["Retry-After"] == "1"


def test_health(client):
    assert client.get("/api/internal/health").json()["status"] == "ok"


def _frames(body: str):
    frames = []
    for block in body.split("\n\n"):
        lines = dict(line.split(": ", 1) for line in block.splitlines() if not line.startswith(":"))
        if "event" in lines:
            frames.append((lines["event"], json.loads(lines["data"])))
    return frames


def test_stream_pushes_updates_until_the_auction_ends(client):
    broadcaster = client.app.state.broadcaster
    # Shared event loop for the streaming request and the buy-now that ends it.
    with client, ThreadPoolExecutor(max_workers=1) as pool:
        auction_id = _create(client).json()["id"]
        assert _bid(client, auction_id, 90_000).status_code == 201

        stream = pool.submit(client.get, f"/api/auctions/{auction_id}/stream")
        deadline = time.monotonic() + 5
        while broadcaster.subscriber_count(auction_id) == 0:
            assert time.monotonic() < deadline, "stream did not subscribe"
            time.sleep(0.01)

        bought = client.post(f"/api/auctions/{auction_id}/buy-now", headers={"X-User-Id": "buyer"})
        assert bought.status_code == 200

        response = stream.result(timeout=5)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = _frames(response.text)
    assert [event for event, _ in frames[:1]] == ["update"]
    assert frames[0][1]["id"] == auction_id
    assert frames[-2][0] == "update"
    assert frames[-2][1]["status"] == "sold"
    assert frames[-1] == (
        "ended",
        {"auction_id": auction_id, "status": "sold", "winner_id": "buyer", "final_bid": 150_000},
    )
    assert broadcaster.subscriber_count(auction_id) == 0


def test_stream_of_a_closed_auction_ends_at_once(client):
    auction_id = _create(client).json()["id"]
    client.post(f"/api/auctions/{auction_id}/buy-now", headers={"X-User-Id": "buyer"})

    frames = _frames(client.get(f"/api/auctions/{auction_id}/stream").text)
    assert [event for event, _ in frames] == ["update", "ended"]
    assert frames[1][1]["status"] == "sold"


def test_stream_of_unknown_auction_is_404(client):
    assert client.get("/api/auctions/missing/stream").status_code == 404
