from __future__ import annotations

import re
from datetime import datetime, timezone

import pytest

from tradebook.app.db import with_conn
from tradebook.app.services import deposits, market_data, net_equity, stocks


def ts(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


def _trade(owner, **overrides):
    row = {"symbol": "aapl", "open_date": ts(2024, 7, 1), "open_price": 185.5, "quantity": 10, "owner_id": owner}
    row.update(overrides)
    return row


def test_trade_listing_uses_latest_known_close(make_user):
    owner = make_user("c1")
    market_data.upsert_price("AAPL", ts(2024, 7, 1), 190)
    market_data.upsert_price("AAPL", ts(2024, 7, 5), 200)
    closed = stocks.create_trade(_trade(owner, status="Closed", close_price=195, close_date=ts(2024, 7, 2)))
    opened = stocks.create_trade(_trade(owner, open_date=ts(2024, 6, 3)))

    rows = stocks.list_trades(owner_id=owner, today=ts(2024, 7, 3))

    assert [r["id"] for r in rows] == [opened["id"], closed["id"]]
    assert rows[0]["symbol"] == "AAPL"
    assert rows[0]["year"] == 2024
    assert rows[0]["current_market_price"] == 190
    assert rows[0]["user_name"] == "c1"
    assert re.fullmatch(r"[A-Z0-9]{5}", rows[0]["code"])
    assert stocks.list_trades(owner_id=owner, symbol="msft") == []


def test_trade_routes(make_user, client_for):
    owner = make_user("c1")
    other = make_user("c2")
    make_user("desk", role="trader")
    desk = client_for("desk")

    assert desk.post("/api/stocks", json={"symbol": "NVDA"}).status_code == 400
    created = desk.post("/api/stocks", json=_trade(owner)).json()
    assert created["success"] is True
    desk.post("/api/stocks", json=_trade(other, symbol="MSFT"))

    customer = client_for("c1")
    assert customer.post("/api/stocks", json=_trade(owner)).status_code == 403
    assert [r["symbol"] for r in customer.get(f"/api/stocks?ownerId={other}").json()] == ["AAPL"]

    updated = desk.put(f"/api/stocks/{created['id']}", json=_trade(None, quantity=5, status="Closed"))
    assert updated.status_code == 200
    row = stocks.list_trades(owner_id=owner)[0]
    assert (row["quantity"], row["status"], row["owner_id"]) == (5, "Closed", owner)

    assert desk.put("/api/stocks/9999", json=_trade(owner)).status_code == 404
    assert desk.delete(f"/api/stocks/{created['id']}").json() == {"success": True}
    assert desk.delete(f"/api/stocks/{created['id']}").status_code == 404


def test_backfill_codes_is_staff_only(make_user, client_for):
    owner = make_user("c1")
    make_user("root", role="admin")
    make_user("desk", role="trader")

    def _insert(conn):
        conn.execute(
            "INSERT INTO STOCK_TRADES (symbol, status, open_date, open_price, quantity, owner_id, year) "
            "VALUES ('SPY', 'Open', ?, 500, 1, ?, 2024)",
            (ts(2024, 7, 1), owner),
        )
        conn.commit()

    with_conn(_insert)

    assert client_for("desk").post("/api/stocks/backfill-codes").status_code == 403
    resp = client_for("root").post("/api/stocks/backfill-codes").json()
    assert resp == {"success": True, "stocks": 1, "options": 0}
    assert stocks.list_trades(owner_id=owner)[0]["code"]


def _seed_account(user_pk):
    for day, equity in ((1, 10_000), (2, 10_500), (3, 11_000)):
        net_equity.upsert_record({"user_id": user_pk, "date": ts(2024, 7, day), "net_equity": equity})
    for day, close in ((1, 100), (2, 110), (3, 121)):
        market_data.upsert_price("QQQ", ts(2024, 7, day), close)


def test_benchmark_ledger_and_deposit_invalidation(make_user, client_for):
    cust = make_user("c1")
    _seed_account(cust)
    client = client_for("c1")

    body = client.get("/api/benchmark?symbol=qqq").json()

    assert body["meta"] == {"symbol": "QQQ", "basePrice": 100, "initialCost": 10_000}
    assert [r["net_equity"] for r in body["rows"]] == pytest.approx([12_100, 11_000, 10_000])
    assert body["rows"][0]["daily_return"] == pytest.approx(0.1)
    assert body["rows"][0]["shares"] == pytest.approx(100)

    deposits.create_deposit({"deposit_date": ts(2024, 7, 2) + 600, "user_id": cust, "amount": 1100})
    refreshed = client.get("/api/benchmark?symbol=QQQ").json()
    assert refreshed["rows"][1]["daily_deposit"] == 1100
    assert refreshed["rows"][0]["shares"] == pytest.approx(110)


def test_benchmark_stats_and_visibility(make_user, client_for):
    cust = make_user("c1")
    other = make_user("c2")
    _seed_account(cust)
    client = client_for("c1")

    body = client.get("/api/benchmark/stats").json()

    assert body["symbol"] == "QQQ"
    assert body["stats"]["currentEquity"] == pytest.approx(12_100)
    assert body["stats"]["returnPercentage"] == pytest.approx(0.21)
    assert body["stats"]["newHighCount"] == 2
    assert client.get(f"/api/benchmark?userId={other}").status_code == 403
    assert client.get(f"/api/benchmark/stats?userId={other}").status_code == 403


def test_benchmark_without_snapshots(make_user, client_for):
    make_user("c1")
    body = client_for("c1").get("/api/benchmark").json()
    assert body == {"rows": [], "meta": {"symbol": "QQQ", "basePrice": None, "initialCost": 10_000}}
