from __future__ import annotations

from datetime import date, datetime, timezone

import httpx
import pytest

from tradebook.app.db import with_conn
from tradebook.app.services import market_data, stooq
from tradebook.app.services.cache import cache
from tradebook.app.services.trading_calendar import is_trading_day, trading_days_between


def ts(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


def test_trading_days_skip_weekends_and_holidays():
    days = trading_days_between(date(2024, 7, 1), date(2024, 7, 8))
    assert days == [date(2024, 7, 1), date(2024, 7, 2), date(2024, 7, 3), date(2024, 7, 5), date(2024, 7, 8)]
    assert not is_trading_day(date(2025, 12, 25))


def test_upsert_invalidates_cached_range(db):
    market_data.upsert_price("qqq", ts(2024, 7, 1), 480.5)
    first = market_data.get_market_data("QQQ", ts(2024, 7, 1), ts(2024, 7, 31))
    assert first == [{"date": ts(2024, 7, 1), "close": 480.5}]

    market_data.upsert_price("QQQ", ts(2024, 7, 2), 482.0)
    second = market_data.get_market_data("QQQ", ts(2024, 7, 1), ts(2024, 7, 31))
    assert [p["close"] for p in second] == [480.5, 482.0]


def test_upsert_rejects_bad_price(db):
    with pytest.raises(ValueError):
        market_data.upsert_price("QQQ", ts(2024, 7, 1), 0)
    with pytest.raises(ValueError):
        market_data.upsert_price("", ts(2024, 7, 1), 10)


def test_fill_gaps_upserts_only_missing_trading_days(db):
    market_data.upsert_price("QQQ", ts(2024, 7, 1), 480.0)
    cache.set("benchmark:7:QQQ:all", {"rows": []})
    requested = []

    def fake_history(symbol, start_date):
        requested.append((symbol, start_date))
        return [
            {"date": "2024-07-02", "close": 481.0},
            {"date": "2024-07-03", "close": 482.0},
            {"date": "2024-07-05", "close": 483.0},
            {"date": "2024-07-06", "close": 999.0},
        ]

    result = market_data.fill_gaps("qqq", today=date(2024, 7, 8), fetch_history=fake_history)

    assert requested == [("QQQ", "2024-07-02")]
    assert result == {"success": True, "symbol": "QQQ", "totalMissingDays": 4, "filled": 3}
    assert market_data.latest_date("QQQ") == ts(2024, 7, 5)
    assert cache.get("benchmark:7:QQQ:all") is None


def test_fill_gaps_nothing_missing(db):
    market_data.upsert_price("QLD", ts(2024, 7, 5), 90.0)

    def should_not_fetch(symbol, start_date):
        raise AssertionError("no fetch expected")

    result = market_data.fill_gaps("QLD", today=date(2024, 7, 7), fetch_history=should_not_fetch)
    assert result["totalMissingDays"] == 0
    assert result["filled"] == 0


def test_bulk_endpoint_requires_api_key(db, make_user, client_for):
    owner = make_user("feeder", role="trader")

    def _set_key(conn):
        conn.execute("UPDATE USERS SET api_key='k-123' WHERE id=?", (owner,))
        conn.commit()

    with_conn(_set_key)
    client = client_for()

    denied = client.post("/api/market-data/bulk?apiKey=nope", json={"rows": [{"symbol": "QQQ", "date": 1, "price": 1}]})
    assert denied.status_code == 401
    assert denied.json() == {"error": "Invalid API key"}

    empty = client.post("/api/market-data/bulk", json={"rows": []}, headers={"Authorization": "Bearer k-123"})
    assert empty.status_code == 400

    rows = [{"symbol": "qqq", "date": ts(2024, 7, d), "price": 480 + d} for d in (1, 2, 3)]
    rows.append({"symbol": "QQQ", "date": "not-a-date", "price": 1})
    ok = client.post("/api/market-data/bulk", json={"rows": rows}, headers={"Authorization": "Bearer k-123"})
    assert ok.status_code == 200
    assert ok.json() == {"success": True, "inserted": 3}


def test_delete_whole_symbol(db, make_user, client_for):
    make_user("boss", role="admin")
    for day in (1, 2):
        market_data.upsert_price("QLD", ts(2024, 7, day), 90.0 + day)
    client = client_for("boss")

    resp = client.delete("/api/market-data?mode=all&symbol=QLD")
    assert resp.json() == {"success": True, "deleted": 2}
    assert market_data.latest_date("QLD") is None


def test_parse_history_csv_filters_rows():
    text = (
        "Date,Open,High,Low,Close,Volume\n"
        "2024-06-28,1,1,1,9.0,100\n"
        "2024-07-01,1,1,1,10.5,100\n"
        "2024-07-02,1,1,1,0,100\n"
        "garbage,1,1,1,abc,100\n"
    )
    assert stooq.parse_history_csv(text, "2024-07-01") == [{"date": "2024-07-01", "close": 10.5}]


def test_get_history_backs_off_after_429(monkeypatch):
    real_client = httpx.Client
    stooq._reset_rate_limit()

    def _client(**kwargs):
        return real_client(transport=httpx.MockTransport(lambda request: httpx.Response(429)), **kwargs)

    monkeypatch.setattr(stooq.httpx, "Client", _client)
    try:
        assert stooq.get_history("QQQ", "2024-07-01") == []
        assert stooq._rate_limited()
    finally:
        stooq._reset_rate_limit()


def test_get_history_symbol_mapping(monkeypatch):
    real_client = httpx.Client
    seen = []
    stooq._reset_rate_limit()

    def handler(request):
        seen.append(dict(request.url.params))
        return httpx.Response(200, text="Date,Open,High,Low,Close,Volume\n2024-07-01,1,1,1,480.25,10\n")

    monkeypatch.setattr(stooq.httpx, "Client", lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs))

    assert stooq.get_history("QQQ", "2024-07-01") == [{"date": "2024-07-01", "close": 480.25}]
    assert seen == [{"s": "qqq.us", "i": "d", "d1": "20240701"}]


def test_symbols_map_to_us_listing():
    assert stooq._to_stooq_symbol(" qld ") == "qld.us"
    assert stooq._to_stooq_symbol("QQQ.US") == "qqq.us"


def test_range_read_route(db, make_user, client_for):
    make_user("c1")
    for day, close in ((1, 480.0), (2, 481.0), (3, 482.0)):
        market_data.upsert_price("QQQ", ts(2024, 7, day), close)
    client = client_for("c1")

    ranged = client.get(f"/api/market-data?symbol=qqq&start={ts(2024, 7, 2)}&end={ts(2024, 7, 3)}").json()
    assert ranged == [{"date": ts(2024, 7, 2), "close": 481.0}, {"date": ts(2024, 7, 3), "close": 482.0}]

    open_ended = client.get("/api/market-data?symbol=QQQ").json()
    assert [p["close"] for p in open_ended] == [480.0, 481.0, 482.0]
    cached = cache.health_check()["keys_cached"]
    client.get("/api/market-data?symbol=QQQ")
    assert cache.health_check()["keys_cached"] == cached
    assert client_for().get("/api/market-data?symbol=QQQ").status_code == 401


def test_expired_memory_entries_are_swept(db):
    cache.set("market:OLD:1:2", [], ttl=-1)
    cache.set("market:NEW:1:2", [], ttl=60)
    assert cache.health_check()["keys_cached"] == 1


def test_fill_gaps_route_clears_benchmarks(db, make_user, client_for, monkeypatch):
    make_user("c1")
    cache.set("benchmark:1:QLD:all", {"rows": []})
    cache.set("benchmark:1:QQQ:all", {"rows": []})

    def history(symbol, start_date):
        first = date.fromisoformat(start_date)
        today = datetime.now(timezone.utc).date()
        return [{"date": d.isoformat(), "close": 90.0} for d in trading_days_between(first, today)]

    monkeypatch.setattr(stooq, "get_history", history)
    resp = client_for("c1").post("/api/market-data/fill-gaps", json={"symbol": "qld"})

    body = resp.json()
    assert resp.status_code == 200
    assert body["symbol"] == "QLD"
    assert body["filled"] == body["totalMissingDays"] > 0
    assert cache.get("benchmark:1:QLD:all") is None
    assert cache.get("benchmark:1:QQQ:all") == {"rows": []}


def test_clear_cache_is_staff_only_and_scoped(db, make_user, client_for):
    make_user("root", role="admin")
    make_user("c1")
    cache.set("market:QQQ:1:2", [])
    cache.set("benchmark:1:QQQ:all", {"rows": []})
    cache.set("users-selection:all:all:all", [])
    cache.set("session-note", "keep")

    assert client_for("c1").post("/api/market-data/clear-cache").status_code == 403
    resp = client_for("root").post("/api/market-data/clear-cache")

    assert resp.json() == {"success": True, "cleared": 3}
    assert cache.get("market:QQQ:1:2") is None
    assert cache.get("session-note") == "keep"
