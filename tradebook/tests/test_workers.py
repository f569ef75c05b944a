from __future__ import annotations

from tradebook.app import workers
from tradebook.app.config import settings


def test_disabled_worker_does_nothing(monkeypatch):
    calls = []
    monkeypatch.setattr(settings, "auto_update", False)
    monkeypatch.setattr(workers.market_data, "fill_gaps", lambda symbol: calls.append(symbol))

    thread = workers.start_workers()
    thread.join(timeout=5)

    assert thread.daemon
    assert not thread.is_alive()
    assert calls == []


def test_refresh_continues_after_a_failure(monkeypatch):
    calls = []

    def fake_fill(symbol):
        calls.append(symbol)
        if symbol == "QQQ":
            raise RuntimeError("provider down")
        return {"success": True, "symbol": symbol, "totalMissingDays": 2, "filled": 2}

    monkeypatch.setattr(settings, "auto_update", True)
    monkeypatch.setattr(settings.market, "benchmark_symbols", ["QQQ", "QLD"])
    monkeypatch.setattr(workers.market_data, "fill_gaps", fake_fill)

    thread = workers.start_workers()
    thread.join(timeout=5)

    assert thread.name == "benchmark-refresh"
    assert calls == ["QQQ", "QLD"]
