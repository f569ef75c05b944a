from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from tradebook.app.services import interest


def ts(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


@pytest.fixture(autouse=True)
def _fresh_rates():
    interest._clear_rate_cache()
    yield
    interest._clear_rate_cache()


def _mock_fred(monkeypatch, handler):
    real_client = httpx.Client
    calls = []

    def _handler(request):
        calls.append(request)
        return handler(request)

    def _client(**kwargs):
        return real_client(transport=httpx.MockTransport(_handler), **kwargs)

    monkeypatch.setattr(interest.httpx, "Client", _client)
    return calls


@pytest.mark.parametrize(
    "loan,spread",
    [(50_000, 1.5), (100_000, 1.5), (100_001, 1.0), (1_000_000, 1.0), (2_500_000, 0.5), (5_000_000, 0.25)],
)
def test_ib_pro_spread_tiers(loan, spread):
    assert interest.ib_pro_spread(loan) == spread


def test_positive_cash_accrues_nothing():
    assert interest.daily_interest(1000.0, ts(2024, 3, 5), {"2024-03": 5.0}) == 0.0
    assert interest.daily_interest(0.0, ts(2024, 3, 5), {"2024-03": 5.0}) == 0.0


def test_negative_cash_uses_360_day_year():
    charged = interest.daily_interest(-50_000.0, ts(2024, 3, 5), {"2024-03": 5.0})
    assert charged == pytest.approx(-(50_000 * 0.065 / 360))

    large = interest.daily_interest(-2_000_000.0, ts(2024, 3, 5), {"2024-03": 5.0})
    assert large == pytest.approx(-(2_000_000 * 0.055 / 360))


def test_lookup_rate_walks_back_then_defaults():
    rates = {"2023-12": 5.33}
    assert interest.lookup_rate(rates, ts(2024, 4, 15)) == 5.33
    assert interest.lookup_rate(rates, ts(2024, 6, 1)) == 5.33
    assert interest.lookup_rate(rates, ts(2024, 7, 1)) == interest.DEFAULT_FED_RATE
    assert interest.lookup_rate({}, ts(2024, 7, 1)) == 4.33


def test_fetch_fed_funds_rates_parses_and_caches(monkeypatch):
    def handler(request):
        assert request.url.params["observation_start"] == "2023-12-01"
        assert request.url.params["observation_end"] == "2024-12-31"
        return httpx.Response(
            200,
            json={
                "observations": [
                    {"date": "2023-12-01", "value": "5.33"},
                    {"date": "2024-01-01", "value": "5.33"},
                    {"date": "2024-02-01", "value": "."},
                ]
            },
        )

    calls = _mock_fred(monkeypatch, handler)

    rates = interest.fetch_fed_funds_rates(2024)
    assert rates == {"2023-12": 5.33, "2024-01": 5.33}
    assert interest.fetch_fed_funds_rates(2024) is rates
    assert len(calls) == 1


def test_fetch_fed_funds_rates_raises_on_error(monkeypatch):
    _mock_fred(monkeypatch, lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(interest.FredError):
        interest.fetch_fed_funds_rates(2024)
