from __future__ import annotations

import math
from datetime import datetime, timezone
from statistics import mean, pstdev, stdev
from typing import Any, Iterable, Optional

DAY_SECONDS = 86400
TRADING_DAYS = 252
# Risk-free rates used by the Sharpe ratios (annual, fractional).
CARD_RISK_FREE = 0.02
TWR_RISK_FREE = 0.04


def day_start(ts: int | float) -> int:
    """Midnight UTC of the day containing ``ts`` (unix seconds)."""
    return int(ts) // DAY_SECONDS * DAY_SECONDS


def year_of(ts: int | float) -> int:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc).year


def year_bounds(year: int) -> tuple[int, int]:
    start = int(datetime(year, 1, 1, tzinfo=timezone.utc).timestamp())
    end = int(datetime(year, 12, 31, 23, 59, 59, tzinfo=timezone.utc).timestamp())
    return start, end


def deposit_map(deposits: Iterable[dict[str, Any]]) -> dict[int, float]:
    """Sum cash flows per UTC day; withdrawals count negative."""
    out: dict[int, float] = {}
    for dep in deposits:
        amount = float(dep.get("amount") or 0)
        if dep.get("transaction_type") == "withdrawal":
            amount = -amount
        key = day_start(dep["deposit_date"])
        out[key] = out.get(key, 0.0) + amount
    return out


def find_price(prices: list[dict[str, Any]], target: int | float) -> Optional[float]:
    """Close of the latest price dated on or before ``target``."""
    for point in reversed(prices):
        if point["date"] <= target:
            return float(point["close"])
    return None


def _flow_return(equity: float, flow: float, prev_equity: float) -> float:
    base = prev_equity + flow
    if base == 0:
        return 0.0
    return (equity - flow - prev_equity) / base


def _return_stats(daily_returns: list[float]) -> tuple[float, float, float]:
    if not daily_returns:
        return 0.0, 0.0, 0.0
    ann_return = mean(daily_returns) * TRADING_DAYS
    ann_std = stdev(daily_returns) * math.sqrt(TRADING_DAYS) if len(daily_returns) > 1 else 0.0
    sharpe = (ann_return - TWR_RISK_FREE) / ann_std if ann_std != 0 else 0.0
    return ann_return, ann_std, sharpe


def equity_ledger(equity: list[dict[str, Any]], deposits: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Daily NAV ledger for one account, oldest first.

    The first snapshot anchors NAV at 1.0. Each later day returns
    ``(E - D - E_prev) / E_prev`` where ``D`` is that day's net deposit, so a
    deposit on a day never shows up as performance.
    """
    flows = deposit_map(deposits)
    rows: list[dict[str, Any]] = []
    prev_nav = 1.0
    prev_equity = 0.0
    peak = 1.0
    for idx, record in enumerate(equity):
        value = float(record["net_equity"])
        flow = flows.get(day_start(record["date"]), 0.0)
        daily_return = 0.0
        if idx > 0 and prev_equity != 0:
            daily_return = (value - flow - prev_equity) / prev_equity
        nav = prev_nav * (1 + daily_return)
        is_new_high = False
        if nav > peak:
            peak = nav
            is_new_high = True
        rows.append(
            {
                "id": record.get("id"),
                "date": record["date"],
                "net_equity": value,
                "cash_balance": record.get("cash_balance"),
                "interest": record.get("interest"),
                "daily_deposit": flow,
                "daily_return": daily_return,
                "nav_ratio": nav,
                "running_peak": peak,
                "drawdown": (nav - peak) / peak,
                "is_new_high": is_new_high,
            }
        )
        prev_equity = value
        prev_nav = nav
    return rows


def card_stats(equity: list[dict[str, Any]], deposits: list[dict[str, Any]]) -> Optional[dict[str, Any]]:
    """Dashboard card summary: compounded annualized return over calendar days."""
    if not equity:
        return None
    ledger = equity_ledger(equity, deposits)
    daily_returns = [row["daily_return"] for row in ledger[1:]]
    nav = ledger[-1]["nav_ratio"]
    min_drawdown = min(row["drawdown"] for row in ledger)
    new_highs = sum(1 for row in ledger if row["is_new_high"])

    day_span = max(1.0, (equity[-1]["date"] - equity[0]["date"]) / DAY_SECONDS)
    ann_return = nav ** (365 / day_span) - 1 if nav > 0 else -1.0
    ann_std = pstdev(daily_returns) * math.sqrt(TRADING_DAYS) if daily_returns else 0.0
    sharpe = (ann_return - CARD_RISK_FREE) / ann_std if ann_std != 0 else 0.0
    return {
        "startDate": equity[0]["date"],
        "returnPercentage": nav - 1,
        "maxDrawdown": min_drawdown,
        "annualizedReturn": ann_return,
        "annualizedStdDev": ann_std,
        "sharpeRatio": sharpe,
        "newHighCount": new_highs,
        "newHighFreq": new_highs / len(equity),
    }


class _BenchmarkTracker:
    """Buys ``initial_cost`` of a symbol and reinvests every deposit at the close."""

    def __init__(self, prices: list[dict[str, Any]], start_price: float, initial_cost: float) -> None:
        self.prices = prices
        self.active = start_price > 0
        self.shares = initial_cost / start_price if self.active else 0.0
        self.prev_equity = initial_cost
        self.nav = 1.0

    def step(self, when: int, flow: float, first: bool) -> Optional[float]:
        if not self.active:
            return None
        price = find_price(self.prices, when) or 0.0
        if price <= 0:
            return None
        if flow != 0:
            self.shares += flow / price
        current = self.shares * price
        daily_return = _flow_return(current, flow, self.prev_equity)
        self.nav = (1.0 if first else self.nav) * (1 + daily_return)
        self.prev_equity = current
        return (self.nav - 1) * 100


def user_twr(
    equity: list[dict[str, Any]],
    deposits: list[dict[str, Any]],
    initial_cost: float,
    benchmark_start: Optional[int],
    qqq: list[dict[str, Any]],
    qld: list[dict[str, Any]],
) -> dict[str, Any]:
    """Account TWR seeded with ``initial_cost`` plus QQQ/QLD comparison rates."""
    initial_cost = float(initial_cost or 0)
    if not equity:
        return {
            "summary": {"initial_cost": initial_cost, "current_net_equity": initial_cost, "stats": None, "equity_history": []},
            "dailyReturns": [],
        }

    flows = deposit_map(deposits)
    start_target = benchmark_start or equity[0]["date"]
    trackers = {
        "qqq_rate": _BenchmarkTracker(qqq, find_price(qqq, start_target) or 0.0, initial_cost),
        "qld_rate": _BenchmarkTracker(qld, find_price(qld, start_target) or 0.0, initial_cost),
    }

    prev_nav = 1.0
    prev_equity = initial_cost
    peak = 1.0
    min_drawdown = 0.0
    new_highs = 0
    daily_returns: list[float] = []
    history: list[dict[str, Any]] = []

    for idx, record in enumerate(equity):
        value = float(record["net_equity"])
        midnight = day_start(record["date"])
        flow = flows.get(midnight, 0.0)
        daily_return = _flow_return(value, flow, prev_equity)
        daily_returns.append(daily_return)
        nav = prev_nav * (1 + daily_return)

        point = {"date": record["date"], "net_equity": value, "rate": (nav - 1) * 100}
        for key, tracker in trackers.items():
            point[key] = tracker.step(midnight, flow, idx == 0)
        history.append(point)

        if nav > peak:
            peak = nav
            new_highs += 1
        min_drawdown = min(min_drawdown, (nav - peak) / peak)
        prev_nav = nav
        prev_equity = value

    ann_return, ann_std, sharpe = _return_stats(daily_returns)
    return {
        "summary": {
            "initial_cost": initial_cost,
            "current_net_equity": float(equity[-1]["net_equity"]),
            "stats": {
                "startDate": equity[0]["date"],
                "returnPercentage": prev_nav - 1,
                "maxDrawdown": min_drawdown,
                "annualizedReturn": ann_return,
                "annualizedStdDev": ann_std,
                "sharpeRatio": sharpe,
                "newHighCount": new_highs,
                "newHighFreq": new_highs / len(equity),
            },
            "equity_history": history,
        },
        "dailyReturns": daily_returns,
    }


def benchmark_stats(
    prices: list[dict[str, Any]],
    start: int,
    end: int,
    initial_cost: float,
    deposits: list[dict[str, Any]],
) -> Optional[dict[str, Any]]:
    relevant = [p for p in prices if start <= p["date"] <= end]
    if len(relevant) < 2:
        return None

    flows = deposit_map(deposits)
    shares = initial_cost / float(relevant[0]["close"])
    prev_equity = float(initial_cost)
    nav = 1.0
    peak = 1.0
    max_dd = 0.0
    new_highs = 0
    daily_returns: list[float] = []

    for idx, point in enumerate(relevant):
        price = float(point["close"])
        flow = flows.get(point["date"], 0.0)
        if flow != 0 and price > 0:
            shares += flow / price
        current = shares * price
        daily_return = _flow_return(current, flow, prev_equity) if idx > 0 else 0.0
        daily_returns.append(daily_return)
        nav = 1.0 if idx == 0 else nav * (1 + daily_return)
        if nav > peak:
            peak = nav
            if idx > 0:
                new_highs += 1
        max_dd = min(max_dd, (nav - peak) / peak)
        prev_equity = current

    ann_return, ann_std, sharpe = _return_stats(daily_returns)
    return {
        "startEquity": initial_cost,
        "currentEquity": prev_equity,
        "returnPercentage": nav - 1,
        "maxDrawdown": max_dd,
        "annualizedReturn": ann_return,
        "annualizedStdDev": ann_std,
        "sharpeRatio": sharpe,
        "newHighCount": new_highs,
        "newHighFreq": new_highs / len(relevant),
        "dailyReturns": daily_returns,
    }


def benchmark_ledger(
    records: list[dict[str, Any]],
    prices: list[dict[str, Any]],
    deposits: list[dict[str, Any]],
    initial_cost: float,
    base_date: int,
) -> tuple[list[dict[str, Any]], float]:
    """Hypothetical account that held the benchmark instead; newest first.

    Returns the ledger rows and the base price used to buy the first shares.
    """
    flows = deposit_map(deposits)
    by_date = {p["date"]: float(p["close"]) for p in prices}

    def _price(when: int) -> Optional[float]:
        if when in by_date:
            return by_date[when]
        return find_price(prices, when)

    base_price = _price(base_date) or 0.0
    prev_nav = 1.0
    prev_equity = float(initial_cost)
    prev_price = base_price
    peak = 1.0
    shares = initial_cost / base_price if base_price > 0 else 0.0
    rows: list[dict[str, Any]] = []

    for idx, record in enumerate(records):
        when = record["date"]
        price = _price(when) or prev_price
        if shares == 0 and base_price == 0 and price > 0 and idx == 0:
            shares = initial_cost / price
        flow = flows.get(day_start(when), 0.0)
        if flow != 0 and price > 0:
            shares += flow / price
        hypothetical = shares * price
        daily_return = _flow_return(hypothetical, flow, prev_equity)
        nav = prev_nav * (1 + daily_return)
        is_new_high = False
        if nav > peak:
            peak = nav
            is_new_high = True
        rows.append(
            {
                "id": idx,
                "date": when,
                "net_equity": hypothetical,
                "daily_deposit": flow,
                "daily_return": daily_return,
                "nav_ratio": nav,
                "running_peak": peak,
                "drawdown": (nav - peak) / peak,
                "is_new_high": is_new_high,
                "close_price": price,
                "shares": shares,
            }
        )
        prev_equity = hypothetical
        prev_price = price
        prev_nav = nav

    rows.reverse()
    return rows, base_price


def _max_drawdown(values: list[float]) -> float:
    if not values:
        return 0.0
    peak = values[0]
    worst = 0.0
    for value in values:
        peak = max(peak, value)
        if peak > 0:
            worst = max(worst, (peak - value) / peak)
    return worst


def yearly_report_stats(equity: list[dict[str, Any]]) -> dict[str, float]:
    """YTD figures for the account report, from raw equity values."""
    values = [float(r["net_equity"]) for r in equity]
    if len(values) < 2:
        return {"ytd_return": 0.0, "max_drawdown": 0.0, "annualized_std": 0.0, "sharpe": 0.0}
    rets = [(cur / prev - 1.0) for prev, cur in zip(values, values[1:]) if prev > 0]
    ytd = values[-1] / values[0] - 1.0 if values[0] > 0 else 0.0
    ann_std = stdev(rets) * math.sqrt(TRADING_DAYS) if len(rets) > 1 else 0.0
    ann_ret = (1 + mean(rets)) ** TRADING_DAYS - 1 if rets else 0.0
    return {
        "ytd_return": ytd,
        "max_drawdown": _max_drawdown(values),
        "annualized_std": ann_std,
        "sharpe": ann_ret / ann_std if ann_std > 0 else 0.0,
    }
