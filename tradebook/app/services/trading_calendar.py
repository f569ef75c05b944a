from __future__ import annotations

from datetime import date, timedelta

US_MARKET_HOLIDAYS = frozenset(
    date.fromisoformat(d)
    for d in (
        # 2024
        "2024-01-01",
        "2024-01-15",
        "2024-02-19",
        "2024-03-29",
        "2024-05-27",
        "2024-06-19",
        "2024-07-04",
        "2024-09-02",
        "2024-11-28",
        "2024-12-25",
        # 2025
        "2025-01-01",
        "2025-01-20",
        "2025-02-17",
        "2025-04-18",
        "2025-05-26",
        "2025-06-19",
        "2025-07-04",
        "2025-09-01",
        "2025-11-27",
        "2025-12-25",
        # 2026
        "2026-01-01",
        "2026-01-19",
        "2026-02-16",
        "2026-04-03",
        "2026-05-25",
        "2026-06-19",
        "2026-07-03",  # Independence Day observed
        "2026-09-07",
        "2026-11-26",
        "2026-12-25",
    )
)


def is_market_holiday(day: date) -> bool:
    return day in US_MARKET_HOLIDAYS


def is_trading_day(day: date) -> bool:
    return day.weekday() < 5 and not is_market_holiday(day)


def trading_days_between(start: date, end: date) -> list[date]:
    days: list[date] = []
    cursor = start
    while cursor <= end:
        if is_trading_day(cursor):
            days.append(cursor)
        cursor += timedelta(days=1)
    return days
