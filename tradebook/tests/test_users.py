from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tradebook.app.db import with_conn
from tradebook.app.errors import ConflictError
from tradebook.app.services import deposits, net_equity, options, projects, users
from tradebook.app.services.cache import cache


def ts(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


def _count(table: str, column: str, value) -> int:
    return with_conn(lambda conn: conn.execute(f"SELECT COUNT(*) FROM {table} WHERE {column}=?", (value,)).fetchone()[0])


def test_duplicates_checked_within_year(make_user):
    make_user("amy", year=2024)
    with pytest.raises(ConflictError):
        make_user("amy", email="other@example.com", year=2024)
    with pytest.raises(ConflictError):
        make_user("amy-2", email="amy@example.com", year=2024)
    assert make_user("amy", year=2025)


def test_customer_only_fields_dropped_for_staff(make_user):
    trader = make_user("tom", role="trader", managementFee=0.2, initialCost=5000, ibAccount="U1")
    customer = make_user("cat", managementFee=0.2, initialCost=5000, ibAccount="U2")
    assert users.get_user(trader)["initial_cost"] == 0
    assert users.get_user(customer)["initial_cost"] == 5000

    users.update_user({"id": customer, "role": "trader"})
    assert users.get_user(customer)["initial_cost"] == 0


def test_listing_visibility(make_user, client_for):
    make_user("root", role="admin")
    make_user("mgr", role="manager")
    make_user("cust1")
    make_user("cust2")

    assert client_for().get("/api/users").status_code == 403

    own = client_for("cust1").get("/api/users").json()
    assert [u["user_id"] for u in own] == ["cust1"]

    everyone = client_for("mgr").get("/api/users").json()
    assert [u["role"] for u in everyone] == ["admin", "manager", "customer", "customer"]


def test_create_user_endpoint(make_user, client_for):
    make_user("root", role="admin")
    make_user("cust")
    staff = client_for("root")

    assert client_for("cust").post("/api/users", json={}).status_code == 403
    assert staff.post("/api/users", json={"email": "x@example.com"}).status_code == 400
    bad_role = staff.post(
        "/api/users", json={"email": "x@example.com", "userId": "x", "password": "pw", "role": "owner"}
    )
    assert bad_role.status_code == 400

    created = staff.post(
        "/api/users", json={"email": "x@example.com", "userId": "x", "password": "pw", "role": "trader"}
    )
    assert created.status_code == 200
    dup = staff.post("/api/users", json={"email": "y@example.com", "userId": "x", "password": "pw", "role": "trader"})
    assert dup.status_code == 409
    missing = staff.put("/api/users", json={"id": 9999, "email": "z@example.com"})
    assert missing.status_code == 404


def test_selection_counts_options(make_user, client_for):
    owner = make_user("sel", year=2024)
    for status in ("Open", "Open", "Closed"):
        options.create_option(
            {
                "status": status,
                "open_date": ts(2024, 3, 1),
                "quantity": 1,
                "underlying": "AAPL",
                "type": "PUT",
                "strike_price": 150,
                "final_profit": 100,
                "premium": 200,
                "owner_id": owner,
            }
        )
    client = client_for("sel")

    rows = client.get("/api/users?mode=selection&roles=customer&year=2024").json()
    row = next(r for r in rows if r["id"] == owner)
    assert row["options_count"] == 3
    assert row["open_count"] == 2
    march = row["monthly_stats"][2]
    assert march["month"] == "03"
    assert march["put_profit"] == 300
    assert row["total_profit"] == 300


def test_clear_records_keeps_account(make_user):
    admin = make_user("root", role="admin")
    cust = make_user("gone", initialCost=1000)
    options.create_option(
        {"open_date": ts(2024, 3, 1), "quantity": 1, "underlying": "MSFT", "type": "CALL", "strike_price": 400, "owner_id": cust}
    )
    deposits.create_deposit({"deposit_date": ts(2024, 3, 1), "user_id": cust, "amount": 100})
    net_equity.upsert_record({"user_id": cust, "date": ts(2024, 3, 1), "net_equity": 1100})

    result = users.delete_user(cust, admin, clear_records=True)

    assert result == {"success": True, "mode": "clear_records"}
    assert _count("OPTIONS", "owner_id", cust) == 0
    assert _count("DEPOSITS", "user_id", cust) == 0
    assert _count("DAILY_NET_EQUITY", "user_id", cust) == 0
    assert users.get_user(cust)["initial_cost"] == 0


def test_full_delete_removes_owned_projects(make_user):
    admin = make_user("root", role="admin")
    trader = make_user("leaver", role="trader")
    viewer = {"id": trader, "role": "trader"}
    project = projects.create_project(viewer, {"name": "Desk"})
    projects.create_item(viewer, project["id"], {"title": "Task"})

    with pytest.raises(ValueError):
        users.delete_user(admin, admin)

    users.delete_user(trader, admin)

    assert _count("USERS", "id", trader) == 0
    assert _count("PROJECTS", "id", project["id"]) == 0
    assert _count("ITEMS", "project_id", project["id"]) == 0


def test_monthly_interest_and_fees(make_user, client_for):
    make_user("root", role="admin")
    cust = make_user("m1")
    staff = client_for("root")

    assert staff.get(f"/api/users/{cust}/interest").status_code == 400
    put = staff.put(f"/api/users/{cust}/interest?year=2024", json=[{"month": 2, "interest": -12.5}])
    assert put.status_code == 200

    months = staff.get(f"/api/users/{cust}/interest?year=2024").json()
    assert len(months) == 12
    assert months[1] == {"month": 2, "interest": -12.5}
    assert months[0] == {"month": 1, "interest": 0.0}

    staff.put(f"/api/users/{cust}/fees?year=2024", json=[{"month": 12, "amount": 30}])
    fees = staff.get(f"/api/users/{cust}/fees?year=2024").json()
    assert fees[11] == {"month": 12, "amount": 30.0}


def test_get_user_self_or_staff(make_user, client_for):
    a = make_user("ua")
    b = make_user("ub")
    client = client_for("ua")
    assert client.get(f"/api/users/{a}").json()["user_id"] == "ua"
    assert client.get(f"/api/users/{b}").status_code == 403


def test_account_report(make_user):
    cust = make_user("rep", initialCost=10_000)
    deposits.create_deposit({"deposit_date": ts(2024, 2, 1), "user_id": cust, "amount": 2000})
    for day, equity, cash in ((2, 10_000, 1000), (3, 12_000, -500), (4, 13_000, -800)):
        net_equity.upsert_record({"user_id": cust, "date": ts(2024, 1, day), "net_equity": equity, "cash_balance": cash})
    put = {
        "open_date": ts(2024, 1, 5),
        "quantity": -1,
        "underlying": "NVDA",
        "type": "PUT",
        "strike_price": 26,
        "premium": 80,
        "owner_id": cust,
    }
    options.create_option(put)
    options.create_option(
        {**put, "status": "Closed", "strike_price": 30, "final_profit": 75, "settlement_date": ts(2024, 2, 2)}
    )

    report = users.account_report(cust, 2024, today=datetime(2024, 2, 10, tzinfo=timezone.utc))

    assert report["accountNetWorth"] == 13_000
    assert report["cashBalance"] == -800
    assert report["cost"] == 12_000
    assert report["netProfit"] == 1000
    assert report["ytdReturn"] == pytest.approx(0.3)
    assert report["marginRate"] == pytest.approx(2600 / 13_000)
    assert report["annualTarget"] == 520
    assert len(report["openOptions"]) == 1
    assert report["openOptions"][0]["strike_price"] == 26
    assert report["monthlyPremium"] == [{"month": 2, "profit": 75}]
    assert report["quarterlyPremium"] == 75


def test_options_analysis_by_month(make_user, client_for):
    make_user("root", role="admin")
    cust = make_user("ana")
    other = make_user("other")
    base = {"status": "Closed", "quantity": -1, "underlying": "AAPL", "strike_price": 150, "owner_id": cust}
    for kind, opened, settled, profit, delta, iv, collateral in (
        ("PUT", ts(2024, 3, 1), ts(2024, 3, 11), 100, -0.2, 0.4, 1000),
        ("PUT", ts(2024, 3, 5), ts(2024, 3, 10), -50, -0.4, 0.6, 1000),
        ("CALL", ts(2024, 3, 15), ts(2024, 3, 20), 30, 0.3, 0.2, 0),
    ):
        options.create_option(
            {
                **base,
                "type": kind,
                "open_date": opened,
                "settlement_date": settled,
                "final_profit": profit,
                "delta": delta,
                "iv": iv,
                "collateral": collateral,
            }
        )

    months = users.options_analysis(cust, 2024)

    assert len(months) == 12
    assert months[0]["total_win_rate"] == 0 and months[0]["capital_flow"] == 0
    march = months[2]
    assert march["month"] == "03"
    assert march["put_win_rate"] == pytest.approx(50)
    assert march["call_win_rate"] == pytest.approx(100)
    assert march["total_win_rate"] == pytest.approx(200 / 3)
    assert march["put_delta"] == pytest.approx(-0.3)
    assert march["call_delta"] == pytest.approx(0.3)
    assert march["total_delta"] == pytest.approx(-0.1)
    assert march["avg_iv"] == pytest.approx(0.4)
    assert march["capital_flow"] == 15_000
    assert march["capital_efficiency"] == pytest.approx(80 / 15_000 * 100)
    assert users.options_analysis(cust, 2023)[2]["capital_flow"] == 0

    customer = client_for("ana")
    assert customer.get(f"/api/users/analysis?userId={cust}").status_code == 400
    assert customer.get(f"/api/users/analysis?userId={other}&year=2024").status_code == 403
    body = customer.get(f"/api/users/analysis?userId={cust}&year=2024").json()
    assert body["monthly_analysis"][2]["put_win_rate"] == pytest.approx(50)
    assert client_for("root").get(f"/api/users/analysis?userId={other}&year=2024").status_code == 200


def test_delete_user_only_drops_that_users_cache(make_user):
    admin = make_user("root", role="admin")
    gone = make_user("gone")
    kept = make_user("kept")
    cache.set(f"benchmark:{gone}:QQQ:2024", [1], ttl=60)
    cache.set(f"benchmark:{kept}:QQQ:2024", [2], ttl=60)
    cache.set("market:QQQ:1:2", [3], ttl=60)

    users.delete_user(gone, admin)

    assert cache.get(f"benchmark:{gone}:QQQ:2024") is None
    assert cache.get(f"benchmark:{kept}:QQQ:2024") == [2]
    assert cache.get("market:QQQ:1:2") == [3]
