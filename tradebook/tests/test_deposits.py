from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tradebook.app.services import deposits


def ts(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


def test_validation_rules(make_user):
    cust = make_user("c1")
    with pytest.raises(ValueError, match="positive"):
        deposits.create_deposit({"deposit_date": ts(2024, 1, 2), "user_id": cust, "amount": 0})
    with pytest.raises(ValueError, match="Missing"):
        deposits.create_deposit({"user_id": cust, "amount": 10})
    with pytest.raises(ValueError, match="transaction_type"):
        deposits.create_deposit(
            {"deposit_date": ts(2024, 1, 2), "user_id": cust, "amount": 10, "transaction_type": "refund"}
        )
    with pytest.raises(LookupError):
        deposits.create_deposit({"deposit_date": ts(2024, 1, 2), "user_id": 9999, "amount": 10})


def test_year_and_defaults_derived(make_user):
    cust = make_user("c1")
    deposits.create_deposit({"deposit_date": ts(2023, 12, 31) + 3600, "user_id": cust, "amount": 250})

    row = deposits.list_deposits([cust])[0]
    assert row["year"] == 2023
    assert row["deposit_type"] == "cash"
    assert row["transaction_type"] == "deposit"
    assert row["depositor_user_id"] == "c1"
    assert deposits.list_deposits([cust], year=2024) == []


def test_staff_writes_customer_reads_own(make_user, client_for):
    make_user("root", role="admin")
    c1 = make_user("c1")
    c2 = make_user("c2")
    staff = client_for("root")

    assert staff.post("/api/deposits", json={"deposit_date": ts(2024, 2, 1), "user_id": c1, "amount": -5}).status_code == 400
    first = staff.post("/api/deposits", json={"deposit_date": ts(2024, 2, 1), "user_id": c1, "amount": 500})
    assert first.json()["success"] is True
    staff.post(
        "/api/deposits",
        json={"deposit_date": ts(2024, 3, 1), "user_id": c1, "amount": 200, "transaction_type": "withdrawal"},
    )
    staff.post("/api/deposits", json={"deposit_date": ts(2024, 2, 1), "user_id": c2, "amount": 900})

    customer = client_for("c1")
    assert customer.post("/api/deposits", json={"deposit_date": ts(2024, 2, 1), "user_id": c1, "amount": 1}).status_code == 403
    mine = customer.get(f"/api/deposits?userId={c2}").json()
    assert [d["amount"] for d in mine] == [200, 500]

    withdrawals = staff.get(f"/api/deposits?userId={c1},{c2}&transaction_type=withdrawal").json()
    assert [d["user_id"] for d in withdrawals] == [c1]
    assert len(staff.get("/api/deposits").json()) == 3
    assert staff.get("/api/deposits?userId=abc").status_code == 400

    exported = staff.get("/api/deposits/export?year=2024").json()
    assert exported["count"] == 3
    assert customer.get("/api/deposits/export").status_code == 403


def test_update_and_delete(make_user, client_for):
    make_user("root", role="admin")
    cust = make_user("c1")
    staff = client_for("root")
    deposit_id = staff.post("/api/deposits", json={"deposit_date": ts(2024, 2, 1), "user_id": cust, "amount": 500}).json()["id"]

    updated = staff.put(
        f"/api/deposits/{deposit_id}",
        json={"deposit_date": ts(2025, 1, 5), "user_id": cust, "amount": 750, "note": "wire"},
    )
    assert updated.json() == {"success": True}
    row = deposits.list_deposits([cust])[0]
    assert (row["amount"], row["year"], row["note"]) == (750, 2025, "wire")

    missing = staff.put("/api/deposits/9999", json={"deposit_date": ts(2025, 1, 5), "user_id": cust, "amount": 1})
    assert missing.status_code == 404
    assert staff.delete(f"/api/deposits/{deposit_id}").json() == {"success": True}
    assert staff.delete(f"/api/deposits/{deposit_id}").status_code == 404


def test_import_relinks_depositors_and_skips_unknown(make_user, client_for):
    make_user("root", role="admin")
    c1 = make_user("c1")
    c2 = make_user("c2")
    rows = [
        {"deposit_date": ts(2024, 1, 5), "amount": 100, "user_id": 999, "depositor_email": "c1@example.com"},
        {"deposit_date": ts(2024, 1, 6), "amount": 200, "depositor_user_id": "c2"},
        {"deposit_date": ts(2024, 1, 7), "amount": 50, "user_id": c1, "transaction_type": "withdrawal"},
        {"deposit_date": ts(2024, 1, 8), "amount": 70, "user_id": 4242, "depositor_email": "nobody@example.com"},
        {"deposit_date": ts(2024, 1, 9), "user_id": c1},
        {"deposit_date": ts(2024, 1, 10), "amount": -5, "user_id": c1},
    ]

    assert client_for("c1").post("/api/deposits/import", json={"deposits": rows}).status_code == 403
    staff = client_for("root")
    assert staff.post("/api/deposits/import", json={"deposits": {"amount": 1}}).status_code == 400

    result = staff.post("/api/deposits/import", json={"deposits": rows}).json()

    assert result == {"success": True, "imported": 3, "skipped": 3}
    assert sorted(d["amount"] for d in deposits.list_deposits([c1])) == [50, 100]
    assert [(d["amount"], d["year"]) for d in deposits.list_deposits([c2])] == [(200, 2024)]
    assert deposits.list_deposits([c1], transaction_type="withdrawal")[0]["amount"] == 50
