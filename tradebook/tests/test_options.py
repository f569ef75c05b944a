from __future__ import annotations

import re
from datetime import datetime, timezone

import pytest

from tradebook.app.services import codes, options


def ts(year: int, month: int, day: int) -> int:
    return int(datetime(year, month, day, tzinfo=timezone.utc).timestamp())


def option_row(owner_id, **overrides):
    row = {
        "status": "Open",
        "open_date": ts(2024, 5, 3),
        "quantity": -2,
        "underlying": "tsla",
        "type": "put",
        "strike_price": 160,
        "premium": 400,
        "owner_id": owner_id,
    }
    row.update(overrides)
    return row


def test_create_option_assigns_code_and_year(make_user):
    owner = make_user("opt")
    created = options.create_option(option_row(owner, final_profit=200))

    assert re.fullmatch(r"[A-Z0-9]{5}", created["code"])
    row = options.list_options(owner_id=owner)[0]
    assert row["year"] == 2024
    assert row["underlying"] == "TSLA"
    assert row["type"] == "PUT"
    assert row["profit_percent"] == pytest.approx(0.5)


def test_profit_percent_rules():
    assert options.profit_percent({"final_profit": 50, "premium": 200}) == 0.25
    assert options.profit_percent({"final_profit": None, "premium": 200, "profit_percent": 0.3}) is None
    assert options.profit_percent({"premium": 0, "final_profit": 10, "profit_percent": 0.7}) == 0.7


def test_create_requires_core_fields(make_user):
    owner = make_user("opt")
    with pytest.raises(ValueError, match="strike_price"):
        options.create_option(option_row(owner, strike_price=None))


def test_update_clears_profit_with_explicit_null(make_user):
    owner = make_user("opt")
    created = options.create_option(option_row(owner, final_profit=200))
    options.update_option({**option_row(owner), "id": created["id"], "final_profit": None, "status": "Closed"})
    row = options.list_options(owner_id=owner)[0]
    assert row["final_profit"] is None
    assert row["profit_percent"] is None
    assert row["status"] == "Closed"
    with pytest.raises(LookupError):
        options.update_option({**option_row(owner), "id": 99999})


def test_import_skips_duplicates_and_bad_rows(make_user):
    owner = make_user("opt")
    options.create_option(option_row(owner))

    result = options.import_options(
        [
            option_row(owner),
            option_row(owner, strike_price=150),
            option_row(owner, status=None),
            "not a row",
        ]
    )

    assert result["imported"] == 1
    assert result["skipped"] == 3
    assert result["total"] == 4
    assert any("already exists" in e for e in result["errors"])
    assert any("missing status" in e for e in result["errors"])
    assert len(options.list_options(owner_id=owner)) == 2


def test_import_rejects_non_list(make_user):
    with pytest.raises(ValueError):
        options.import_options({"rows": []})


def test_code_exhaustion_is_server_error(make_user, client_for, monkeypatch):
    owner = make_user("opt")
    make_user("desk", role="trader")
    monkeypatch.setattr(codes, "random_code", lambda length=codes.CODE_LENGTH: "AAAAA")
    options.create_option(option_row(owner))

    with pytest.raises(codes.CodeExhaustedError):
        options.create_option(option_row(owner, strike_price=170))

    resp = client_for("desk").post("/api/options", json=option_row(owner, strike_price=180))
    assert resp.status_code == 500
    assert resp.json() == {"error": "Internal Server Error"}


def test_option_routes(make_user, client_for):
    owner = make_user("opt")
    other = make_user("other")
    make_user("desk", role="trader")
    desk = client_for("desk")

    created = desk.post("/api/options", json=option_row(owner))
    assert created.status_code == 200
    assert created.json()["success"] is True
    desk.post("/api/options", json=option_row(other))

    assert client_for("opt").post("/api/options", json=option_row(owner)).status_code == 403
    mine = client_for("opt").get(f"/api/options?ownerId={other}").json()
    assert {r["owner_id"] for r in mine} == {owner}

    assert desk.delete("/api/options/abc").status_code == 400
    assert desk.delete("/api/options/99999").status_code == 404

    imported = desk.post("/api/options/import", json={"options": [option_row(owner)]}).json()
    assert imported["skipped"] == 1
    assert desk.post("/api/options/import", json={"options": "nope"}).status_code == 400

    assert desk.get("/api/options/export").status_code == 400
    exported = desk.get(f"/api/options/export?ownerId={owner}&year=2024").json()
    assert exported["count"] == 1
    assert "code" not in exported["options"][0]
    assert desk.delete(f"/api/options/{created.json()['id']}").json() == {"success": True}
