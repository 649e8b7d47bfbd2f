from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.security import Grant, create_access_token
from app.db.session import get_db
from main import app
from services.costing.api import get_product_store
from services.costing.product_store import SqlProductCostStore


@pytest.fixture
def client(session_factory):
    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_product_store] = lambda: SqlProductCostStore(session_factory)
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(tenant, role: str) -> dict:
    token = create_access_token(
        f"user-{role}", email=f"{role.lower()}@{tenant.slug}.example", tenant_id=tenant.id, grants=[Grant(role=role)]
    )
    return {"Authorization": f"Bearer {token}"}


def _create_body(product_id: str, **kw) -> dict:
    body = {
        "product_id": product_id,
        "material_cost": "120.00",
        "labor_cost": "50.00",
        "overhead_cost": "25.00",
        "reason": "Supplier price list 2026",
        "reason_code": "SUPPLIER_PRICE_HIKE",
    }
    body.update(kw)
    return body


def test_anonymous_is_unauthenticated(client, acme):
    r = client.get("/acme/costing/variances/reason-codes")
    assert r.status_code == 401
    assert r.json() == {"error": "Unauthenticated", "detail": "Not authenticated"}


def test_unknown_org_is_not_found(client, acme):
    r = client.get("/nobody/costing/variances/reason-codes", headers=_auth(acme, "VIEWER"))
    assert r.status_code == 404
    assert r.json()["error"] == "NotFound"


def test_revaluation_lifecycle(client, acme, make_product):
    pid = make_product(acme)

    created = client.post("/acme/costing/revaluations", json=_create_body(pid), headers=_auth(acme, "ACCOUNTANT"))
    assert created.status_code == 201
    rev = created.json()
    assert rev["status"] == "PENDING"
    assert rev["value_difference"] == "20.0000"

    forbidden = client.patch(f"/acme/costing/revaluations/{rev['id']}/approve", headers=_auth(acme, "ACCOUNTANT"))
    assert forbidden.status_code == 403
    assert forbidden.json()["error"] == "Forbidden"

    approved = client.patch(f"/acme/costing/revaluations/{rev['id']}/approve", headers=_auth(acme, "MANAGER"))
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"
    assert approved.json()["approved_by"] == "manager@acme.example"
    assert approved.json()["approved_at"]

    again = client.patch(f"/acme/costing/revaluations/{rev['id']}/approve", headers=_auth(acme, "ADMIN"))
    assert again.status_code == 409
    assert again.json()["error"] == "InvalidState"

    fetched = client.get(f"/acme/costing/revaluations/{rev['id']}", headers=_auth(acme, "VIEWER"))
    assert fetched.json()["status"] == "APPROVED"

    listed = client.get("/acme/costing/revaluations", params={"status": "APPROVED"}, headers=_auth(acme, "VIEWER"))
    assert [r["id"] for r in listed.json()] == [rev["id"]]


def test_reject_requires_reason(client, acme, make_product):
    pid = make_product(acme)
    rev = client.post("/acme/costing/revaluations", json=_create_body(pid), headers=_auth(acme, "MANAGER")).json()

    missing = client.patch(f"/acme/costing/revaluations/{rev['id']}/reject", json={}, headers=_auth(acme, "MANAGER"))
    assert missing.status_code == 400
    assert missing.json()["error"] == "ValidationError"

    blank = client.patch(
        f"/acme/costing/revaluations/{rev['id']}/reject", json={"reason": " "}, headers=_auth(acme, "MANAGER")
    )
    assert blank.status_code == 400

    ok = client.patch(
        f"/acme/costing/revaluations/{rev['id']}/reject", json={"reason": "Quote expired"}, headers=_auth(acme, "MANAGER")
    )
    assert ok.status_code == 200
    assert ok.json()["rejection_reason"] == "Quote expired"


def test_other_tenant_cannot_see_revaluation(client, acme, globex, make_product):
    pid = make_product(acme)
    rev = client.post("/acme/costing/revaluations", json=_create_body(pid), headers=_auth(acme, "MANAGER")).json()

    own_slug = client.get(f"/globex/costing/revaluations/{rev['id']}", headers=_auth(globex, "ADMIN"))
    assert own_slug.status_code == 404
    foreign_slug = client.get(f"/acme/costing/revaluations/{rev['id']}", headers=_auth(globex, "ADMIN"))
    assert foreign_slug.status_code == 404
    assert "product_id" not in foreign_slug.json()


def test_negative_proposed_cost_is_rejected(client, acme, make_product):
    pid = make_product(acme)
    r = client.post(
        "/acme/costing/revaluations", json=_create_body(pid, labor_cost="-1"), headers=_auth(acme, "MANAGER")
    )
    assert r.status_code == 400
    assert r.json() == {"error": "ValidationError", "detail": "labor_cost cannot be negative"}


def test_preview(client, acme, make_product):
    pid = make_product(acme)
    body = {k: v for k, v in _create_body(pid).items() if k not in ("reason", "reason_code")}
    r = client.post("/acme/costing/revaluations/preview", json=body, headers=_auth(acme, "VIEWER"))
    assert r.status_code == 200
    assert r.json()["value_difference"] == "20.0000"


def test_mass_update(client, acme, make_product):
    make_product(acme, category_id="RAW")
    make_product(acme, category_id="RAW", material="2.00")

    r = client.post(
        "/acme/costing/standard-costs/mass-update",
        json={
            "filter": {"category_id": "RAW"},
            "adjustment": {"type": "AMOUNT", "material_adjustment": "-5", "reason": "Supplier rebate"},
        },
        headers={**_auth(acme, "MANAGER"), "X-Request-Timeout": "30"},
    )

    assert r.status_code == 200
    data = r.json()
    assert data["updated_count"] == 1
    assert data["matched_count"] == 2
    assert data["truncated"] is False
    assert len(data["errors"]) == 1


def test_mass_update_rejects_bad_timeout_and_empty_adjustment(client, acme):
    body = {"adjustment": {"type": "AMOUNT", "reason": "x"}}
    headers = _auth(acme, "MANAGER")

    assert client.post("/acme/costing/standard-costs/mass-update", json=body, headers=headers).status_code == 400
    bad_timeout = client.post(
        "/acme/costing/standard-costs/mass-update",
        json={"adjustment": {"type": "AMOUNT", "labor_adjustment": "1", "reason": "x"}},
        headers={**headers, "X-Request-Timeout": "0"},
    )
    assert bad_timeout.status_code == 400


def test_reason_codes_and_localization_config(client, make_tenant):
    kampala = make_tenant("kampala", "UG", "USD")

    r = client.get("/kampala/costing/variances/reason-codes", headers=_auth(kampala, "VIEWER"))
    assert r.status_code == 200
    data = r.json()
    assert data["country"] == "UG"
    assert data["gl_mapping"]["FUEL_SURCHARGE"] == "5480"
    assert [c["code"] for c in data["codes"]][0] == "EXCHANGE_RATE_FLUCTUATION"

    cfg = client.get("/kampala/costing/localization/config", headers=_auth(kampala, "VIEWER")).json()
    assert cfg["required_approvers"] == ["FINANCE_MANAGER", "CFO"]


def test_request_id_is_echoed(client, acme):
    r = client.get("/health", headers={"X-Request-Id": "req-123"})
    assert r.json() == {"ok": True}
    assert r.headers["X-Request-Id"] == "req-123"


def test_standard_costs_create_and_list(client, acme, make_product):
    pid = make_product(acme)
    body = {
        "product_id": pid,
        "costing_method": "STANDARD",
        "material_cost": "110.00",
        "labor_cost": "55.00",
        "overhead_cost": "20.00",
        "effective_from": "2026-07-01T00:00:00",
    }

    forbidden = client.post("/acme/costing/standard-costs", json=body, headers=_auth(acme, "ACCOUNTANT"))
    assert forbidden.status_code == 403

    created = client.post("/acme/costing/standard-costs", json=body, headers=_auth(acme, "MANAGER"))
    assert created.status_code == 201
    assert created.json()["total_cost"] == "185.0000"
    assert created.json()["is_active"] is True

    active = client.get("/acme/costing/standard-costs", params={"active": "true"}, headers=_auth(acme, "VIEWER"))
    assert [sc["id"] for sc in active.json()] == [created.json()["id"]]
    history = client.get("/acme/costing/standard-costs", params={"product_id": pid}, headers=_auth(acme, "VIEWER"))
    assert len(history.json()) == 2


def test_oversized_mass_update_delta_is_a_validation_error(client, acme, make_product):
    make_product(acme)
    r = client.post(
        "/acme/costing/standard-costs/mass-update",
        json={"adjustment": {"type": "AMOUNT", "material_adjustment": "1e25", "reason": "x"}},
        headers=_auth(acme, "MANAGER"),
    )
    assert r.status_code == 400
    assert r.json()["error"] == "ValidationError"


def test_mixed_offset_date_range_is_accepted(client, acme, make_product):
    make_product(acme)
    r = client.post(
        "/acme/costing/standard-costs/mass-update",
        json={
            "filter": {"effective_date_range": {"from": "2026-01-01T00:00:00", "to": "2026-12-31T00:00:00Z"}},
            "adjustment": {"type": "AMOUNT", "labor_adjustment": "1", "reason": "x"},
        },
        headers=_auth(acme, "MANAGER"),
    )
    assert r.status_code == 200
    assert r.json()["updated_count"] == 1
