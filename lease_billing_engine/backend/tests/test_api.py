from __future__ import annotations

from datetime import date

import pytest
from fastapi.testclient import TestClient

from app.main import create_app


@pytest.fixture
def client():
    return TestClient(create_app())


def _h(org_id: int) -> dict:
    return {"X-Org-Id": str(org_id), "X-Actor": "ops@example.com"}


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["ok"] is True


def test_org_header_required(client, build):
    lease = build.lease(build.org().id)
    assert client.get(f"/api/leases/{lease.id}").status_code == 401
    assert client.get(f"/api/leases/{lease.id}", headers={"X-Org-Id": "abc"}).status_code == 400
    assert client.get(f"/api/leases/{lease.id}", headers=_h(424242)).status_code == 404


def test_lease_in_other_org_is_404(client, build):
    org_a, org_b = build.org(), build.org()
    lease = build.lease(org_a.id)
    r = client.get(f"/api/leases/{lease.id}", headers=_h(org_b.id))
    assert r.status_code == 404
    assert r.json()["detail"]["code"] == "lease_not_found"


def test_activate_over_http(client, build):
    org = build.org()
    lease = build.lease(org.id)

    r = client.post(f"/api/leases/{lease.id}/activate", json={"expected_version": 1}, headers=_h(org.id))
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["status"] == "active"
    assert body["version"] == 2
    assert body["activated_at"] is not None

    r = client.post(f"/api/leases/{lease.id}/activate", json={}, headers=_h(org.id))
    assert r.status_code == 409
    assert r.json()["detail"] == {
        "kind": "state",
        "code": "invalid_lease_state",
        "message": r.json()["detail"]["message"],
        "retryable": False,
    }


def test_activation_errors_map_to_status(client, build):
    org = build.org()
    bad_day = build.lease(org.id, rent_due_day=31)
    r = client.post(f"/api/leases/{bad_day.id}/activate", json={}, headers=_h(org.id))
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "invalid_rent_due_day"

    stale = build.lease(org.id)
    r = client.post(f"/api/leases/{stale.id}/activate", json={"expected_version": 5}, headers=_h(org.id))
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "concurrency_conflict"
    assert r.json()["detail"]["retryable"] is True


def test_invoice_flow(client, build):
    org = build.org()
    lease = build.lease(org.id, status="active", start=date(2026, 4, 21), rent="15000")

    r = client.post(
        f"/api/leases/{lease.id}/invoices",
        json={"period_start": "2026-04-01", "period_end": "2026-04-30"},
        headers=_h(org.id),
    )
    assert r.status_code == 200, r.text
    inv = r.json()
    assert inv["status"] == "draft"
    assert inv["invoice_number"] == "INV-202604-000001"
    assert inv["total_amount"] == "5000.00"
    assert len(inv["lines"]) == 1

    r = client.post(f"/api/invoices/{inv['id']}/issue", json={"expected_version": inv["version"]}, headers=_h(org.id))
    assert r.status_code == 200
    assert r.json()["status"] == "issued"

    r = client.post(
        f"/api/leases/{lease.id}/invoices",
        json={"period_start": "2026-04-01", "period_end": "2026-04-30"},
        headers=_h(org.id),
    )
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "duplicate_invoice"

    r = client.post(
        f"/api/invoices/{inv['id']}/credit-notes",
        json={"reason": "refund", "lines": [{"invoice_line_id": inv["lines"][0]["id"], "amount": "100"}]},
        headers=_h(org.id),
    )
    assert r.status_code == 200, r.text
    assert r.json()["total_amount"] == "-100.00"

    r = client.post(f"/api/invoices/{inv['id']}/void", json={"reason": "moved out early"}, headers=_h(org.id))
    assert r.status_code == 200
    assert r.json()["status"] == "void"


def test_request_validation(client, build):
    org = build.org()
    lease = build.lease(org.id, status="active")
    r = client.post(
        f"/api/leases/{lease.id}/invoices",
        json={"period_start": "2026-04-30", "period_end": "2026-04-01"},
        headers=_h(org.id),
    )
    assert r.status_code == 422


def test_invoice_run_over_http(client, build):
    org = build.org()
    for _ in range(3):
        build.lease(org.id, status="active")
    build.lease(org.id, status="active", with_terms=False)

    r = client.post("/api/invoice-runs", json={"period_start": "2026-03-01", "period_end": "2026-03-31"}, headers=_h(org.id))
    assert r.status_code == 200, r.text
    run = r.json()
    assert run["status"] == "completed"
    assert (run["total_leases"], run["success_count"], run["failure_count"]) == (4, 3, 1)
    assert "no_term_found" in run["error_message"]

    r = client.get(f"/api/invoice-runs/{run['id']}", headers=_h(org.id))
    assert r.status_code == 200
    items = r.json()["items"]
    assert len(items) == 4
    assert sum(1 for i in items if i["is_success"]) == 3

    assert client.get(f"/api/invoice-runs/{run['id']}", headers=_h(build.org().id)).status_code == 404


def test_statement_and_terms_endpoints(client, build):
    org = build.org()
    lease = build.lease(org.id, status="active")
    plan = build.electricity_plan(org.id)

    r = client.post(
        f"/api/leases/{lease.id}/utility-statements",
        json={
            "utility_type": "electricity",
            "period_start": "2026-03-01",
            "period_end": "2026-03-31",
            "rate_plan_id": plan.id,
            "previous_reading": "10",
            "current_reading": "160",
        },
        headers=_h(org.id),
    )
    assert r.status_code == 200, r.text
    sid = r.json()["id"]
    assert r.json()["is_final"] is False

    r = client.post(f"/api/leases/utility-statements/{sid}/finalize", headers=_h(org.id))
    assert r.status_code == 200
    assert r.json()["is_final"] is True

    r = client.post(
        f"/api/leases/{lease.id}/terms",
        json={"effective_from": "2026-07-01", "monthly_rent": "1100"},
        headers=_h(org.id),
    )
    assert r.status_code == 200, r.text
    r = client.post(
        f"/api/leases/{lease.id}/terms",
        json={"effective_from": "2026-07-01", "monthly_rent": "1200"},
        headers=_h(org.id),
    )
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "overlapping_terms"

    terms = client.get(f"/api/leases/{lease.id}/terms", headers=_h(org.id)).json()
    assert [t["effective_from"] for t in terms] == ["2026-01-01", "2026-07-01"]


def test_recurring_charge_and_payment_endpoints(client, build):
    org = build.org()
    lease = build.lease(org.id, status="active", rent="1000")

    r = client.post(
        f"/api/leases/{lease.id}/recurring-charges",
        json={"charge_code": "PARK", "description": "Parking", "amount": "300", "start_date": "2026-04-11"},
        headers=_h(org.id),
    )
    assert r.status_code == 200, r.text
    charge = r.json()
    assert charge["frequency"] == "monthly"
    assert charge["is_active"] is True
    assert [c["id"] for c in client.get(f"/api/leases/{lease.id}/recurring-charges", headers=_h(org.id)).json()] == [
        charge["id"]
    ]

    inv = client.post(
        f"/api/leases/{lease.id}/invoices",
        json={"period_start": "2026-04-01", "period_end": "2026-04-30"},
        headers=_h(org.id),
    ).json()
    assert [(l["source"], l["amount"]) for l in inv["lines"]] == [("rent", "1000.00"), ("recurring_charge", "200.00")]
    client.post(f"/api/invoices/{inv['id']}/issue", json={}, headers=_h(org.id))

    r = client.post(f"/api/invoices/{inv['id']}/payments", json={"amount": "2000"}, headers=_h(org.id))
    assert r.status_code == 422
    assert r.json()["detail"]["code"] == "payment_exceeds_balance"

    r = client.post(
        f"/api/invoices/{inv['id']}/payments",
        json={"amount": "1200", "payment_mode": "upi", "transaction_reference": "UPI-77"},
        headers=_h(org.id),
    )
    assert r.status_code == 200, r.text
    assert r.json()["received_by"] == "ops@example.com"
    assert client.get(f"/api/invoices/{inv['id']}", headers=_h(org.id)).json()["status"] == "paid"
    assert len(client.get(f"/api/invoices/{inv['id']}/payments", headers=_h(org.id)).json()) == 1

    r = client.post(f"/api/leases/recurring-charges/{charge['id']}/deactivate", headers=_h(org.id))
    assert r.status_code == 200
    assert r.json()["is_active"] is False
