"""
HTTP walk-through of one procurement cycle against the FastAPI app.

get_db is overridden with a session from the in-memory test engine; every
request commits or rolls back exactly as the production dependency does.
"""

from datetime import date

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from procurement.database import get_db
from procurement.main import app


@pytest_asyncio.fixture
async def client(session_factory):
    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _get_test_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health_check(client):
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["checks"]["db"] == "ok"


@pytest.mark.asyncio
async def test_requests_need_a_bearer_token(client):
    response = await client.get("/api/v1/purchase-requests")
    assert response.status_code in (401, 403)

    response = await client.get(
        "/api/v1/purchase-requests", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert response.status_code == 401
    assert response.json()["error"]["code"] == "AUTH_TOKEN_INVALID"


@pytest.mark.asyncio
async def test_full_procurement_cycle(client, headers_for, admin, encoder, bac, inspector, accountant):
    # PPMP
    response = await client.post(
        "/api/v1/plans",
        headers=headers_for(encoder),
        json={
            "fiscal_year": 2026,
            "title": "ICT equipment",
            "lines": [
                {
                    "name": "Laptop",
                    "unit": "unit",
                    "planned_quantity": 5,
                    "planned_unit_cost_cents": 4_500_000,
                }
            ],
        },
    )
    assert response.status_code == 201
    plan = response.json()
    plan_line = plan["lines"][0]
    assert plan["total_budget_cents"] == 22_500_000
    assert plan_line["remaining_quantity"] == 5

    # PR against the plan line
    response = await client.post(
        "/api/v1/purchase-requests",
        headers=headers_for(encoder),
        json={
            "purpose": "Replace field office laptops",
            "plan_id": plan["id"],
            "line_items": [{"plan_line_id": plan_line["id"], "quantity": 2}],
        },
    )
    assert response.status_code == 201
    pr = response.json()
    assert pr["status"] == "pending"
    assert pr["total_cents"] == 9_000_000
    assert pr["line_items"][0]["name"] == "Laptop"

    response = await client.get(f"/api/v1/plans/{plan['id']}", headers=headers_for(encoder))
    assert response.json()["lines"][0]["remaining_quantity"] == 3

    response = await client.post(
        f"/api/v1/purchase-requests/{pr['id']}/submit", headers=headers_for(encoder), json={}
    )
    assert response.json()["status"] == "for_approval"

    response = await client.post(
        f"/api/v1/purchase-requests/{pr['id']}/approve", headers=headers_for(encoder), json={}
    )
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"

    response = await client.post(
        f"/api/v1/purchase-requests/{pr['id']}/approve", headers=headers_for(bac), json={}
    )
    assert response.status_code == 200
    assert response.json()["status"] == "approved"

    # PO
    response = await client.post(
        "/api/v1/purchase-orders",
        headers=headers_for(bac),
        json={
            "pr_id": pr["id"],
            "line_item_ids": [pr["line_items"][0]["id"]],
            "supplier_name": "Metro Computer Center",
            "delivery_date": "2026-04-15",
        },
    )
    assert response.status_code == 201
    po = response.json()
    assert po["total_cents"] == 9_000_000
    assert po["delivery_status"] == "not_delivered"

    response = await client.get(f"/api/v1/purchase-requests/{pr['id']}", headers=headers_for(bac))
    assert response.json()["status"] == "awarded"

    response = await client.post(
        f"/api/v1/purchase-orders/{po['id']}/approve", headers=headers_for(bac), json={}
    )
    assert response.json()["status"] == "approved"

    # IAR
    response = await client.post(
        "/api/v1/inspection-reports",
        headers=headers_for(inspector),
        json={
            "po_id": po["id"],
            "items": [{"po_line_item_id": po["line_items"][0]["id"]}],
        },
    )
    assert response.status_code == 201
    report = response.json()
    assert report["overall_result"] == "accepted"
    assert report["items"][0]["accepted_quantity"] == 2

    response = await client.get(f"/api/v1/purchase-orders/{po['id']}", headers=headers_for(bac))
    assert response.json()["delivery_status"] == "fully_delivered"

    response = await client.get(
        "/api/v1/disbursement-vouchers/available-reports", headers=headers_for(accountant)
    )
    available = response.json()
    assert [r["id"] for r in available] == [report["id"]]
    assert available[0]["suggested_payee"] == "Metro Computer Center"
    assert available[0]["suggested_amount_cents"] == 9_000_000

    # DV
    response = await client.post(
        "/api/v1/disbursement-vouchers",
        headers=headers_for(accountant),
        json={"inspection_report_id": report["id"], "payment_method": "bank_transfer"},
    )
    assert response.status_code == 201
    dv = response.json()
    assert dv["status"] == "for_signature"
    assert dv["amount_cents"] == 9_000_000

    response = await client.post(
        "/api/v1/disbursement-vouchers",
        headers=headers_for(accountant),
        json={"inspection_report_id": report["id"]},
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "DUPLICATE_VOUCHER"

    response = await client.post(
        f"/api/v1/disbursement-vouchers/{dv['id']}/mark-paid",
        headers=headers_for(accountant),
        json={"payment_date": date.today().isoformat()},
    )
    assert response.status_code == 200
    paid = response.json()
    assert paid["status"] == "processed"
    assert paid["payment_date"] == date.today().isoformat()

    # Variance
    response = await client.get(
        f"/api/v1/plans/{plan['id']}/variance", headers=headers_for(admin)
    )
    assert response.status_code == 200
    row = response.json()["lines"][0]
    assert row["dv_actual_cents"] == 9_000_000
    assert row["execution_status"] == "completed"
    assert row["status"] == "Savings"


@pytest.mark.asyncio
async def test_error_envelopes(client, headers_for, encoder, bac):
    response = await client.post(
        "/api/v1/purchase-requests",
        headers=headers_for(encoder),
        json={"purpose": "Missing lines", "line_items": []},
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    response = await client.get(
        "/api/v1/purchase-orders/00000000-0000-0000-0000-000000000000",
        headers=headers_for(bac),
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"

    response = await client.post(
        "/api/v1/purchase-requests",
        headers=headers_for(encoder),
        json={
            "purpose": "Chairs",
            "line_items": [{"name": "Chair", "quantity": 2, "unit_cost_cents": 150_000}],
        },
    )
    pr = response.json()
    response = await client.post(
        "/api/v1/purchase-orders",
        headers=headers_for(bac),
        json={"pr_id": pr["id"], "line_item_ids": [], "supplier_name": "Acme"},
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "EMPTY_SELECTION"

    response = await client.post(
        "/api/v1/purchase-orders",
        headers=headers_for(bac),
        json={
            "pr_id": pr["id"],
            "line_item_ids": [pr["line_items"][0]["id"]],
            "supplier_name": "Acme",
        },
    )
    assert response.status_code == 409
    assert response.json()["error"]["code"] == "INVALID_STATUS_TRANSITION"


@pytest.mark.asyncio
async def test_plan_edit_over_http(client, headers_for, encoder, inspector):
    response = await client.post(
        "/api/v1/plans",
        headers=headers_for(encoder),
        json={
            "fiscal_year": 2026,
            "title": "Janitorial supplies",
            "lines": [
                {"name": "Mop", "planned_quantity": 4, "planned_unit_cost_cents": 35_000},
                {"name": "Bucket", "planned_quantity": 4, "planned_unit_cost_cents": 20_000},
            ],
        },
    )
    plan = response.json()
    mop = plan["lines"][0]

    response = await client.put(
        f"/api/v1/plans/{plan['id']}",
        headers=headers_for(encoder),
        json={
            "title": "Janitorial supplies, revised",
            "lines": [
                {"id": mop["id"], "name": "Mop", "planned_quantity": 6, "planned_unit_cost_cents": 35_000}
            ],
        },
    )
    assert response.status_code == 200
    updated = response.json()
    assert updated["title"] == "Janitorial supplies, revised"
    assert [line["name"] for line in updated["lines"]] == ["Mop"]
    assert updated["lines"][0]["remaining_quantity"] == 6
    assert updated["total_budget_cents"] == 210_000

    response = await client.put(
        f"/api/v1/plans/{plan['id']}", headers=headers_for(inspector), json={"title": "x"}
    )
    assert response.status_code == 403

    response = await client.put(
        f"/api/v1/plans/{plan['id']}", headers=headers_for(encoder), json={"lines": []}
    )
    assert response.status_code == 422
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_list_endpoints_report_totals(client, headers_for, encoder):
    for purpose in ("Chairs", "Tables", "Fans"):
        await client.post(
            "/api/v1/purchase-requests",
            headers=headers_for(encoder),
            json={
                "purpose": purpose,
                "line_items": [{"name": purpose, "quantity": 1, "unit_cost_cents": 100_000}],
            },
        )

    response = await client.get(
        "/api/v1/purchase-requests", headers=headers_for(encoder), params={"page": 2, "limit": 2}
    )
    assert response.status_code == 200
    body = response.json()
    assert len(body["data"]) == 1
    assert body["pagination"]["total"] == 3
    assert body["pagination"]["page"] == 2
