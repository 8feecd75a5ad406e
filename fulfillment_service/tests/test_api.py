from __future__ import annotations

from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient

from fulfillment_service.app.main import create_app
from fulfillment_service.app.services.catalog_service import (
    CatalogService,
    get_catalog_service,
)
from fulfillment_service.app.services.checkout_service import (
    CheckoutService,
    get_checkout_service,
)
from fulfillment_service.app.services.coupon_policy_service import (
    get_coupon_policy_service,
)
from fulfillment_service.app.services.credential_pool_service import (
    get_credential_pool_service,
)
from fulfillment_service.app.services.loyalty_service import (
    LoyaltyService,
    get_loyalty_service,
)
from fulfillment_service.app.services.order_service import get_order_service
from fulfillment_service.tests.fakes import (
    BASE_TIME,
    EngineFixture,
    build_coupon,
    build_engine,
    build_plan,
)


@dataclass
class ApiFixture:
    client: TestClient
    engine: EngineFixture


@pytest.fixture
def api() -> ApiFixture:
    engine = build_engine()
    loyalty = LoyaltyService(engine.order_repo, "Europe/Istanbul", clock=lambda: BASE_TIME)
    checkout = CheckoutService(
        plan_repo=engine.plan_repo,
        order_repo=engine.order_repo,
        coupon_policy=engine.coupon_policy,
        loyalty=loyalty,
    )
    catalog = CatalogService(
        plan_repo=engine.plan_repo,
        coupon_repo=engine.coupon_repo,
        credential_repo=engine.credential_repo,
    )

    app = create_app(enable_scheduler=False)
    app.dependency_overrides[get_coupon_policy_service] = lambda: engine.coupon_policy
    app.dependency_overrides[get_order_service] = lambda: engine.order_service
    app.dependency_overrides[get_credential_pool_service] = lambda: engine.pool
    app.dependency_overrides[get_checkout_service] = lambda: checkout
    app.dependency_overrides[get_catalog_service] = lambda: catalog
    app.dependency_overrides[get_loyalty_service] = lambda: loyalty

    return ApiFixture(client=TestClient(app), engine=engine)


def _create_order(api: ApiFixture, plan_id: str, quantity: int = 1, **extra) -> dict:
    response = api.client.post(
        "/api/v1/orders",
        json={
            "user_id": "user-1",
            "ship_id": "ship-1",
            "items": [{"plan_id": plan_id, "quantity": quantity}],
            **extra,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()


def test_health(api: ApiFixture) -> None:
    response = api.client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_validate_coupon_endpoint(api: ApiFixture) -> None:
    api.engine.coupon_repo.insert(build_coupon("SAVE10"))

    ok = api.client.post(
        "/api/v1/coupons/validate",
        json={
            "code": "save10",
            "ship_id": "ship-1",
            "subtotal": "100",
            "plan_ids": ["p"],
            "user_id": "user-1",
        },
    )
    missing = api.client.post(
        "/api/v1/coupons/validate",
        json={"code": "NOPE", "ship_id": "ship-1", "subtotal": "100", "user_id": "u"},
    )

    assert ok.status_code == 200
    assert ok.json()["valid"] is True
    assert ok.json()["discount_amount"] == "10.00"
    assert missing.status_code == 200
    assert missing.json() == {
        "valid": False,
        "coupon": None,
        "discount_amount": None,
        "reason_code": "not_found",
    }


def test_checkout_and_complete_flow(api: ApiFixture) -> None:
    plan = api.engine.plan_repo.insert(build_plan(price_usd="50.00"))
    api.client.post(
        "/api/v1/admin/credentials/import",
        json={"plan_id": plan.id, "text": "alice,pw1\nbob,pw2\n"},
    )

    order = _create_order(api, plan.id, quantity=2)
    assert order["status"] == "pending"
    assert order["total_usd"] == "100.00"

    response = api.client.post(
        f"/api/v1/orders/{order['id']}/complete", json={"payment_reference": "pay-1"}
    )

    assert response.status_code == 200, response.text
    body = response.json()
    assert body["status"] == "fulfilled"
    assert sorted(c["username"] for c in body["credentials"]) == ["alice", "bob"]

    fetched = api.client.get(f"/api/v1/orders/{order['id']}").json()
    assert len(fetched["credentials"]) == 2

    stats = api.client.get(
        "/api/v1/admin/credentials/stats", params={"plan_id": plan.id}
    ).json()
    assert stats == {"plan_id": plan.id, "total": 2, "available": 0, "assigned": 2}


def test_complete_out_of_stock_returns_conflict(api: ApiFixture) -> None:
    plan = api.engine.plan_repo.insert(build_plan())
    order = _create_order(api, plan.id)

    response = api.client.post(
        f"/api/v1/orders/{order['id']}/complete", json={"payment_reference": "pay-1"}
    )

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "out_of_stock"
    assert response.json()["detail"]["plan_id"] == plan.id


def test_rejected_coupon_on_create_is_bad_request(api: ApiFixture) -> None:
    plan = api.engine.plan_repo.insert(build_plan())

    response = api.client.post(
        "/api/v1/orders",
        json={
            "user_id": "user-1",
            "ship_id": "ship-1",
            "items": [{"plan_id": plan.id}],
            "coupon_code": "NOPE",
        },
    )

    assert response.status_code == 400
    assert response.json()["code"] == "not_found"


def test_import_reports_line_errors(api: ApiFixture) -> None:
    plan = api.engine.plan_repo.insert(build_plan())

    response = api.client.post(
        "/api/v1/admin/credentials/import",
        json={"plan_id": plan.id, "text": "a,1\nbroken\nc,3"},
    )

    assert response.status_code == 200
    assert response.json()["success"] == 2
    assert response.json()["errors"][0].startswith("line 2: ")


def test_import_into_unknown_plan_is_not_found(api: ApiFixture) -> None:
    response = api.client.post(
        "/api/v1/admin/credentials/import", json={"plan_id": "nope", "text": "a,b"}
    )
    assert response.status_code == 404


def test_unassign_and_delete(api: ApiFixture) -> None:
    credential = api.engine.credential_repo.add("plan-a", "alice")
    api.engine.pool.claim_one("plan-a", "order-1", "user-1")

    in_use = api.client.delete(f"/api/v1/admin/credentials/{credential.id}")
    unassigned = api.client.post(f"/api/v1/admin/credentials/{credential.id}/unassign")
    deleted = api.client.delete(f"/api/v1/admin/credentials/{credential.id}")

    assert in_use.status_code == 409
    assert unassigned.json() == {"ok": True}
    assert deleted.status_code == 204


def test_ship_plans_report_stock(api: ApiFixture) -> None:
    stocked = api.engine.plan_repo.insert(build_plan(name="stocked"))
    api.engine.plan_repo.insert(build_plan(name="empty"))
    api.engine.plan_repo.insert(build_plan(name="other ship", ship_id="ship-2"))
    api.engine.credential_repo.add(stocked.id, "alice")

    response = api.client.get("/api/v1/user/ship-plans", params={"ship_id": "ship-1"})

    plans = {p["name"]: p for p in response.json()}
    assert set(plans) == {"stocked", "empty"}
    assert plans["stocked"]["available_count"] == 1
    assert plans["stocked"]["in_stock"] is True
    assert plans["empty"]["in_stock"] is False


def test_refund_of_pending_order_is_conflict(api: ApiFixture) -> None:
    plan = api.engine.plan_repo.insert(build_plan())
    order = _create_order(api, plan.id)

    response = api.client.post(f"/api/v1/orders/{order['id']}/refund")

    assert response.status_code == 409
    assert response.json()["code"] == "invalid_transition"


def test_loyalty_endpoint(api: ApiFixture) -> None:
    response = api.client.get("/api/v1/users/user-1/loyalty")

    assert response.status_code == 200
    body = response.json()
    assert body["current_gb"] == 0
    assert body["next_tier"]["needed_gb"] == 25


def test_admin_can_seed_plans_and_coupons(api: ApiFixture) -> None:
    plan = api.client.post(
        "/api/v1/admin/plans",
        json={"ship_id": "ship-1", "name": "5GB", "data_limit_gb": 5, "price_usd": "19.5"},
    )
    coupon = api.client.post(
        "/api/v1/admin/coupons",
        json={"code": "Welcome", "discount_type": "fixed", "discount_value": "5"},
    )
    duplicate = api.client.post(
        "/api/v1/admin/coupons",
        json={"code": "WELCOME", "discount_type": "percentage", "discount_value": "5"},
    )

    assert plan.status_code == 201
    assert plan.json()["price_usd"] == "19.50"
    assert coupon.status_code == 201
    assert duplicate.status_code == 409


def test_unassign_takes_credential_off_the_order(api: ApiFixture) -> None:
    plan = api.engine.plan_repo.insert(build_plan())
    api.engine.credential_repo.add(plan.id, "alice")
    order = _create_order(api, plan.id)
    completed = api.client.post(
        f"/api/v1/orders/{order['id']}/complete", json={"payment_reference": "pay-1"}
    ).json()
    credential_id = completed["credentials"][0]["id"]

    api.client.post(f"/api/v1/admin/credentials/{credential_id}/unassign")
    fetched = api.client.get(f"/api/v1/orders/{order['id']}").json()

    assert fetched["credentials"] == []
    assert fetched["needs_reconciliation"] is True


def test_duplicate_completion_in_flight_is_conflict(api: ApiFixture) -> None:
    plan = api.engine.plan_repo.insert(build_plan())
    api.engine.credential_repo.add(plan.id, "alice")
    order = _create_order(api, plan.id)
    paid = api.engine.order_service.mark_paid(order["id"], "pay-1")
    api.engine.order_repo.orders[order["id"]] = paid.model_copy(
        update={"fulfillment_token": "busy", "fulfillment_started_at": BASE_TIME}
    )

    response = api.client.post(
        f"/api/v1/orders/{order['id']}/complete", json={"payment_reference": "pay-1"}
    )

    assert response.status_code == 409
    assert response.json()["code"] == "fulfillment_in_progress"


def test_expire_lapsed_endpoint_runs_the_sweep(api: ApiFixture) -> None:
    plan = api.engine.plan_repo.insert(build_plan())
    api.engine.credential_repo.add(plan.id, "alice")
    order = _create_order(api, plan.id)
    api.client.post(
        f"/api/v1/orders/{order['id']}/complete", json={"payment_reference": "pay-1"}
    )

    response = api.client.post("/api/v1/admin/orders/expire-lapsed")

    # 2024-03-10 기준으로는 아직 월말 전이다.
    assert response.status_code == 200
    assert response.json() == {"expired_order_ids": []}
