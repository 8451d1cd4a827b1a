import orjson
import pytest

from app.core.exceptions import StoreUnavailableError
from app.core.security import sign_payload
from app.models.credit_balance import Currency

pytestmark = pytest.mark.asyncio

OWNER = "owner-1"


async def test_requires_session(client):
    r = await client.get("/v1/credits/balance")
    assert r.status_code == 401
    body = r.json()
    assert body["error"]["code"] == "NOT_AUTHENTICATED"
    assert body["request_id"]


async def test_tampered_session_rejected(client):
    r = await client.get("/v1/credits/balance", headers={"Cookie": "advisorpro_session=forged"})
    assert r.status_code == 401


async def test_open_account_and_balance(client, login):
    headers = login(OWNER)
    r = await client.post("/v1/credits/account", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"credits": 0, "health_score_credits": 5}

    r = await client.get("/v1/credits/balance", headers=headers)
    assert r.json() == {"credits": 0, "health_score_credits": 5}

    r = await client.get("/v1/credits/transactions", headers=headers, params={"currency": "health_score"})
    page = r.json()
    assert len(page["items"]) == 1
    assert page["items"][0]["feature_type"] == "signup_bonus"
    assert page["has_more"] is False


async def test_pricing_is_public(client):
    r = await client.get("/v1/credits/pricing")
    assert r.status_code == 200
    assert r.json()["packages"]["PYBLC1"]["credits"] == 8


async def test_package_without_credits_returns_402(client, login):
    r = await client.post(
        "/v1/features/packages",
        headers=login(OWNER),
        json={"report_id": "report-1", "package_code": "PYBLC1"},
    )
    assert r.status_code == 402
    error = r.json()["error"]
    assert error["code"] == "INSUFFICIENT_BALANCE"
    assert error["details"]["shortfall"] == 8


async def test_purchase_then_package_then_worker(client, services, login, worker_headers):
    headers = login(OWNER)
    body = orjson.dumps({"type": "credit_purchase", "data": {"owner_id": OWNER, "reference": "cs_42", "credits": 20}})
    r = await client.post(
        "/v1/billing/webhook",
        content=body,
        headers={"X-Billing-Signature": sign_payload(body, services.billing.webhook_secret)},
    )
    assert r.json()["status"] == "ok"

    r = await client.post(
        "/v1/features/packages",
        headers={**headers, "Idempotency-Key": "click-1"},
        json={"report_id": "report-1", "package_code": "USICD2"},
    )
    assert r.status_code == 200
    out = r.json()
    assert out["new_balance"] == 14
    entry_id = out["entry"]["id"]

    r = await client.get("/v1/queue/active", headers=headers)
    entries = r.json()["entries"]
    assert [e["id"] for e in entries] == [entry_id]
    assert 0 < entries[0]["remaining_seconds"] <= 600

    r = await client.post(f"/v1/internal/queue/{entry_id}/status", json={"status": "processing"})
    assert r.status_code == 403

    r = await client.post(f"/v1/internal/queue/{entry_id}/status", json={"status": "processing"}, headers=worker_headers)
    assert r.json()["status"] == "processing"
    r = await client.post(f"/v1/internal/queue/{entry_id}/status", json={"status": "queued"}, headers=worker_headers)
    assert r.status_code == 409
    assert r.json()["error"]["code"] == "INVALID_TRANSITION"
    r = await client.post(f"/v1/internal/queue/{entry_id}/status", json={"status": "completed"}, headers=worker_headers)
    assert r.json()["status"] == "completed"

    r = await client.get("/v1/queue/active", headers=headers)
    assert r.json()["entries"] == []
    r = await client.delete("/v1/queue/reports/report-1/completed", headers=headers)
    assert r.json() == {"deleted": 1}
    r = await client.delete("/v1/queue/reports/report-1/completed", headers=headers)
    assert r.json() == {"deleted": 0}


async def test_queue_entry_of_other_owner_is_hidden(client, services, login):
    entry = await services.queue.enqueue("owner-2", "report-1", "Pkg")
    r = await client.get(f"/v1/queue/{entry.id}", headers=login(OWNER))
    assert r.status_code == 404


async def test_bad_webhook_signature(client):
    r = await client.post("/v1/billing/webhook", content=b"{}", headers={"X-Billing-Signature": "nope"})
    assert r.status_code == 400


async def test_notifications_flow(client, services, login):
    headers = login(OWNER)
    first = await services.notifications.notify_welcome(OWNER)
    await services.notifications.notify_credits_added(OWNER, 10)

    r = await client.get("/v1/notifications/unread-count", headers=headers)
    assert r.json() == {"unread": 2}

    r = await client.post(f"/v1/notifications/{first.id}/read", headers=headers)
    assert r.json()["read"] is True
    r = await client.get("/v1/notifications/unread-count", headers=headers)
    assert r.json() == {"unread": 1}

    r = await client.post("/v1/notifications/read-all", headers=headers)
    assert r.json() == {"updated": 1}

    r = await client.get("/v1/notifications", headers=headers)
    assert [n["title"] for n in r.json()["notifications"]] == ["Credit Purchase Confirmed", "Welcome to Prosper With Purpose"]

    r = await client.delete(f"/v1/notifications/{first.id}", headers=headers)
    assert r.status_code == 200
    r = await client.delete(f"/v1/notifications/{first.id}", headers=headers)
    assert r.status_code == 404

    r = await client.delete("/v1/notifications", headers=headers)
    assert r.json() == {"deleted": 1}


async def test_notifications_are_owner_scoped(client, services, login):
    row = await services.notifications.notify_welcome("owner-2")
    r = await client.post(f"/v1/notifications/{row.id}/read", headers=login(OWNER))
    assert r.status_code == 404


async def test_admin_adjusts_credits(client, services, login):
    r = await client.post(
        "/v1/admin/credits/owner-9",
        headers=login(OWNER),
        json={"action": "add", "amount": 10},
    )
    assert r.status_code == 403

    admin = login("admin-1", role="admin")
    r = await client.post("/v1/admin/credits/owner-9", headers=admin, json={"action": "add", "amount": 10})
    assert r.json() == {"balance": 10}
    r = await client.post("/v1/admin/credits/owner-9", headers=admin, json={"action": "remove", "amount": 15})
    assert r.status_code == 402
    r = await client.post(
        "/v1/admin/credits/owner-9",
        headers=admin,
        json={"action": "remove", "amount": 4, "reason": "Correction"},
    )
    assert r.json() == {"balance": 6}

    r = await client.get("/v1/admin/credits/owner-9", headers=admin)
    out = r.json()
    assert out["balance"]["credits"] == 6
    assert [t["description"] for t in out["transactions"]][0] == "Correction"
    assert await services.ledger.get_balance("owner-9", Currency.GENERAL) == 6


async def test_validation_error_shape(client, login):
    r = await client.post("/v1/features/packages", headers=login(OWNER), json={"report_id": ""})
    assert r.status_code == 422
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"


async def test_worker_status_survives_notification_failure(client, services, worker_headers, monkeypatch):
    entry = await services.queue.enqueue(OWNER, "report-1", "Pkg")

    async def unavailable(*args, **kwargs):
        raise StoreUnavailableError()

    monkeypatch.setattr(services.notifications, "notify_analysis_complete", unavailable)
    monkeypatch.setattr(services.notifications, "notify_system_error", unavailable)

    r = await client.post(f"/v1/internal/queue/{entry.id}/status", json={"status": "processing"}, headers=worker_headers)
    assert r.status_code == 200
    r = await client.post(f"/v1/internal/queue/{entry.id}/status", json={"status": "completed"}, headers=worker_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "completed"
    assert (await services.queue.get_entry(entry.id)).status == "completed"

    other = await services.queue.enqueue(OWNER, "report-2", "Pkg")
    r = await client.post(f"/v1/internal/queue/{other.id}/status", json={"status": "failed"}, headers=worker_headers)
    assert r.status_code == 200
    assert r.json()["status"] == "failed"
