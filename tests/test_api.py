import json

import pytest
from httpx import AsyncClient, ASGITransport

from app.config import Settings
from app.main import create_app
from app.schemas.transaction import TransactionStatus
from app.services.container import build_services
from app.services.exceptions import ConfigurationError, ProviderError
from app.services.signature import compute_signature

from tests.conftest import FakeProvider, make_transaction

SECRET = "api-test-secret"


@pytest.fixture
def settings():
    return Settings(
        ENVIRONMENT="development",
        MERCADO_PAGO_WEBHOOK_SECRET=SECRET,
        POLL_INTERVAL_SECONDS=0.01,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def services(settings, session_factory, provider):
    return build_services(settings, session_factory=session_factory, provider=provider)


@pytest.fixture
async def client(services):
    app = create_app(services=services)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await services.poller.shutdown()


def signed(payment_id: str, request_id: str = "req-1", ts: str = "1704908010") -> dict:
    return {
        "x-signature": f"ts={ts},v1={compute_signature(SECRET, payment_id, request_id, ts)}",
        "x-request-id": request_id,
    }


@pytest.mark.anyio
async def test_root_endpoint(client):
    response = await client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["name"] == "PIX Transaction Reconciliation"
    assert "version" in data


@pytest.mark.anyio
async def test_health_endpoint(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.anyio
async def test_config_endpoint_hides_secrets(client):
    response = await client.get("/config")
    assert response.status_code == 200
    data = response.json()
    assert data["webhook_signature_enabled"] is True
    assert data["plans"]["monthly"]["price"] == "68.90"
    assert data["plans"]["yearly"]["vip_price"] == "758.55"
    assert SECRET not in response.text


@pytest.mark.anyio
async def test_create_preference(client, services):
    payload = {"planType": "monthly", "isVip": True, "userEmail": "cliente@example.com"}
    response = await client.post("/pix/create-preference", json=payload)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["amount"] == 7890
    assert data["qr_code"]
    assert data["transaction_id"].startswith("pix-monthly-vip-")

    stored = await services.store.get(data["transaction_id"])
    assert stored.status == TransactionStatus.PENDING


@pytest.mark.anyio
async def test_create_preference_validation(client):
    response = await client.post("/pix/create-preference", json={"isVip": False})
    assert response.status_code == 400
    assert response.json()["error"] == "missing_field"

    response = await client.post(
        "/pix/create-preference", json={"planType": "weekly", "userEmail": "a@example.com"}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_plan"

    response = await client.post(
        "/pix/create-preference",
        json={"planType": "monthly", "isVip": "sim", "userEmail": "a@example.com"},
    )
    assert response.status_code == 400
    assert response.json()["error"] == "invalid_field"


@pytest.mark.anyio
async def test_create_preference_provider_failure(client, provider):
    provider.fail_with = ProviderError("upstream down", status=502)
    response = await client.post(
        "/pix/create-preference", json={"planType": "yearly", "userEmail": "a@example.com"}
    )
    assert response.status_code == 500
    assert response.json()["error"] == "provider_error"


@pytest.mark.anyio
async def test_webhook_flow(client, services, provider):
    txn = await services.store.create(make_transaction())
    provider.add_payment("mp-1", "approved", external_reference=txn.id)
    body = json.dumps({"id": "evt-1", "type": "payment", "data": {"id": "mp-1"}})

    response = await client.post("/pix/webhook", content=body, headers=signed("mp-1"))
    assert response.status_code == 200
    assert response.json()["status"] == "paid"

    response = await client.get(f"/pix/status/{txn.id}")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "paid"
    assert data["amount"] == 6890
    assert data["plan_type"] == "monthly"
    assert data["is_vip"] is False


@pytest.mark.anyio
async def test_webhook_bad_signature(client, services, provider):
    txn = await services.store.create(make_transaction())
    provider.add_payment("mp-1", "approved", external_reference=txn.id)
    body = json.dumps({"id": "evt-1", "type": "payment", "data": {"id": "mp-1"}})

    response = await client.post("/pix/webhook", content=body, headers=signed("mp-2"))
    assert response.status_code == 401
    assert (await services.store.get(txn.id)).status == TransactionStatus.PENDING


@pytest.mark.anyio
async def test_webhook_method_not_allowed(client):
    response = await client.get("/pix/webhook")
    assert response.status_code == 405


@pytest.mark.anyio
async def test_notification_alias(client, services, provider):
    txn = await services.store.create(make_transaction())
    provider.add_payment("mp-5", "rejected", external_reference=txn.id)

    response = await client.post(
        "/pix/notifications/mercadopago",
        params={"topic": "payment", "id": "mp-5"},
        headers=signed("mp-5"),
    )
    assert response.status_code == 200
    assert (await services.store.get(txn.id)).status == TransactionStatus.FAILED


@pytest.mark.anyio
async def test_status_not_found(client):
    response = await client.get("/pix/status/pix-monthly-normal-missing")
    assert response.status_code == 404
    assert response.json()["error"] == "not_found"


@pytest.mark.anyio
async def test_status_refresh_queries_provider(client, services, provider):
    txn = await services.store.create(make_transaction())
    provider.add_payment("mp-1", "approved", external_reference=txn.id)

    assert (await client.get(f"/pix/status/{txn.id}")).json()["status"] == "pending"
    response = await client.get(f"/pix/status/{txn.id}", params={"refresh": "true"})
    assert response.json()["status"] == "paid"


@pytest.mark.anyio
async def test_status_stream_ends_with_final_status(client, services, provider):
    txn = await services.store.create(make_transaction())
    provider.add_payment("mp-1", "approved", external_reference=txn.id)

    response = await client.get(f"/pix/status/{txn.id}/stream")

    assert response.status_code == 200
    lines = [json.loads(line) for line in response.text.splitlines() if line]
    assert lines[-1]["event"] == "status_change"
    assert lines[-1]["status"] == "paid"
    assert services.poller.active_count == 0


@pytest.mark.anyio
async def test_transactions_endpoints(client, services, provider):
    txn = await services.store.create(make_transaction(user_email="vip@example.com"))
    await services.store.create(make_transaction("other", status=TransactionStatus.PAID))
    provider.add_payment("mp-1", "approved", external_reference=txn.id)
    await client.get(f"/pix/status/{txn.id}", params={"refresh": "true"})

    listed = (await client.get("/transactions", params={"user_email": "vip@example.com"})).json()
    assert [t["id"] for t in listed] == [txn.id]

    detail = await client.get(f"/transactions/{txn.id}")
    assert detail.json()["provider_payment_id"] == "mp-1"

    events = (await client.get(f"/transactions/{txn.id}/events")).json()
    assert events[0]["outcome"] == "applied"

    stats = (await client.get("/transactions/stats")).json()
    assert stats["paid"] == 2
    assert stats["total"] == 2

    assert (await client.get("/transactions/nope")).status_code == 404


@pytest.mark.anyio
async def test_check_expired_and_cleanup(client, services):
    # created in 2024, so long past both expiry and retention
    await services.store.create(make_transaction("stale"))

    response = await client.post("/transactions/check-expired")
    assert response.json()["expired"] == 1

    response = await client.post("/transactions/cleanup", json={"older_than_days": 30})
    assert response.json()["removed"] == 1
    assert (await client.get("/transactions")).json() == []


def test_production_requires_webhook_secret():
    with pytest.raises(ConfigurationError):
        build_services(
            Settings(ENVIRONMENT="production", MERCADO_PAGO_WEBHOOK_SECRET=""),
            provider=FakeProvider(),
        )
