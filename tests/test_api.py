"""HTTP API tests.

Uses the engine fixture wired with stubs and serves it through
httpx's ASGI transport.
"""

import base64
import json
from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from paylink_engine.api.app import create_app
from tests.conftest import NO_WALLET_OWNER_ID, OWNER_ID, OWNER_WALLET, PAYER_ADDRESS, START

OWNER = {"X-User-ID": OWNER_ID}


@pytest.fixture
async def client(paylink):
    app = create_app(paylink)
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


async def create_request(client, **overrides) -> dict:
    body = {"amount": "5", "currency": "USDC", "description": "Invoice 7"}
    body.update(overrides)
    response = await client.post("/api/v1/payment-requests", json=body, headers=OWNER)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["database"] == "healthy"
        assert data["scheduler_running"] is False

    async def test_ready_and_live(self, client):
        assert (await client.get("/ready")).json() == {"status": "ready"}
        assert (await client.get("/live")).json() == {"status": "alive"}


class TestPaymentRequestEndpoints:
    async def test_create_and_get(self, client):
        created = await create_request(client)

        assert created["status"] == "processing"
        assert created["payment_link"].endswith(f"/pay/{created['payment_request_id']}")

        response = await client.get(
            f"/api/v1/payment-requests/{created['payment_request_id']}", headers=OWNER
        )
        assert response.status_code == 200
        assert Decimal(response.json()["amount"]) == Decimal("5")

    async def test_create_scheduled(self, client):
        created = await create_request(
            client,
            schedule_kind="scheduled",
            scheduled_for=(START + timedelta(days=1)).isoformat(),
        )
        assert created["status"] == "scheduled"

    async def test_user_header_required(self, client):
        response = await client.post("/api/v1/payment-requests", json={"amount": "5"})
        assert response.status_code == 400

    async def test_invalid_amount(self, client):
        response = await client.post(
            "/api/v1/payment-requests", json={"amount": "-1"}, headers=OWNER
        )
        assert response.status_code == 422

    async def test_scheduled_without_time(self, client):
        response = await client.post(
            "/api/v1/payment-requests",
            json={"amount": "5", "schedule_kind": "scheduled"},
            headers=OWNER,
        )
        assert response.status_code == 400

    async def test_owner_without_wallet(self, client):
        response = await client.post(
            "/api/v1/payment-requests",
            json={"amount": "5"},
            headers={"X-User-ID": NO_WALLET_OWNER_ID},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "NO_WALLET"

    async def test_other_users_request_is_hidden(self, client):
        created = await create_request(client)
        response = await client.get(
            f"/api/v1/payment-requests/{created['payment_request_id']}",
            headers={"X-User-ID": NO_WALLET_OWNER_ID},
        )
        assert response.status_code == 404

    async def test_unknown_request(self, client):
        response = await client.get("/api/v1/payment-requests/missing", headers=OWNER)
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_list_and_stats(self, client):
        await create_request(client)
        await create_request(client, amount="7")

        listed = await client.get(
            "/api/v1/payment-requests", params={"status": "processing"}, headers=OWNER
        )
        assert listed.json()["total"] == 2

        stats = (await client.get("/api/v1/payment-requests/stats", headers=OWNER)).json()
        assert stats["total"] == 2
        assert stats["by_status"]["processing"]["count"] == 2
        assert Decimal(stats["by_status"]["processing"]["total_amount"]) == Decimal("12")

    async def test_cancel(self, client):
        created = await create_request(client)
        response = await client.post(
            f"/api/v1/payment-requests/{created['payment_request_id']}/cancel", headers=OWNER
        )
        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

        link = await client.get(f"/pay/{created['payment_request_id']}")
        assert link.status_code == 404

    async def test_cancel_paid_conflicts(self, client):
        created = await create_request(client)
        paid = await client.get(
            f"/pay/{created['payment_request_id']}", headers={"X-PAYMENT": "proof"}
        )
        assert paid.status_code == 200

        response = await client.post(
            f"/api/v1/payment-requests/{created['payment_request_id']}/cancel", headers=OWNER
        )
        assert response.status_code == 409
        assert response.json()["code"] == "ALREADY_PAID"


class TestPayEndpoint:
    """The public x402 payment link."""

    async def test_unknown_link(self, client):
        response = await client.get("/pay/nope")
        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    async def test_payment_required(self, client):
        created = await create_request(client)

        response = await client.get(f"/pay/{created['payment_request_id']}")

        assert response.status_code == 402
        data = response.json()
        assert data["x402Version"] == 1
        (accept,) = data["accepts"]
        assert accept["payTo"] == OWNER_WALLET
        assert accept["maxAmountRequired"] == "5000000"
        assert accept["resource"].endswith(f"/pay/{created['payment_request_id']}")

    async def test_settles_with_proof(self, client):
        created = await create_request(client)

        response = await client.post(
            f"/pay/{created['payment_request_id']}", headers={"X-PAYMENT": "proof"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "payment_received"
        assert data["payer"] == PAYER_ADDRESS
        header = json.loads(base64.b64decode(response.headers["X-PAYMENT-RESPONSE"]))
        assert header["transaction"] == data["proof_ref"]

        again = await client.post(
            f"/pay/{created['payment_request_id']}", headers={"X-PAYMENT": "proof"}
        )
        assert again.status_code == 404

    async def test_rejected_proof(self, client, verifier):
        created = await create_request(client)
        verifier.simulate_rejection("bad", "invalid_signature")

        response = await client.get(
            f"/pay/{created['payment_request_id']}", headers={"X-PAYMENT": "bad"}
        )

        assert response.status_code == 402
        assert response.json()["error"] == "invalid_signature"

    async def test_strict_timeout(self, client, paylink, verifier):
        paylink.gateway.optimistic_settle_on_timeout = False
        verifier.delay_seconds = 2
        created = await create_request(client)

        response = await client.get(
            f"/pay/{created['payment_request_id']}", headers={"X-PAYMENT": "slow"}
        )

        assert response.status_code == 504
        assert response.json()["code"] == "VERIFICATION_TIMEOUT"


class TestOutgoingAndLedger:
    async def test_schedule_and_run(self, client, paylink):
        response = await client.post(
            "/api/v1/outgoing-payments",
            json={"amount": "2", "recipient_address": "0xFriend"},
            headers=OWNER,
        )
        assert response.status_code == 201
        assert response.json()["status"] == "scheduled"

        await paylink.scheduler.run_outgoing_cycle()

        listed = (await client.get("/api/v1/outgoing-payments", headers=OWNER)).json()
        assert listed["items"][0]["status"] == "completed"

        ledger = (await client.get("/api/v1/ledger", headers=OWNER)).json()
        assert [e["direction"] for e in ledger["items"]] == ["outgoing"]
        assert Decimal(ledger["totals"]["outgoing"]) == Decimal("2")

    async def test_scheduler_stats(self, client):
        response = await client.get("/api/v1/scheduler/stats")
        assert response.status_code == 200
        assert response.json()["is_running"] is False
