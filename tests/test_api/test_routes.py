"""End-to-end tests through the REST API (httpx ASGITransport, no lifespan)."""

from __future__ import annotations

import uuid
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio
from fastapi import Depends

from phasion_escrow.api.deps import get_db_session, get_reconciliation_service
from phasion_escrow.domain.enums import AssetClass
from phasion_escrow.infrastructure.ledger import LedgerContext
from phasion_escrow.main import create_app
from phasion_escrow.services.reconciliation_service import PaymentReconciliationService
from tests.conftest import CUSTOMER_WALLET, DESIGNER_WALLET, new_tx_ref, settle_with

CUSTOMER_ID = uuid.uuid4()
DESIGNER_ID = uuid.uuid4()
ADMIN_ID = uuid.uuid4()


@pytest_asyncio.fixture
async def client(monkeypatch, session_factory, ledger, vault_signer, custodial):
    app = create_app()
    app.state.ledger = LedgerContext(client=ledger, custodial_signer=vault_signer, simulated=True)
    app.state.custodial = custodial

    async def override_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    def override_reconciler(session=Depends(get_db_session)) -> PaymentReconciliationService:
        # Every confirmed deposit in these tests is exactly 10.00 TOKEN
        return PaymentReconciliationService(
            session, ledger, sleep=settle_with(ledger, Decimal("10.00"), AssetClass.TOKEN)
        )

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_reconciliation_service] = override_reconciler
    monkeypatch.setattr(
        "phasion_escrow.api.routes.health.get_session_factory", lambda: session_factory
    )

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        for profile_id, name, role, wallet in (
            (CUSTOMER_ID, "Ada Customer", "customer", CUSTOMER_WALLET),
            (DESIGNER_ID, "Studio Noir", "designer", DESIGNER_WALLET),
            (ADMIN_ID, "Ops Admin", "admin", None),
        ):
            resp = await client.put(
                f"/api/v1/profiles/{profile_id}",
                json={"display_name": name, "role": role, "wallet_address": wallet},
            )
            assert resp.status_code == 200
        yield client


async def _create_order(client: httpx.AsyncClient) -> str:
    resp = await client.post(
        "/api/v1/orders",
        json={
            "customer_id": str(CUSTOMER_ID),
            "designer_id": str(DESIGNER_ID),
            "item_id": "gown-042",
            "amount": "10.00",
            "currency": "TOKEN",
            "delivery_address": "12 Rue des Fleurs, Lyon",
        },
    )
    assert resp.status_code == 201
    return resp.json()["id"]


async def _pay_and_ship(client: httpx.AsyncClient, order_id: str) -> None:
    resp = await client.post(
        f"/api/v1/orders/{order_id}/confirm-payment", json={"tx_ref": new_tx_ref()}
    )
    assert resp.status_code == 200
    resp = await client.post(
        f"/api/v1/orders/{order_id}/status",
        json={
            "status": "shipped",
            "extra": {"tracking_number": "TRK-1", "shipment_proofs": ["proofs/box.jpg"]},
            "actor_id": str(DESIGNER_ID),
        },
    )
    assert resp.status_code == 200


class TestOrderLifecycleApi:
    @pytest.mark.asyncio
    async def test_happy_path(self, client, ledger) -> None:
        order_id = await _create_order(client)

        resp = await client.post(
            f"/api/v1/orders/{order_id}/confirm-payment", json={"tx_ref": new_tx_ref()}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "paid"
        assert Decimal(body["actual_amount_received"]) == Decimal("10.00")

        resp = await client.post(
            f"/api/v1/orders/{order_id}/status",
            json={"status": "shipped", "extra": {}, "actor_id": str(DESIGNER_ID)},
        )
        assert resp.status_code == 422
        assert resp.json()["error"] == "SHIPMENT_PROOF_REQUIRED"

        resp = await client.post(
            f"/api/v1/orders/{order_id}/status",
            json={
                "status": "shipped",
                "extra": {"tracking_number": "TRK-1", "shipment_proofs": ["proofs/box.jpg"]},
                "actor_id": str(DESIGNER_ID),
            },
        )
        assert resp.json()["status"] == "shipped"

        resp = await client.post(
            f"/api/v1/orders/{order_id}/status",
            json={"status": "delivered", "actor_id": str(CUSTOMER_ID)},
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "released"
        assert resp.json()["release_tx_ref"]
        assert await ledger.get_balance(DESIGNER_WALLET, AssetClass.TOKEN) == Decimal("10.00")

        events = (await client.get(f"/api/v1/orders/{order_id}/events")).json()
        assert [e["event_type"] for e in events][-1] == "FUNDS_RELEASED"

        notes = (await client.get(f"/api/v1/notifications/{DESIGNER_ID}")).json()
        assert notes["unread"] == 3

    @pytest.mark.asyncio
    async def test_deposit_instructions(self, client, ledger) -> None:
        order_id = await _create_order(client)

        resp = await client.post(f"/api/v1/orders/{order_id}/deposit")

        assert resp.status_code == 200
        body = resp.json()
        assert body["fee_payer"] == CUSTOMER_WALLET
        assert body["vault_address"] == ledger.custodial_address
        assert body["amount_units"] == 10_000_000
        assert [ix["kind"] for ix in body["instructions"]] == [
            "create_associated_account",
            "transfer",
        ]

    @pytest.mark.asyncio
    async def test_illegal_transition_is_409(self, client) -> None:
        order_id = await _create_order(client)

        resp = await client.post(f"/api/v1/orders/{order_id}/release", json={})

        assert resp.status_code == 409
        assert resp.json()["error"] == "INVALID_STATE_TRANSITION"

    @pytest.mark.asyncio
    async def test_custodial_shortfall_is_402(self, client, ledger) -> None:
        order_id = await _create_order(client)
        await _pay_and_ship(client, order_id)
        ledger.set_balance(ledger.custodial_address, Decimal("1"), AssetClass.TOKEN)

        resp = await client.post(
            f"/api/v1/orders/{order_id}/status",
            json={"status": "delivered", "actor_id": str(CUSTOMER_ID)},
        )

        assert resp.status_code == 402
        status = (await client.get(f"/api/v1/orders/{order_id}/status")).json()
        assert status["status"] == "delivered"
        assert "funds_released" in status["allowed_events"]

    @pytest.mark.asyncio
    async def test_cancel(self, client) -> None:
        order_id = await _create_order(client)

        resp = await client.post(
            f"/api/v1/orders/{order_id}/cancel", json={"actor_id": str(CUSTOMER_ID)}
        )

        assert resp.json()["status"] == "cancelled"

    @pytest.mark.asyncio
    async def test_unknown_order_is_404(self, client) -> None:
        resp = await client.get(f"/api/v1/orders/{uuid.uuid4()}")

        assert resp.status_code == 404
        assert resp.json()["error"] == "ORDER_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_list_requires_exactly_one_party(self, client) -> None:
        await _create_order(client)

        assert (await client.get("/api/v1/orders")).status_code == 422
        resp = await client.get("/api/v1/orders", params={"customer_id": str(CUSTOMER_ID)})
        assert len(resp.json()) == 1


class TestDisputeApi:
    @pytest.mark.asyncio
    async def test_dispute_refund(self, client, ledger) -> None:
        order_id = await _create_order(client)
        await _pay_and_ship(client, order_id)

        resp = await client.post(
            "/api/v1/disputes",
            json={
                "order_id": order_id,
                "customer_id": str(CUSTOMER_ID),
                "reason": "damaged_item",
                "description": "Sleeve arrived torn at the seam",
            },
        )
        assert resp.status_code == 201
        dispute_id = resp.json()["id"]

        queue = (await client.get("/api/v1/disputes", params={"status": "open"})).json()
        assert [d["id"] for d in queue] == [dispute_id]

        resp = await client.post(
            f"/api/v1/disputes/{dispute_id}/resolve",
            json={
                "decision": "favor_customer",
                "notes": "Photos confirm damage",
                "admin_id": str(ADMIN_ID),
            },
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "resolved"

        order = (await client.get(f"/api/v1/orders/{order_id}")).json()
        assert order["status"] == "refunded"
        assert await ledger.get_balance(CUSTOMER_WALLET, AssetClass.TOKEN) == Decimal("510")

    @pytest.mark.asyncio
    async def test_customer_cannot_refund_themselves(self, client, ledger) -> None:
        order_id = await _create_order(client)
        await _pay_and_ship(client, order_id)
        resp = await client.post(
            "/api/v1/disputes",
            json={
                "order_id": order_id,
                "customer_id": str(CUSTOMER_ID),
                "reason": "other",
                "description": "Want my money back",
            },
        )
        dispute_id = resp.json()["id"]

        resp = await client.post(
            f"/api/v1/orders/{order_id}/refund",
            json={"reason": "self-service", "actor_id": str(CUSTOMER_ID)},
        )
        assert resp.status_code == 403

        resp = await client.post(
            f"/api/v1/disputes/{dispute_id}/resolve",
            json={"decision": "favor_customer", "admin_id": str(CUSTOMER_ID)},
        )
        assert resp.status_code == 403

        order = (await client.get(f"/api/v1/orders/{order_id}")).json()
        assert order["status"] == "shipped"
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_second_dispute_is_409(self, client) -> None:
        order_id = await _create_order(client)
        await _pay_and_ship(client, order_id)
        payload = {
            "order_id": order_id,
            "customer_id": str(CUSTOMER_ID),
            "reason": "wrong_item",
            "description": "Received the wrong colourway",
        }

        assert (await client.post("/api/v1/disputes", json=payload)).status_code == 201
        resp = await client.post("/api/v1/disputes", json=payload)

        assert resp.status_code == 409
        assert resp.json()["error"] == "DISPUTE_ALREADY_OPEN"


class TestHealthApi:
    @pytest.mark.asyncio
    async def test_health(self, client) -> None:
        resp = await client.get("/health")

        body = resp.json()
        assert body["database"] == "healthy"
        assert body["ledger"] == "simulated"
        assert body["status"] == "ok"
