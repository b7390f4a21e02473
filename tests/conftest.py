"""Shared test fixtures for the Phasion escrow test suite.

Provides:
    - A fresh in-memory SQLite database per test (aiosqlite, shared connection)
    - Seeded customer / designer / admin profiles with wallets
    - The simulated ledger and a custodial signer over its vault
    - Service fixtures and small async helpers that drive an order to a status
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from decimal import Decimal

import pytest
import pytest_asyncio

from phasion_escrow.domain.enums import AssetClass, ProfileRole
from phasion_escrow.infrastructure.database.engine import (
    build_engine,
    build_session_factory,
    create_schema,
)
from phasion_escrow.infrastructure.database.orm_models import Profile
from phasion_escrow.infrastructure.ledger.simulated import SimulatedLedgerClient, SimulatedSigner
from phasion_escrow.services.custodial import CustodialSigner
from phasion_escrow.services.dispute_service import DisputeService
from phasion_escrow.services.funds_service import FundsService
from phasion_escrow.services.order_service import OrderService
from phasion_escrow.services.reconciliation_service import PaymentReconciliationService

CUSTOMER_WALLET = "Cust0mer111111111111111111111111111111111111"
DESIGNER_WALLET = "Des1gner111111111111111111111111111111111111"


def new_tx_ref() -> str:
    return uuid.uuid4().hex + uuid.uuid4().hex


@dataclass
class Parties:
    customer: Profile
    designer: Profile
    admin: Profile


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def parties(session) -> Parties:
    customer = Profile(
        display_name="Ada Customer",
        role=ProfileRole.CUSTOMER.value,
        wallet_address=CUSTOMER_WALLET,
    )
    designer = Profile(
        display_name="Studio Noir",
        role=ProfileRole.DESIGNER.value,
        wallet_address=DESIGNER_WALLET,
    )
    admin = Profile(display_name="Ops Admin", role=ProfileRole.ADMIN.value)
    session.add_all([customer, designer, admin])
    await session.commit()
    return Parties(customer=customer, designer=designer, admin=admin)


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@pytest.fixture
def ledger() -> SimulatedLedgerClient:
    ledger = SimulatedLedgerClient()
    ledger.credit(CUSTOMER_WALLET, Decimal("500"), AssetClass.TOKEN)
    ledger.credit(CUSTOMER_WALLET, Decimal("20"), AssetClass.NATIVE)
    return ledger


@pytest.fixture
def vault_signer(ledger) -> SimulatedSigner:
    return SimulatedSigner(ledger.custodial_address)


@pytest.fixture
def custodial(vault_signer) -> CustodialSigner:
    return CustodialSigner(vault_signer, lock_timeout=5.0)


def settle_with(ledger: SimulatedLedgerClient, amount: Decimal | None, asset: AssetClass):
    """Settle-delay stand-in: the deposit lands in the vault while the engine waits."""

    async def _sleep(_delay: float) -> None:
        if amount:
            ledger.credit(ledger.custodial_address, amount, asset)

    return _sleep


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def funds_service(session, ledger, custodial) -> FundsService:
    return FundsService(session, ledger, custodial, confirmation_timeout=1.0)


@pytest.fixture
def order_service(session, funds_service) -> OrderService:
    return OrderService(session, funds=funds_service)


@pytest.fixture
def dispute_service(session, funds_service) -> DisputeService:
    return DisputeService(session, funds=funds_service)


@pytest.fixture
def make_reconciler(session, ledger):
    def _make(
        received: Decimal | None,
        asset: AssetClass = AssetClass.TOKEN,
        block_on_mismatch: bool = False,
    ) -> PaymentReconciliationService:
        return PaymentReconciliationService(
            session,
            ledger,
            settle_delay_seconds=3.0,
            block_on_mismatch=block_on_mismatch,
            sleep=settle_with(ledger, received, asset),
        )

    return _make


# ---------------------------------------------------------------------------
# Order helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def create_order(session, parties):
    async def _create(
        amount: Decimal = Decimal("10.00"),
        currency: AssetClass = AssetClass.TOKEN,
    ):
        order = await OrderService(session).create_order(
            customer_id=parties.customer.id,
            designer_id=parties.designer.id,
            item_id="gown-042",
            amount=amount,
            currency=currency,
            delivery_address="12 Rue des Fleurs, Lyon",
        )
        await session.commit()
        return order

    return _create


@pytest.fixture
def paid_order(session, create_order, make_reconciler):
    async def _paid(
        amount: Decimal = Decimal("10.00"),
        currency: AssetClass = AssetClass.TOKEN,
    ):
        order = await create_order(amount, currency)
        await make_reconciler(amount, currency).confirm_payment(order.id, new_tx_ref())
        await session.commit()
        return order

    return _paid


@pytest.fixture
def shipped_order(session, parties, paid_order):
    async def _shipped(
        amount: Decimal = Decimal("10.00"),
        currency: AssetClass = AssetClass.TOKEN,
    ):
        order = await paid_order(amount, currency)
        await OrderService(session).mark_shipped(
            order.id,
            tracking_number="1Z999AA10123456784",
            shipment_proofs=["proofs/gown-042/box.jpg"],
            actor_id=parties.designer.id,
        )
        await session.commit()
        return order

    return _shipped


@pytest.fixture
def delivered_order(session, parties, shipped_order):
    """An order confirmed delivered whose release has not run yet."""

    async def _delivered(
        amount: Decimal = Decimal("10.00"),
        currency: AssetClass = AssetClass.TOKEN,
    ):
        order = await shipped_order(amount, currency)
        await OrderService(session).confirm_delivery(order.id, actor_id=parties.customer.id)
        return order

    return _delivered
