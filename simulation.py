#!/usr/bin/env python3
"""Phasion Escrow — End-to-End Simulation.

Drives the escrow engine against the simulated ledger and an in-memory
SQLite database, with a customer wallet, a designer wallet and the
platform vault:

    Scenario A: Payment confirmation
        - Customer orders a 10.00 TOKEN gown and signs the deposit
        - The vault balance grows by exactly 10.00 -> PAID

    Scenario B: Shipping without a tracking number
        - Designer marks the paid order shipped with no tracking number
        - Rejected, the order stays PAID

    Scenario C: Delivery and release
        - Designer ships with tracking and photos, customer confirms delivery
        - DELIVERED -> RELEASED, designer paid and notified

    Scenario D: Dispute refunded
        - Customer disputes a shipped order, admin rules for the customer
        - Refund paid from the vault -> REFUNDED, dispute RESOLVED

    Scenario E: Vault shortfall
        - The vault is drained before a release
        - InsufficientFundsError, order stays DELIVERED, no release_tx_ref

Usage:
    uv run python simulation.py
    uv run python simulation.py --scenario C
"""

from __future__ import annotations

import argparse
import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING, Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from phasion_escrow.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

from phasion_escrow.domain.enums import (  # noqa: E402
    AssetClass,
    DisputeDecision,
    DisputeReason,
    ProfileRole,
)
from phasion_escrow.domain.exceptions import EscrowError, InsufficientFundsError  # noqa: E402
from phasion_escrow.infrastructure.database.engine import (  # noqa: E402
    build_engine,
    build_session_factory,
    create_schema,
)
from phasion_escrow.infrastructure.database.orm_models import Profile  # noqa: E402
from phasion_escrow.infrastructure.database.repositories import (  # noqa: E402
    NotificationRepository,
)
from phasion_escrow.infrastructure.ledger.simulated import (  # noqa: E402
    SimulatedLedgerClient,
    SimulatedSigner,
)
from phasion_escrow.services.custodial import CustodialSigner  # noqa: E402
from phasion_escrow.services.dispute_service import DisputeService  # noqa: E402
from phasion_escrow.services.funds_service import FundsService  # noqa: E402
from phasion_escrow.services.order_service import OrderService  # noqa: E402
from phasion_escrow.services.reconciliation_service import (  # noqa: E402
    PaymentReconciliationService,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from phasion_escrow.infrastructure.database.orm_models import EscrowOrder

CUSTOMER_WALLET = "Cust0mer111111111111111111111111111111111111"
DESIGNER_WALLET = "Des1gner111111111111111111111111111111111111"
SETTLE_DELAY = 0.2


class Marketplace:
    """One simulated marketplace: database, ledger, vault and three profiles."""

    def __init__(self) -> None:
        self.engine = build_engine("sqlite+aiosqlite:///:memory:")
        self.session_factory: async_sessionmaker[AsyncSession] = build_session_factory(self.engine)
        self.ledger = SimulatedLedgerClient()
        self.customer_wallet = SimulatedSigner(CUSTOMER_WALLET)
        self.custodial = CustodialSigner(SimulatedSigner(self.ledger.custodial_address))
        self.customer: Profile | None = None
        self.designer: Profile | None = None
        self.admin: Profile | None = None

    async def start(self) -> None:
        await create_schema(self.engine)
        self.ledger.credit(CUSTOMER_WALLET, Decimal("250"), AssetClass.TOKEN)
        self.ledger.credit(CUSTOMER_WALLET, Decimal("5"), AssetClass.NATIVE)
        async with self.session_factory() as session:
            self.customer = Profile(
                display_name="Ada Customer",
                role=ProfileRole.CUSTOMER.value,
                wallet_address=CUSTOMER_WALLET,
            )
            self.designer = Profile(
                display_name="Studio Noir",
                role=ProfileRole.DESIGNER.value,
                wallet_address=DESIGNER_WALLET,
            )
            self.admin = Profile(display_name="Ops Admin", role=ProfileRole.ADMIN.value)
            session.add_all([self.customer, self.designer, self.admin])
            await session.commit()
        logger.info("simulation.marketplace_ready", vault=self.ledger.custodial_address)

    async def stop(self) -> None:
        await self.engine.dispose()

    def funds(self, session: AsyncSession) -> FundsService:
        return FundsService(session, self.ledger, self.custodial, confirmation_timeout=2.0)

    def orders(self, session: AsyncSession) -> OrderService:
        return OrderService(session, funds=self.funds(session))

    def disputes(self, session: AsyncSession) -> DisputeService:
        return DisputeService(session, funds=self.funds(session))

    async def place_order(self, session: AsyncSession, amount: Decimal) -> EscrowOrder:
        order = await OrderService(session).create_order(
            customer_id=self.customer.id,
            designer_id=self.designer.id,
            item_id="gown-042",
            amount=amount,
            currency=AssetClass.TOKEN,
            delivery_address="12 Rue des Fleurs, Lyon",
            special_instructions="Hem to 92 cm",
        )
        await session.commit()
        print(f"  🧾 Order {order.id} created for {amount} TOKEN")
        return order

    async def pay(self, session: AsyncSession, order: EscrowOrder) -> EscrowOrder:
        """Customer signs the prepared deposit; it lands while the engine waits to settle."""
        prepared = await PaymentReconciliationService(session, self.ledger).prepare_deposit(order.id)
        signed = await self.customer_wallet.sign(prepared)
        print(f"  ✍️  Customer signed deposit ({len(prepared.instructions)} instructions)")

        async def wallet_submits_during_settle(delay: float) -> None:
            await self.ledger.submit_signed(signed)
            await asyncio.sleep(delay)

        reconciler = PaymentReconciliationService(
            session,
            self.ledger,
            settle_delay_seconds=SETTLE_DELAY,
            sleep=wallet_submits_during_settle,
        )
        order = await reconciler.confirm_payment(order.id, signed.signature)
        await session.commit()
        return order

    async def ship(self, session: AsyncSession, order: EscrowOrder) -> EscrowOrder:
        order = await OrderService(session).mark_shipped(
            order.id,
            tracking_number="1Z999AA10123456784",
            shipment_proofs=["proofs/gown-042/front.jpg", "proofs/gown-042/label.jpg"],
            shipping_notes="Garment bag, do not fold",
            actor_id=self.designer.id,
        )
        await session.commit()
        return order


# ---------------------------------------------------------------------------
# Print helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    """Print a prominent banner."""
    width = 70
    print("\n" + "=" * width)
    print(f"  {text}")
    print("=" * width + "\n")


def section(text: str) -> None:
    """Print a section header."""
    print(f"\n--- {text} ---\n")


def print_order(order: EscrowOrder) -> None:
    """Pretty-print the money-relevant fields of an order."""
    print(f"  Status: {order.status}")
    print(f"  Quoted: {order.amount} {order.currency}")
    if order.actual_amount_received is not None:
        print(f"  Received: {order.actual_amount_received}")
    if order.release_tx_ref:
        print(f"  Release TX: {order.release_tx_ref[:20]}...")
    if order.refund_tx_ref:
        print(f"  Refund TX: {order.refund_tx_ref[:20]}...")


async def print_balances(market: Marketplace) -> None:
    ledger = market.ledger
    print("  💰 Balances (TOKEN):")
    print(f"    customer: {await ledger.get_balance(CUSTOMER_WALLET, AssetClass.TOKEN)}")
    print(f"    designer: {await ledger.get_balance(DESIGNER_WALLET, AssetClass.TOKEN)}")
    print(f"    vault:    {await ledger.get_custodial_balance(AssetClass.TOKEN)}")


async def print_audit_trail(session: Any, order_id: Any) -> None:
    """Print the full audit trail for an order."""
    events = await OrderService(session).get_events(order_id)
    print("\n  📜 Audit Trail:")
    for i, evt in enumerate(events, 1):
        old = evt.old_status or "—"
        print(f"    {i}. [{evt.event_type}] {old} → {evt.new_status} (by {evt.actor})")
    print()


async def print_notifications(session: Any, profile: Profile) -> None:
    notes = await NotificationRepository(session).list_for_user(profile.id)
    print(f"  🔔 {profile.display_name}: {len(notes)} notification(s)")
    for note in notes:
        print(f"    - [{note.kind}] {note.title}")


# ===========================================================================
# Scenario A: Payment confirmation
# ===========================================================================
async def scenario_a_payment(market: Marketplace) -> None:
    banner("SCENARIO A: Payment Confirmation")

    async with market.session_factory() as session:
        section("Step 1: Customer places order")
        order = await market.place_order(session, Decimal("10.00"))

        section("Step 2: Customer signs deposit, engine reconciles the vault delta")
        order = await market.pay(session, order)
        print_order(order)
        await print_balances(market)
        await print_notifications(session, market.designer)
        await print_audit_trail(session, order.id)


# ===========================================================================
# Scenario B: Shipping without a tracking number
# ===========================================================================
async def scenario_b_missing_tracking(market: Marketplace) -> None:
    banner("SCENARIO B: Shipping Without a Tracking Number")

    async with market.session_factory() as session:
        order = await market.place_order(session, Decimal("10.00"))
        order = await market.pay(session, order)

        section("Designer marks shipped with no tracking number")
        try:
            await OrderService(session).mark_shipped(
                order.id,
                tracking_number=None,
                shipment_proofs=["proofs/gown-042/front.jpg"],
                actor_id=market.designer.id,
            )
        except EscrowError as exc:
            await session.rollback()
            print(f"  ❌ Rejected: [{exc.code}] {exc.message}")

        order = await OrderService(session).get_order(order.id)
        print_order(order)


# ===========================================================================
# Scenario C: Delivery and release
# ===========================================================================
async def scenario_c_delivery(market: Marketplace) -> None:
    banner("SCENARIO C: Delivery Confirmed, Funds Released")

    async with market.session_factory() as session:
        order = await market.place_order(session, Decimal("10.00"))
        order = await market.pay(session, order)

        section("Step 1: Designer ships with tracking and photos")
        order = await market.ship(session, order)
        print_order(order)

        section("Step 2: Customer confirms delivery")
        order = await market.orders(session).confirm_delivery(order.id, actor_id=market.customer.id)
        print_order(order)
        await print_balances(market)
        await print_notifications(session, market.designer)
        await print_notifications(session, market.admin)
        await print_audit_trail(session, order.id)


# ===========================================================================
# Scenario D: Dispute refunded
# ===========================================================================
async def scenario_d_dispute(market: Marketplace) -> None:
    banner("SCENARIO D: Dispute Resolved in the Customer's Favour")

    async with market.session_factory() as session:
        order = await market.place_order(session, Decimal("10.00"))
        order = await market.pay(session, order)
        order = await market.ship(session, order)

        section("Step 1: Customer opens a dispute")
        disputes = market.disputes(session)
        dispute = await disputes.create_dispute(
            order.id,
            market.customer.id,
            DisputeReason.DAMAGED_ITEM,
            "Left sleeve arrived torn along the seam",
        )
        await session.commit()
        print(f"  ⚖️  Dispute {dispute.id} opened ({dispute.reason})")
        await print_notifications(session, market.admin)

        section("Step 2: Admin rules for the customer")
        dispute = await disputes.resolve_dispute(
            dispute.id,
            DisputeDecision.FAVOR_CUSTOMER,
            notes="Photos confirm the damage",
            admin_id=market.admin.id,
        )
        print(f"  Dispute: {dispute.status} ({dispute.decision})")
        order = await OrderService(session).get_order(order.id)
        print_order(order)
        await print_balances(market)
        await print_audit_trail(session, order.id)


# ===========================================================================
# Scenario E: Vault shortfall
# ===========================================================================
async def scenario_e_vault_shortfall(market: Marketplace) -> None:
    banner("SCENARIO E: Release Blocked by a Vault Shortfall")

    async with market.session_factory() as session:
        order = await market.place_order(session, Decimal("10.00"))
        order = await market.pay(session, order)
        order = await market.ship(session, order)

        section("Vault drained before the release")
        market.ledger.set_balance(market.ledger.custodial_address, Decimal("2"), AssetClass.TOKEN)
        try:
            await market.orders(session).confirm_delivery(order.id, actor_id=market.customer.id)
        except InsufficientFundsError as exc:
            print(f"  ❌ Release failed: [{exc.code}] {exc.message}")

        order = await OrderService(session).get_order(order.id)
        print_order(order)
        print(f"  release_tx_ref: {order.release_tx_ref}")


# ===========================================================================
# Main
# ===========================================================================
SCENARIOS = {
    "A": scenario_a_payment,
    "B": scenario_b_missing_tracking,
    "C": scenario_c_delivery,
    "D": scenario_d_dispute,
    "E": scenario_e_vault_shortfall,
}


async def run(names: list[str]) -> None:
    """Run the named scenarios, each against a fresh marketplace."""
    print("\n" + "🧵" * 35)
    print("  PHASION ESCROW — SIMULATION")
    print("  Database: SQLite (in-memory)   Ledger: simulated")
    print("🧵" * 35 + "\n")

    for name in names:
        market = Marketplace()
        await market.start()
        try:
            await SCENARIOS[name](market)
        finally:
            await market.stop()

    print("\n" + "=" * 70)
    print("  ✅ SCENARIOS COMPLETED")
    print("=" * 70 + "\n")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Phasion Escrow Simulation")
    parser.add_argument(
        "--scenario",
        type=str.upper,
        choices=sorted(SCENARIOS),
        default=None,
        help="Run a specific scenario (A-E). Default: run all.",
    )
    args = parser.parse_args()

    asyncio.run(run([args.scenario] if args.scenario else sorted(SCENARIOS)))
