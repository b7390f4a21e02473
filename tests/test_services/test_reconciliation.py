"""Tests for PaymentReconciliationService: deposit verification by balance diff."""

from __future__ import annotations

from decimal import Decimal

import pytest

from phasion_escrow.domain.enums import AssetClass, EventType, NotificationKind, OrderStatus
from phasion_escrow.domain.exceptions import (
    AmountMismatchError,
    DuplicateOperationError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    LedgerTransientError,
)
from phasion_escrow.domain.ledger_protocol import CreateAssociatedAccount, Transfer
from phasion_escrow.infrastructure.database.repositories import (
    EventRepository,
    NotificationRepository,
    OrderRepository,
)
from phasion_escrow.services.order_service import OrderService
from tests.conftest import CUSTOMER_WALLET, new_tx_ref


class TestConfirmPayment:
    @pytest.mark.asyncio
    async def test_exact_deposit_marks_paid(self, session, create_order, make_reconciler) -> None:
        order = await create_order(Decimal("10.00"))
        tx_ref = new_tx_ref()

        result = await make_reconciler(Decimal("10.00")).confirm_payment(order.id, tx_ref)

        assert result.status == OrderStatus.PAID
        assert result.actual_amount_received == Decimal("10.00")
        assert result.deposit_tx_ref == tx_ref
        assert result.vault_balance_before == Decimal("0")
        assert result.vault_balance_after == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_within_tolerance_uses_measured_amount(
        self, create_order, make_reconciler
    ) -> None:
        order = await create_order(Decimal("100"))

        result = await make_reconciler(Decimal("99.4")).confirm_payment(order.id, new_tx_ref())

        assert result.status == OrderStatus.PAID
        assert result.actual_amount_received == Decimal("99.4")

    @pytest.mark.asyncio
    async def test_short_deposit_proceeds_with_warning(self, create_order, make_reconciler) -> None:
        order = await create_order(Decimal("100"))

        result = await make_reconciler(Decimal("50")).confirm_payment(order.id, new_tx_ref())

        assert result.status == OrderStatus.PAID
        assert result.actual_amount_received == Decimal("50")

    @pytest.mark.asyncio
    async def test_short_deposit_blocked_when_configured(
        self, session, create_order, make_reconciler
    ) -> None:
        order = await create_order(Decimal("100"))
        reconciler = make_reconciler(Decimal("50"), block_on_mismatch=True)

        with pytest.raises(AmountMismatchError):
            await reconciler.confirm_payment(order.id, new_tx_ref())

        fresh = await OrderRepository(session).get_by_id(order.id, fresh=True)
        assert fresh.status == OrderStatus.PENDING
        assert fresh.actual_amount_received is None

    @pytest.mark.asyncio
    async def test_no_delta_falls_back_to_quote(self, session, create_order, make_reconciler) -> None:
        order = await create_order(Decimal("25"))

        result = await make_reconciler(None).confirm_payment(order.id, new_tx_ref())

        assert result.status == OrderStatus.PAID
        assert result.actual_amount_received == Decimal("25")
        events = await EventRepository(session).get_by_order(order.id)
        paid = [e for e in events if e.event_type == EventType.PAYMENT_CONFIRMED]
        assert paid[0].metadata_json["degraded"] is True

    @pytest.mark.asyncio
    async def test_native_asset(self, create_order, make_reconciler) -> None:
        order = await create_order(Decimal("1.5"), AssetClass.NATIVE)

        result = await make_reconciler(Decimal("1.5"), AssetClass.NATIVE).confirm_payment(
            order.id, new_tx_ref()
        )

        assert result.actual_amount_received == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_designer_notified(self, session, parties, create_order, make_reconciler) -> None:
        order = await create_order()

        await make_reconciler(Decimal("10.00")).confirm_payment(order.id, new_tx_ref())

        kinds = {n.kind for n in await NotificationRepository(session).list_for_user(parties.designer.id)}
        assert kinds == {
            NotificationKind.DESIGNER_NEW_ORDER.value,
            NotificationKind.DESIGNER_PAYMENT_CONFIRMED.value,
        }


class TestConfirmPaymentIdempotency:
    @pytest.mark.asyncio
    async def test_same_ref_twice_is_a_no_op(
        self, session, parties, create_order, make_reconciler
    ) -> None:
        order = await create_order()
        tx_ref = new_tx_ref()
        await make_reconciler(Decimal("10.00")).confirm_payment(order.id, tx_ref)
        await session.commit()

        again = await make_reconciler(Decimal("10.00")).confirm_payment(order.id, tx_ref)

        assert again.status == OrderStatus.PAID
        assert again.actual_amount_received == Decimal("10.00")
        notes = await NotificationRepository(session).list_for_user(parties.designer.id)
        assert len(notes) == 2
        events = await EventRepository(session).get_by_order(order.id)
        assert sum(e.event_type == EventType.PAYMENT_CONFIRMED for e in events) == 1

    @pytest.mark.asyncio
    async def test_ref_reused_on_another_order(self, session, create_order, make_reconciler) -> None:
        first = await create_order()
        second = await create_order()
        tx_ref = new_tx_ref()
        await make_reconciler(Decimal("10.00")).confirm_payment(first.id, tx_ref)
        await session.commit()

        with pytest.raises(DuplicateOperationError):
            await make_reconciler(Decimal("10.00")).confirm_payment(second.id, tx_ref)

    @pytest.mark.asyncio
    async def test_different_ref_on_paid_order_rejected(
        self, session, create_order, make_reconciler
    ) -> None:
        order = await create_order()
        await make_reconciler(Decimal("10.00")).confirm_payment(order.id, new_tx_ref())
        await session.commit()

        with pytest.raises(InvalidStateTransitionError):
            await make_reconciler(Decimal("10.00")).confirm_payment(order.id, new_tx_ref())

    @pytest.mark.asyncio
    async def test_cancelled_order_cannot_be_paid(
        self, session, parties, create_order, make_reconciler
    ) -> None:
        order = await create_order()
        await OrderService(session).cancel_payment(order.id, actor_id=parties.customer.id)
        await session.commit()

        with pytest.raises(InvalidStateTransitionError):
            await make_reconciler(Decimal("10.00")).confirm_payment(order.id, new_tx_ref())


class TestLedgerFailures:
    @pytest.mark.asyncio
    async def test_balance_read_failure_leaves_order_pending(
        self, session, ledger, create_order, make_reconciler
    ) -> None:
        order = await create_order()
        ledger.fail_next_reads(1)

        with pytest.raises(LedgerTransientError):
            await make_reconciler(Decimal("10.00")).confirm_payment(order.id, new_tx_ref())

        fresh = await OrderRepository(session).get_by_id(order.id, fresh=True)
        assert fresh.status == OrderStatus.PENDING


class TestPrepareDeposit:
    @pytest.mark.asyncio
    async def test_builds_transfer_to_vault(self, ledger, create_order, make_reconciler) -> None:
        order = await create_order(Decimal("12.5"))

        unsigned = await make_reconciler(None).prepare_deposit(order.id)

        assert unsigned.fee_payer == CUSTOMER_WALLET
        assert unsigned.amount == Decimal("12.5")
        assert unsigned.amount_units == 12_500_000
        # The vault has never held the token, so its account is created first
        assert isinstance(unsigned.instructions[0], CreateAssociatedAccount)
        transfer = unsigned.instructions[-1]
        assert isinstance(transfer, Transfer)
        assert transfer.destination == ledger.custodial_address

    @pytest.mark.asyncio
    async def test_customer_short_of_funds(self, ledger, create_order, make_reconciler) -> None:
        order = await create_order(Decimal("10"))
        ledger.set_balance(CUSTOMER_WALLET, Decimal("3"), AssetClass.TOKEN)

        with pytest.raises(InsufficientFundsError):
            await make_reconciler(None).prepare_deposit(order.id)

    @pytest.mark.asyncio
    async def test_signed_deposit_reconciles(
        self, session, ledger, create_order
    ) -> None:
        """Customer signs the prepared transfer; it lands during the settle delay."""
        from phasion_escrow.infrastructure.ledger.simulated import SimulatedSigner
        from phasion_escrow.services.reconciliation_service import PaymentReconciliationService

        order = await create_order(Decimal("10.00"))
        setup = PaymentReconciliationService(session, ledger)
        signed = await SimulatedSigner(CUSTOMER_WALLET).sign(await setup.prepare_deposit(order.id))

        async def land_deposit(_delay: float) -> None:
            await ledger.submit_signed(signed)

        reconciler = PaymentReconciliationService(session, ledger, sleep=land_deposit)
        result = await reconciler.confirm_payment(order.id, signed.signature)

        assert result.status == OrderStatus.PAID
        assert result.actual_amount_received == Decimal("10.00")
        assert await ledger.get_balance(CUSTOMER_WALLET, AssetClass.TOKEN) == Decimal("490")
