"""Tests for FundsService: custodial releases, refunds and payout recovery."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from phasion_escrow.domain.enums import AssetClass, EventType, LedgerErrorKind, OrderStatus
from phasion_escrow.domain.exceptions import (
    ConfirmationTimeoutError,
    DisputeOpenError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    LedgerTransientError,
    NotOrderPartyError,
    PayoutUnrecordedError,
    StaleOrderStateError,
    UserRejectedError,
)
from phasion_escrow.domain.ledger_protocol import CreateAssociatedAccount
from phasion_escrow.infrastructure.database.repositories import EventRepository, OrderRepository
from phasion_escrow.services.custodial import CustodialSigner
from phasion_escrow.services.funds_service import FundsService
from tests.conftest import CUSTOMER_WALLET, DESIGNER_WALLET


async def _events(session, order_id) -> list[str]:
    return [e.event_type for e in await EventRepository(session).get_by_order(order_id)]


class TestReleaseFunds:
    @pytest.mark.asyncio
    async def test_release_pays_measured_amount(
        self, session, ledger, funds_service, create_order, make_reconciler, parties
    ) -> None:
        from phasion_escrow.services.order_service import OrderService
        from tests.conftest import new_tx_ref

        order = await create_order(Decimal("100"))
        await make_reconciler(Decimal("99.4")).confirm_payment(order.id, new_tx_ref())
        await session.commit()
        svc = OrderService(session)
        await svc.mark_shipped(
            order.id, "TRK-1", ["proofs/a.jpg"], actor_id=parties.designer.id
        )
        await svc.confirm_delivery(order.id, actor_id=parties.customer.id)

        await funds_service.release_funds(order.id)

        assert await ledger.get_balance(DESIGNER_WALLET, AssetClass.TOKEN) == Decimal("99.4")
        assert await ledger.get_custodial_balance(AssetClass.TOKEN) == Decimal("0")

    @pytest.mark.asyncio
    async def test_creates_designer_token_account(
        self, ledger, funds_service, delivered_order
    ) -> None:
        order = await delivered_order()
        assert not ledger.has_token_account(DESIGNER_WALLET)

        await funds_service.release_funds(order.id)

        assert ledger.has_token_account(DESIGNER_WALLET)
        payout = ledger.submitted[-1].unsigned
        assert isinstance(payout.instructions[0], CreateAssociatedAccount)
        assert payout.fee_payer == ledger.custodial_address

    @pytest.mark.asyncio
    async def test_native_release_needs_no_token_account(
        self, ledger, funds_service, delivered_order
    ) -> None:
        order = await delivered_order(Decimal("1.25"), AssetClass.NATIVE)

        await funds_service.release_funds(order.id)

        assert await ledger.get_balance(DESIGNER_WALLET, AssetClass.NATIVE) == Decimal("1.25")
        assert not ledger.submitted[-1].unsigned.creates_associated_account

    @pytest.mark.asyncio
    async def test_release_requires_delivery(self, session, ledger, funds_service, shipped_order) -> None:
        order = await shipped_order()

        with pytest.raises(InvalidStateTransitionError):
            await funds_service.release_funds(order.id)
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_second_release_is_rejected(
        self, ledger, funds_service, delivered_order
    ) -> None:
        order = await delivered_order()
        await funds_service.release_funds(order.id)

        with pytest.raises(InvalidStateTransitionError):
            await funds_service.release_funds(order.id)
        assert len(ledger.submitted) == 1


class TestCustodialShortfall:
    @pytest.mark.asyncio
    async def test_vault_short_leaves_order_untouched(
        self, session, ledger, funds_service, delivered_order
    ) -> None:
        order = await delivered_order(Decimal("10.00"))
        ledger.set_balance(ledger.custodial_address, Decimal("9.999999"), AssetClass.TOKEN)

        with pytest.raises(InsufficientFundsError) as exc_info:
            await funds_service.release_funds(order.id)

        assert exc_info.value.custodial is True
        fresh = await OrderRepository(session).get_by_id(order.id, fresh=True)
        assert fresh.status == OrderStatus.DELIVERED
        assert fresh.release_tx_ref is None
        assert ledger.submitted == []
        assert EventType.PAYOUT_SUBMITTED not in await _events(session, order.id)


class TestSubmissionFailures:
    @pytest.mark.asyncio
    async def test_network_error_then_retry(
        self, session, ledger, funds_service, delivered_order
    ) -> None:
        order = await delivered_order()
        ledger.fail_next_submit(LedgerErrorKind.NETWORK)

        with pytest.raises(LedgerTransientError):
            await funds_service.release_funds(order.id)
        fresh = await OrderRepository(session).get_by_id(order.id, fresh=True)
        assert fresh.status == OrderStatus.DELIVERED

        tx_ref = await funds_service.release_funds(order.id)
        assert tx_ref == ledger.submitted[-1].signature
        assert await ledger.get_balance(DESIGNER_WALLET, AssetClass.TOKEN) == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_custodial_signer_rejection(
        self, ledger, vault_signer, funds_service, delivered_order
    ) -> None:
        order = await delivered_order()
        vault_signer.reject_next()

        with pytest.raises(UserRejectedError):
            await funds_service.release_funds(order.id)
        assert ledger.submitted == []


class TestPayoutRecovery:
    @pytest.mark.asyncio
    async def test_slow_confirmation_is_recovered_not_resent(
        self, session, ledger, funds_service, delivered_order
    ) -> None:
        order = await delivered_order(Decimal("10.00"))
        ledger.hold_next_confirmation(lands=True)

        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            await funds_service.release_funds(order.id)
        first_ref = exc_info.value.tx_ref
        fresh = await OrderRepository(session).get_by_id(order.id, fresh=True)
        assert fresh.status == OrderStatus.DELIVERED

        tx_ref = await funds_service.release_funds(order.id)

        assert tx_ref == first_ref
        assert len(ledger.submitted) == 1
        assert await ledger.get_balance(DESIGNER_WALLET, AssetClass.TOKEN) == Decimal("10.00")
        fresh = await OrderRepository(session).get_by_id(order.id, fresh=True)
        assert fresh.status == OrderStatus.RELEASED
        assert fresh.release_tx_ref == first_ref

    @pytest.mark.asyncio
    async def test_dropped_transaction_is_resent(
        self, session, ledger, funds_service, delivered_order
    ) -> None:
        order = await delivered_order(Decimal("10.00"))
        ledger.hold_next_confirmation(lands=False)

        with pytest.raises(ConfirmationTimeoutError) as exc_info:
            await funds_service.release_funds(order.id)
        dropped_ref = exc_info.value.tx_ref

        tx_ref = await funds_service.release_funds(order.id)

        assert tx_ref != dropped_ref
        assert await ledger.get_balance(DESIGNER_WALLET, AssetClass.TOKEN) == Decimal("10.00")
        events = await _events(session, order.id)
        assert events.count(EventType.PAYOUT_SUBMITTED) == 2
        assert events.count(EventType.PAYOUT_FAILED) == 1
        assert events[-1] == EventType.FUNDS_RELEASED


class TestConcurrentRelease:
    @pytest.mark.asyncio
    async def test_double_release_pays_once(
        self, session_factory, ledger, custodial, delivered_order
    ) -> None:
        order = await delivered_order(Decimal("10.00"))
        ledger._latency = 0.01

        async def attempt():
            async with session_factory() as s:
                return await FundsService(s, ledger, custodial, confirmation_timeout=1.0).release_funds(
                    order.id
                )

        results = await asyncio.gather(attempt(), attempt(), return_exceptions=True)

        refs = [r for r in results if isinstance(r, str)]
        errors = [r for r in results if isinstance(r, Exception)]
        assert len(refs) == 1
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidStateTransitionError)
        assert len(ledger.submitted) == 1
        assert await ledger.get_balance(DESIGNER_WALLET, AssetClass.TOKEN) == Decimal("10.00")

    @pytest.mark.asyncio
    async def test_sign_outside_lock_is_refused(self, ledger, vault_signer) -> None:
        custodial = CustodialSigner(vault_signer)
        unsigned = await ledger.build_unsigned_transfer(
            ledger.custodial_address, DESIGNER_WALLET, Decimal("1"), AssetClass.NATIVE
        )

        with pytest.raises(RuntimeError, match="serialized"):
            await custodial.sign(unsigned)


class TestRefundCustomer:
    @pytest.mark.asyncio
    async def test_refund_requires_open_dispute(self, ledger, funds_service, shipped_order) -> None:
        order = await shipped_order()

        with pytest.raises(InvalidStateTransitionError):
            await funds_service.refund_customer(order.id, reason="changed mind")
        assert ledger.submitted == []

    @pytest.mark.asyncio
    async def test_refund_resolves_dispute(
        self, session, parties, ledger, funds_service, dispute_service, shipped_order
    ) -> None:
        from phasion_escrow.domain.enums import DisputeReason, DisputeStatus

        order = await shipped_order(Decimal("10.00"))
        dispute = await dispute_service.create_dispute(
            order.id, parties.customer.id, DisputeReason.WRONG_ITEM, "Received the wrong colourway"
        )
        await session.commit()

        tx_ref = await funds_service.refund_customer(
            order.id, reason="Wrong item shipped", actor_id=parties.admin.id
        )

        fresh = await OrderRepository(session).get_by_id(order.id, fresh=True)
        assert fresh.status == OrderStatus.REFUNDED
        assert fresh.refund_tx_ref == tx_ref
        assert fresh.refund_reason == "Wrong item shipped"
        assert fresh.release_tx_ref is None
        assert dispute.status == DisputeStatus.RESOLVED
        assert dispute.decision == "favor_customer"
        assert await ledger.get_balance(CUSTOMER_WALLET, AssetClass.TOKEN) == Decimal("510")

    @pytest.mark.asyncio
    async def test_release_blocked_by_open_dispute(
        self, session, parties, funds_service, dispute_service, shipped_order
    ) -> None:
        from phasion_escrow.domain.enums import DisputeReason

        order = await shipped_order()
        await dispute_service.create_dispute(
            order.id, parties.customer.id, DisputeReason.QUALITY_ISSUE, "Stitching came apart"
        )
        await session.commit()

        with pytest.raises(DisputeOpenError):
            await funds_service.release_funds(order.id)

    @pytest.mark.asyncio
    async def test_refund_rejects_order_party(
        self, session, parties, ledger, funds_service, dispute_service, shipped_order
    ) -> None:
        from phasion_escrow.domain.enums import DisputeReason, DisputeStatus

        order = await shipped_order()
        dispute = await dispute_service.create_dispute(
            order.id, parties.customer.id, DisputeReason.DAMAGED_ITEM, "Hem torn on arrival"
        )
        await session.commit()

        for actor in (parties.customer, parties.designer):
            with pytest.raises(NotOrderPartyError):
                await funds_service.refund_customer(order.id, reason="self-refund", actor_id=actor.id)

        assert ledger.submitted == []
        fresh = await OrderRepository(session).get_by_id(order.id, fresh=True)
        assert fresh.status == OrderStatus.SHIPPED
        assert dispute.status == DisputeStatus.OPEN

    @pytest.mark.asyncio
    async def test_refund_records_dispute_resolution_with_payout(
        self, session, parties, funds_service, dispute_service, shipped_order
    ) -> None:
        from phasion_escrow.domain.enums import DisputeReason

        order = await shipped_order()
        await dispute_service.create_dispute(
            order.id, parties.customer.id, DisputeReason.QUALITY_ISSUE, "Colour differs"
        )
        await session.commit()

        tx_ref = await funds_service.refund_customer(
            order.id, reason="Colour differs", actor_id=parties.admin.id
        )

        events = await EventRepository(session).get_by_order(order.id)
        assert [e.event_type for e in events][-2:] == [
            EventType.FUNDS_REFUNDED,
            EventType.DISPUTE_RESOLVED_CUSTOMER,
        ]
        assert events[-1].tx_ref == tx_ref

    @pytest.mark.asyncio
    async def test_unrecorded_refund_leaves_dispute_open(
        self, monkeypatch, session, parties, funds_service, dispute_service, shipped_order
    ) -> None:
        from unittest.mock import AsyncMock

        from phasion_escrow.domain.enums import DisputeReason, DisputeStatus

        order = await shipped_order()
        dispute = await dispute_service.create_dispute(
            order.id, parties.customer.id, DisputeReason.WRONG_ITEM, "Wrong size"
        )
        await session.commit()
        monkeypatch.setattr(
            funds_service._orders,
            "transition",
            AsyncMock(side_effect=StaleOrderStateError(str(order.id), ["shipped"], "refunded")),
        )

        with pytest.raises(PayoutUnrecordedError):
            await funds_service.refund_customer(order.id, reason="Wrong size", actor_id=parties.admin.id)

        await session.refresh(dispute)
        assert dispute.status == DisputeStatus.OPEN
        assert EventType.DISPUTE_RESOLVED_CUSTOMER not in await _events(session, order.id)
