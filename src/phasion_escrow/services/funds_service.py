"""Fund Release / Refund engine.

Moves escrowed funds out of the custodial vault, to the designer (release)
or back to the customer (refund). One payout runs at a time per custodial
key: the whole sequence below happens inside CustodialSigner.serialized().

    1. Re-read the order and guard the transition.
    2. Recover an earlier submitted-but-unrecorded payout, if any.
    3. Check the vault covers the amount (in minimal units).
    4. Build, sign and submit the transfer; commit a PAYOUT_SUBMITTED event.
    5. Wait (bounded) for confirmation.
    6. Compare-and-swap the order to released/refunded with the tx ref,
       closing the dispute being settled (if any) in the same commit.

Nothing on the order row changes unless step 6 runs.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from phasion_escrow.domain.amounts import quantize, to_minimal_units
from phasion_escrow.domain.enums import (
    AssetClass,
    DisputeDecision,
    EventType,
    NotificationKind,
    OrderStatus,
    PayoutKind,
    ProfileRole,
    TxStatus,
)
from phasion_escrow.domain.exceptions import (
    ConfirmationTimeoutError,
    DisputeOpenError,
    InsufficientFundsError,
    InvalidStateTransitionError,
    LedgerTransientError,
    PayoutUnrecordedError,
    StaleOrderStateError,
)
from phasion_escrow.logging_config import get_logger
from phasion_escrow.services.base import OrderServiceBase, actor_label

if TYPE_CHECKING:
    import uuid
    from decimal import Decimal

    from sqlalchemy.ext.asyncio import AsyncSession

    from phasion_escrow.domain.ledger_protocol import LedgerClient, TxOutcome
    from phasion_escrow.infrastructure.database.orm_models import (
        Dispute,
        EscrowOrder,
        OrderEvent,
    )
    from phasion_escrow.services.custodial import CustodialSigner

logger = get_logger(__name__)

_PAYOUT_EVENT = {
    PayoutKind.RELEASE: EventType.FUNDS_RELEASED,
    PayoutKind.REFUND: EventType.FUNDS_REFUNDED,
}

_DISPUTE_CLOSURE = {
    PayoutKind.RELEASE: (DisputeDecision.FAVOR_DESIGNER, EventType.DISPUTE_RESOLVED_DESIGNER),
    PayoutKind.REFUND: (DisputeDecision.FAVOR_CUSTOMER, EventType.DISPUTE_RESOLVED_CUSTOMER),
}


class FundsService(OrderServiceBase):
    """Releases and refunds escrowed funds through the custodial signer."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: LedgerClient,
        custodial: CustodialSigner,
        confirmation_timeout: float = 60.0,
    ) -> None:
        super().__init__(session)
        self._ledger = ledger
        self._custodial = custodial
        self._confirmation_timeout = confirmation_timeout

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def release_funds(self, order_id: uuid.UUID, actor_id: uuid.UUID | None = None) -> str:
        """Pay the designer for a delivered order. Returns the release tx ref."""
        if await self._disputes.get_open_for_order(order_id) is not None:
            raise DisputeOpenError(str(order_id))
        return await self._settle(order_id, PayoutKind.RELEASE, "funds_released", actor_id)

    async def refund_customer(
        self,
        order_id: uuid.UUID,
        reason: str,
        actor_id: uuid.UUID | None = None,
    ) -> str:
        """Refund the customer. Admin only, and only while a dispute is open.

        The open dispute is resolved in the customer's favour in the same
        commit that records the refund.
        """
        await self._require_admin(order_id, actor_id)
        dispute = await self._disputes.get_open_for_order(order_id)
        if dispute is None:
            order = await self._get_order_or_raise(order_id)
            raise InvalidStateTransitionError(order.status, "refund_without_dispute")

        return await self.settle_dispute(dispute, DisputeDecision.FAVOR_CUSTOMER, actor_id, reason)

    async def settle_dispute(
        self,
        dispute: Dispute,
        decision: DisputeDecision,
        actor_id: uuid.UUID | None,
        notes: str | None = None,
    ) -> str:
        """Run the payout an admin's dispute decision calls for. Returns the tx ref.

        The dispute is marked resolved in the commit that records the payout,
        so a failed payout leaves it open. The caller checks that it is open.
        """
        await self._require_admin(dispute.order_id, actor_id)
        if decision == DisputeDecision.FAVOR_CUSTOMER:
            return await self._settle(
                dispute.order_id,
                PayoutKind.REFUND,
                "dispute_resolved_for_customer",
                actor_id,
                reason=notes,
                dispute=dispute,
                notes=notes,
            )
        return await self._settle(
            dispute.order_id,
            PayoutKind.RELEASE,
            "dispute_resolved_for_designer",
            actor_id,
            dispute=dispute,
            notes=notes,
        )

    # ------------------------------------------------------------------
    # Payout pipeline
    # ------------------------------------------------------------------

    async def _settle(
        self,
        order_id: uuid.UUID,
        kind: PayoutKind,
        event_name: str,
        actor_id: uuid.UUID | None,
        reason: str | None = None,
        dispute: Dispute | None = None,
        notes: str | None = None,
    ) -> str:
        actor = actor_label(actor_id)
        async with self._custodial.serialized():
            order = await self._get_order_or_raise(order_id, fresh=True)
            self._fire_transition(order, event_name)

            recipient = await self._recipient_wallet(order, kind)
            asset = AssetClass(order.currency)
            amount = quantize(order.actual_amount_received or order.amount, asset)

            recovered = await self._recover_unsettled_payout(
                order, kind, event_name, actor, reason, dispute, notes
            )
            if recovered is not None:
                return recovered

            await self._ensure_vault_covers(order, amount, asset)

            unsigned = await self._ledger.build_unsigned_transfer(
                self._custodial.address, recipient, amount, asset
            )
            signed = await self._custodial.sign(unsigned)
            tx_ref = await self._ledger.submit_signed(signed)

            current = OrderStatus(order.status)
            await self._events.record(
                order_id=order.id,
                event_type=EventType.PAYOUT_SUBMITTED,
                old_status=current,
                new_status=current,
                actor=actor,
                tx_ref=tx_ref,
                metadata={
                    "kind": kind.value,
                    "amount": str(amount),
                    "asset": asset.value,
                    "recipient": recipient,
                    "created_token_account": unsigned.creates_associated_account,
                },
            )
            await self._session.commit()
            logger.info(
                "payout.submitted",
                order_id=str(order.id),
                kind=kind.value,
                tx_ref=tx_ref,
                amount=amount,
                asset=asset.value,
            )

            outcome = await self._await_confirmation(tx_ref)
            if outcome.status == TxStatus.FAILED:
                await self._record_failure(order, tx_ref, actor, outcome)
                outcome.raise_for_failure()

            return await self._record_payout(
                order, kind, event_name, tx_ref, actor, amount, reason, dispute, notes
            )

    async def _recipient_wallet(self, order: EscrowOrder, kind: PayoutKind) -> str:
        if kind == PayoutKind.RELEASE:
            return await self._wallet_of(order.designer_id, ProfileRole.DESIGNER)
        return await self._wallet_of(order.customer_id, ProfileRole.CUSTOMER)

    async def _ensure_vault_covers(self, order: EscrowOrder, amount: Decimal, asset: AssetClass) -> None:
        available = await self._ledger.get_custodial_balance(asset)
        if to_minimal_units(available, asset) < to_minimal_units(amount, asset):
            logger.critical(
                "payout.custodial_shortfall",
                order_id=str(order.id),
                required=amount,
                available=available,
                asset=asset.value,
            )
            raise InsufficientFundsError(
                required=str(amount),
                available=str(available),
                asset=asset.value,
                custodial=True,
            )

    async def _await_confirmation(self, tx_ref: str) -> TxOutcome:
        try:
            async with asyncio.timeout(self._confirmation_timeout):
                outcome = await self._ledger.await_confirmation(tx_ref, self._confirmation_timeout)
        except TimeoutError as exc:
            raise ConfirmationTimeoutError(tx_ref, self._confirmation_timeout) from exc
        if outcome.status == TxStatus.PENDING:
            raise ConfirmationTimeoutError(tx_ref, self._confirmation_timeout)
        return outcome

    async def _record_failure(
        self,
        order: EscrowOrder,
        tx_ref: str,
        actor: str,
        outcome: TxOutcome,
    ) -> None:
        current = OrderStatus(order.status)
        await self._events.record(
            order_id=order.id,
            event_type=EventType.PAYOUT_FAILED,
            old_status=current,
            new_status=current,
            actor=actor,
            tx_ref=tx_ref,
            metadata={
                "error_kind": outcome.error_kind.value if outcome.error_kind else None,
                "message": outcome.message,
            },
        )
        await self._session.commit()
        logger.error(
            "payout.failed",
            order_id=str(order.id),
            tx_ref=tx_ref,
            error_kind=outcome.error_kind,
            message=outcome.message,
        )

    async def _record_payout(
        self,
        order: EscrowOrder,
        kind: PayoutKind,
        event_name: str,
        tx_ref: str,
        actor: str,
        amount: Decimal,
        reason: str | None,
        dispute: Dispute | None = None,
        notes: str | None = None,
    ) -> str:
        values: dict = {"release_tx_ref": tx_ref}
        if kind == PayoutKind.REFUND:
            values = {"refund_tx_ref": tx_ref, "refund_reason": reason}

        try:
            await self._transition(
                order,
                event_name,
                _PAYOUT_EVENT[kind],
                actor=actor,
                tx_ref=tx_ref,
                metadata={"amount": str(amount), "via": event_name},
                **values,
            )
            if dispute is not None:
                await self._close_dispute(order, dispute, kind, tx_ref, actor, notes)
            await self._notify_payout(order, kind, amount)
            await self._session.commit()
        except (SQLAlchemyError, StaleOrderStateError) as exc:
            await self._session.rollback()
            logger.critical(
                "payout.unrecorded",
                order_id=str(order.id),
                kind=kind.value,
                tx_ref=tx_ref,
                error=str(exc),
            )
            raise PayoutUnrecordedError(str(order.id), tx_ref) from exc

        logger.info(
            "order.released" if kind == PayoutKind.RELEASE else "order.refunded",
            order_id=str(order.id),
            tx_ref=tx_ref,
            amount=amount,
        )
        return tx_ref

    async def _close_dispute(
        self,
        order: EscrowOrder,
        dispute: Dispute,
        kind: PayoutKind,
        tx_ref: str,
        actor: str,
        notes: str | None,
    ) -> None:
        """Mark the dispute resolved; flushed with the payout, never committed alone."""
        decision, event_type = _DISPUTE_CLOSURE[kind]
        await self._disputes.mark_resolved(dispute, decision.value, notes, actor)
        status = OrderStatus(order.status)
        await self._events.record(
            order_id=order.id,
            event_type=event_type,
            old_status=status,
            new_status=status,
            actor=actor,
            tx_ref=tx_ref,
            metadata={"dispute_id": str(dispute.id), "notes": notes},
        )

    async def _notify_payout(self, order: EscrowOrder, kind: PayoutKind, amount: Decimal) -> None:
        data = {"order_id": str(order.id), "status": order.status}
        if kind == PayoutKind.RELEASE:
            await self._notifications.enqueue(
                order.designer_id,
                NotificationKind.DESIGNER_PAYMENT_RELEASED,
                "Payment released",
                f"{amount} {order.currency} has been released to your wallet.",
                data,
            )
        else:
            await self._notifications.enqueue(
                order.customer_id,
                NotificationKind.CUSTOMER_REFUND_ISSUED,
                "Refund issued",
                f"{amount} {order.currency} has been refunded to your wallet.",
                data,
            )
        await self._notifications.enqueue(
            order.customer_id,
            NotificationKind.CUSTOMER_ORDER_STATUS_CHANGED,
            "Order updated",
            f"Your order is now {order.status}.",
            data,
        )

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def _recover_unsettled_payout(
        self,
        order: EscrowOrder,
        kind: PayoutKind,
        event_name: str,
        actor: str,
        reason: str | None,
        dispute: Dispute | None = None,
        notes: str | None = None,
    ) -> str | None:
        """Settle an earlier submission instead of sending a second transfer.

        Returns the recovered tx ref, or None when a fresh transfer is needed.
        """
        pending: OrderEvent | None = await self._events.get_unsettled_payout(order.id)
        if pending is None or pending.tx_ref is None:
            return None

        outcome = await self._ledger.get_transaction_outcome(pending.tx_ref)
        meta = pending.metadata_json or {}

        if outcome.status == TxStatus.PENDING:
            raise LedgerTransientError(
                "An earlier payout for this order is still unconfirmed; retry later",
                tx_ref=pending.tx_ref,
            )

        if outcome.status == TxStatus.FAILED:
            await self._record_failure(order, pending.tx_ref, actor, outcome)
            return None

        if meta.get("kind") != kind.value:
            logger.critical(
                "payout.conflicting_recovery",
                order_id=str(order.id),
                tx_ref=pending.tx_ref,
                landed_kind=meta.get("kind"),
                requested_kind=kind.value,
            )
            raise PayoutUnrecordedError(str(order.id), pending.tx_ref)

        logger.warning("payout.recovered", order_id=str(order.id), tx_ref=pending.tx_ref)
        amount = quantize(order.actual_amount_received or order.amount, AssetClass(order.currency))
        return await self._record_payout(
            order, kind, event_name, pending.tx_ref, actor, amount, reason, dispute, notes
        )
