"""Payment Reconciliation — verifies that a claimed deposit actually arrived.

The client's word that a deposit succeeded is not trusted. The vault balance
is read, the engine waits a settle delay for the referenced transaction to
finalize, the balance is read again, and the measured difference becomes the
authoritative amount for all later release/refund math.

Known weakness: the diff is taken on the shared vault account, so an
unrelated deposit landing inside the same settle window is counted too.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import TYPE_CHECKING

from phasion_escrow.domain.amounts import quantize, relative_deviation
from phasion_escrow.domain.enums import (
    AssetClass,
    EventType,
    NotificationKind,
    OrderStatus,
    ProfileRole,
)
from phasion_escrow.domain.exceptions import (
    AmountMismatchError,
    DuplicateOperationError,
    InsufficientFundsError,
    InvalidStateTransitionError,
)
from phasion_escrow.logging_config import get_logger
from phasion_escrow.services.base import OrderServiceBase, actor_label

if TYPE_CHECKING:
    import uuid
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession

    from phasion_escrow.domain.ledger_protocol import LedgerClient, UnsignedTransaction
    from phasion_escrow.infrastructure.database.orm_models import EscrowOrder

logger = get_logger(__name__)


class PaymentReconciliationService(OrderServiceBase):
    """Confirms deposits into the custodial vault and moves orders to paid."""

    def __init__(
        self,
        session: AsyncSession,
        ledger: LedgerClient,
        settle_delay_seconds: float = 3.0,
        tolerance: Decimal = Decimal("0.01"),
        block_on_mismatch: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            ledger: Ledger client used for vault balance reads.
            settle_delay_seconds: Wait between the two balance reads.
            tolerance: Relative deviation from the quote accepted without a warning.
            block_on_mismatch: Reject out-of-tolerance deposits (order stays pending)
                instead of proceeding with the measured amount.
            sleep: Awaitable used for the settle wait; injectable for tests.
        """
        super().__init__(session)
        self._ledger = ledger
        self._settle_delay = settle_delay_seconds
        self._tolerance = tolerance
        self._block_on_mismatch = block_on_mismatch
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Deposit preparation
    # ------------------------------------------------------------------

    async def prepare_deposit(self, order_id: uuid.UUID) -> UnsignedTransaction:
        """Build the unsigned customer -> vault transfer for the external wallet signer."""
        order = await self._get_order_or_raise(order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidStateTransitionError(order.status, "prepare_deposit")

        asset = AssetClass(order.currency)
        customer_wallet = await self._wallet_of(order.customer_id, ProfileRole.CUSTOMER)
        amount = quantize(order.amount, asset)

        available = await self._ledger.get_balance(customer_wallet, asset)
        if available < amount:
            raise InsufficientFundsError(
                required=str(amount), available=str(available), asset=asset.value
            )

        unsigned = await self._ledger.build_unsigned_transfer(
            customer_wallet, self._ledger.custodial_address, amount, asset
        )
        logger.info(
            "reconciliation.deposit_prepared",
            order_id=str(order.id),
            amount=amount,
            asset=asset.value,
            creates_vault_account=unsigned.creates_associated_account,
        )
        return unsigned

    # ------------------------------------------------------------------
    # Confirmation
    # ------------------------------------------------------------------

    async def confirm_payment(
        self,
        order_id: uuid.UUID,
        tx_ref: str,
        actor_id: uuid.UUID | None = None,
    ) -> EscrowOrder:
        """Verify the deposit referenced by `tx_ref` and mark the order paid.

        Calling this again with the same `tx_ref` on an order that is already
        paid returns the order unchanged.

        Raises:
            DuplicateOperationError: `tx_ref` already confirmed another order.
            InvalidStateTransitionError: The order is not pending.
            AmountMismatchError: Out of tolerance and blocking is enabled.
        """
        order = await self._get_order_or_raise(order_id)

        if order.status == OrderStatus.PAID and order.deposit_tx_ref == tx_ref:
            logger.info("reconciliation.already_confirmed", order_id=str(order.id), tx_ref=tx_ref)
            return order

        other = await self._orders.get_by_deposit_tx_ref(tx_ref)
        if other is not None and other.id != order.id:
            raise DuplicateOperationError(f"deposit:{tx_ref}")

        # Fail fast before spending the settle delay on an order that cannot be paid
        self._fire_transition(order, "payment_confirmed")

        asset = AssetClass(order.currency)
        quoted = Decimal(order.amount)

        before = await self._ledger.get_custodial_balance(asset)
        await self._sleep(self._settle_delay)
        after = await self._ledger.get_custodial_balance(asset)
        received = after - before

        if received <= 0:
            logger.warning(
                "reconciliation.no_balance_delta",
                order_id=str(order.id),
                tx_ref=tx_ref,
                before=before,
                after=after,
                fallback=quoted,
            )
            authoritative = quoted
        else:
            authoritative = received

        deviation = relative_deviation(authoritative, quoted)
        if deviation > self._tolerance:
            if self._block_on_mismatch:
                logger.warning(
                    "reconciliation.amount_mismatch_blocked",
                    order_id=str(order.id),
                    expected=quoted,
                    received=authoritative,
                    deviation=deviation,
                )
                raise AmountMismatchError(str(order.id), str(quoted), str(authoritative))
            logger.warning(
                "reconciliation.amount_mismatch",
                order_id=str(order.id),
                expected=quoted,
                received=authoritative,
                deviation=deviation,
            )

        await self._transition(
            order,
            "payment_confirmed",
            EventType.PAYMENT_CONFIRMED,
            actor=actor_label(actor_id),
            tx_ref=tx_ref,
            metadata={
                "received": str(authoritative),
                "quoted": str(quoted),
                "vault_before": str(before),
                "vault_after": str(after),
                "degraded": received <= 0,
            },
            deposit_tx_ref=tx_ref,
            actual_amount_received=authoritative,
            vault_balance_before=before,
            vault_balance_after=after,
        )

        customer_name = await self._display_name(order.customer_id)
        await self._notifications.enqueue(
            order.designer_id,
            NotificationKind.DESIGNER_NEW_ORDER,
            "New order received",
            f"{customer_name} placed an order for item {order.item_id}.",
            {"order_id": str(order.id)},
        )
        await self._notifications.enqueue(
            order.designer_id,
            NotificationKind.DESIGNER_PAYMENT_CONFIRMED,
            "Payment confirmed",
            f"Payment of {authoritative} {asset.value} is held in escrow. You can ship now.",
            {"order_id": str(order.id), "tx_ref": tx_ref},
        )

        logger.info(
            "order.paid",
            order_id=str(order.id),
            tx_ref=tx_ref,
            received=authoritative,
            asset=asset.value,
        )
        return order
