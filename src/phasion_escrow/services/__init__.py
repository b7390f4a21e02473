"""Application services — use case orchestration."""

from phasion_escrow.services.custodial import CustodialSigner
from phasion_escrow.services.dispute_service import DisputeService
from phasion_escrow.services.funds_service import FundsService
from phasion_escrow.services.notification_service import (
    NotificationDispatcher,
    NotificationService,
)
from phasion_escrow.services.order_service import OrderService
from phasion_escrow.services.reconciliation_service import PaymentReconciliationService

__all__ = [
    "CustodialSigner",
    "DisputeService",
    "FundsService",
    "NotificationDispatcher",
    "NotificationService",
    "OrderService",
    "PaymentReconciliationService",
]
