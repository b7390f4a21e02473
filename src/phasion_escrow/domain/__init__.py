"""Domain layer — pure business logic with zero framework dependencies."""

from phasion_escrow.domain.amounts import from_minimal_units, to_minimal_units
from phasion_escrow.domain.enums import (
    AssetClass,
    DisputeDecision,
    DisputeStatus,
    EventType,
    OrderStatus,
)
from phasion_escrow.domain.exceptions import (
    EscrowError,
    InvalidStateTransitionError,
    OrderNotFoundError,
)
from phasion_escrow.domain.ledger_protocol import (
    LedgerClient,
    NotificationSink,
    SignedTransaction,
    TransactionSigner,
    TxOutcome,
    UnsignedTransaction,
)
from phasion_escrow.domain.state_machine import (
    OrderStateMachine,
    validate_transition,
)

__all__ = [
    "AssetClass",
    "DisputeDecision",
    "DisputeStatus",
    "EventType",
    "OrderStatus",
    "EscrowError",
    "InvalidStateTransitionError",
    "OrderNotFoundError",
    "LedgerClient",
    "NotificationSink",
    "SignedTransaction",
    "TransactionSigner",
    "TxOutcome",
    "UnsignedTransaction",
    "OrderStateMachine",
    "validate_transition",
    "from_minimal_units",
    "to_minimal_units",
]
