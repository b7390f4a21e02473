"""Domain exceptions for the Phasion escrow engine.

These exceptions are framework-agnostic and represent business rule violations
or classified ledger failures. They are caught and translated to HTTP responses
by the API layer's middleware.
"""

from __future__ import annotations


class EscrowError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "ESCROW_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- State Machine Errors ---


class InvalidStateTransitionError(EscrowError):
    """Raised when an operation is requested on an order whose status forbids it.

    Example: shipping an order that is still pending.
    """

    def __init__(self, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid state transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
        )
        self.current_state = current_state
        self.attempted_state = attempted


class StaleOrderStateError(InvalidStateTransitionError):
    """Raised when a compare-and-swap status write finds the order already moved."""

    def __init__(self, order_id: str, expected: list[str], attempted: str) -> None:
        super().__init__(current_state="/".join(expected), attempted=attempted)
        self.message = (
            f"Order {order_id} is no longer in {'/'.join(expected)}; "
            f"another request already advanced it"
        )
        self.code = "STALE_ORDER_STATE"
        self.order_id = order_id


# --- Lookup Errors ---


class OrderNotFoundError(EscrowError):
    def __init__(self, order_id: str) -> None:
        super().__init__(message=f"Order not found: {order_id}", code="ORDER_NOT_FOUND")
        self.order_id = order_id


class DisputeNotFoundError(EscrowError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__(
            message=f"Dispute not found: {dispute_id}",
            code="DISPUTE_NOT_FOUND",
        )
        self.dispute_id = dispute_id


class CounterpartyWalletMissingError(EscrowError):
    """Raised when a customer or designer has no registered wallet address."""

    def __init__(self, profile_id: str, role: str) -> None:
        super().__init__(
            message=f"No wallet address registered for {role} {profile_id}",
            code="COUNTERPARTY_WALLET_MISSING",
        )
        self.profile_id = profile_id
        self.role = role


# --- Lifecycle Errors ---


class ShipmentProofMissingError(EscrowError):
    """Raised when an order is marked shipped without tracking number or photos."""

    def __init__(self, order_id: str, missing: list[str]) -> None:
        super().__init__(
            message=f"Cannot ship order {order_id}: missing {', '.join(missing)}",
            code="SHIPMENT_PROOF_REQUIRED",
        )
        self.missing = missing


class NotOrderPartyError(EscrowError):
    def __init__(self, order_id: str, actor_id: str) -> None:
        super().__init__(
            message=f"{actor_id} is not a party to order {order_id}",
            code="NOT_ORDER_PARTY",
        )


# --- Dispute Errors ---


class DisputeOpenError(EscrowError):
    """Raised when normal lifecycle advancement is attempted during an open dispute."""

    def __init__(self, order_id: str) -> None:
        super().__init__(
            message=f"Order {order_id} has an open dispute awaiting admin review",
            code="DISPUTE_OPEN",
        )


class DisputeAlreadyOpenError(EscrowError):
    def __init__(self, order_id: str) -> None:
        super().__init__(
            message=f"Order {order_id} already has an open dispute",
            code="DISPUTE_ALREADY_OPEN",
        )


class DisputeAlreadyResolvedError(EscrowError):
    def __init__(self, dispute_id: str) -> None:
        super().__init__(
            message=f"Dispute already resolved: {dispute_id}",
            code="DISPUTE_ALREADY_RESOLVED",
        )


# --- Reconciliation Errors ---


class AmountMismatchError(EscrowError):
    """Measured deposit deviates from the quoted amount beyond tolerance.

    Only raised when blocking on mismatch is enabled; otherwise the mismatch
    is logged as a warning and the order proceeds.
    """

    def __init__(self, order_id: str, expected: str, received: str) -> None:
        super().__init__(
            message=(
                f"Deposit for order {order_id} does not match: "
                f"expected {expected}, received {received}"
            ),
            code="AMOUNT_MISMATCH",
        )
        self.expected = expected
        self.received = received


# --- Ledger Errors ---


class LedgerError(EscrowError):
    """Raised when a ledger operation fails."""

    def __init__(
        self,
        message: str,
        tx_ref: str | None = None,
        code: str = "LEDGER_ERROR",
    ) -> None:
        super().__init__(message=message, code=code)
        self.tx_ref = tx_ref


class UserRejectedError(LedgerError):
    """The external signer declined or the user cancelled. Never retried."""

    def __init__(self, message: str = "Transaction rejected by signer") -> None:
        super().__init__(message=message, code="USER_REJECTED")


class InsufficientFundsError(LedgerError):
    """Raised when the paying account cannot cover a transfer.

    `custodial=True` means the vault itself is short, i.e. escrowed funds are
    stuck and an operator must intervene.
    """

    def __init__(
        self,
        required: str,
        available: str,
        asset: str = "",
        custodial: bool = False,
    ) -> None:
        side = "custodial vault" if custodial else "payer"
        super().__init__(
            message=(
                f"Insufficient funds in {side}: required {required} {asset}, "
                f"available {available} {asset}"
            ).replace("  ", " "),
            code="INSUFFICIENT_FUNDS",
        )
        self.required = required
        self.available = available
        self.custodial = custodial


class LedgerTransientError(LedgerError):
    """RPC, timeout or simulation error with no definitive outcome. Safe to retry."""

    def __init__(self, message: str, tx_ref: str | None = None) -> None:
        super().__init__(message=message, tx_ref=tx_ref, code="LEDGER_TRANSIENT")


class ConfirmationTimeoutError(LedgerTransientError):
    def __init__(self, tx_ref: str, timeout_seconds: float) -> None:
        super().__init__(
            message=f"Transaction {tx_ref} not confirmed within {timeout_seconds}s",
            tx_ref=tx_ref,
        )
        self.code = "CONFIRMATION_TIMEOUT"


class SimulationFailedError(LedgerTransientError):
    def __init__(self, message: str, logs: list[str] | None = None) -> None:
        super().__init__(message=message)
        self.code = "SIMULATION_FAILED"
        self.logs = logs or []


class PayoutUnrecordedError(LedgerError):
    """The ledger confirmed a payout but the datastore write failed.

    The funds have moved. The tx_ref must be recorded manually; the payout
    recovery path will also pick it up on the next release/refund attempt.
    """

    def __init__(self, order_id: str, tx_ref: str) -> None:
        super().__init__(
            message=f"Payout {tx_ref} for order {order_id} confirmed but not recorded",
            tx_ref=tx_ref,
            code="PAYOUT_UNRECORDED",
        )
        self.order_id = order_id


# --- Idempotency Errors ---


class DuplicateOperationError(EscrowError):
    """Raised when a duplicate idempotency key or deposit reference is detected."""

    def __init__(self, key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {key}",
            code="DUPLICATE_OPERATION",
        )
