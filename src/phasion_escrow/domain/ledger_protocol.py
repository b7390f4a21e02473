"""Ledger and notification protocols.

Defines the interfaces the engines depend on. These are Protocols
(structural subtyping) so the simulated and Solana-backed adapters don't
need to inherit from a base class — they just need to match the shape.

The domain layer has ZERO imports from solana, solders, httpx or any
external service.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal  # noqa: TC003 - used in dataclass fields at runtime
from typing import Protocol, runtime_checkable

from phasion_escrow.domain.amounts import to_minimal_units
from phasion_escrow.domain.enums import AssetClass, LedgerErrorKind, TxStatus
from phasion_escrow.domain.exceptions import (
    ConfirmationTimeoutError,
    InsufficientFundsError,
    LedgerError,
    LedgerTransientError,
    SimulationFailedError,
    UserRejectedError,
)

# ---------------------------------------------------------------------------
# Unsigned transaction instructions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateAssociatedAccount:
    """Create `owner`'s associated token account, paid for by `payer`."""

    payer: str
    owner: str


@dataclass(frozen=True)
class Transfer:
    """Move `units` minimal units of `asset` from `source` to `destination`."""

    source: str
    destination: str
    units: int
    asset: AssetClass


@dataclass(frozen=True)
class UnsignedTransaction:
    """A transfer ready for signing.

    Attributes:
        fee_payer: Account paying network fees (always the sender).
        recent_checkpoint: Replay-protection value issued by the ledger.
        instructions: Ordered instructions; an associated-account creation,
            when needed, precedes the transfer.
        amount: The human amount being moved (already floored).
        asset: Asset class of the transfer.
    """

    fee_payer: str
    recent_checkpoint: str
    instructions: tuple[CreateAssociatedAccount | Transfer, ...]
    amount: Decimal
    asset: AssetClass

    @property
    def amount_units(self) -> int:
        return to_minimal_units(self.amount, self.asset)

    @property
    def creates_associated_account(self) -> bool:
        return any(isinstance(ix, CreateAssociatedAccount) for ix in self.instructions)


@dataclass(frozen=True)
class SignedTransaction:
    """A signed transaction. `signature` doubles as the ledger tx reference."""

    unsigned: UnsignedTransaction
    signature: str
    payload: bytes = b""


@dataclass(frozen=True)
class TxOutcome:
    """Result of waiting on (or looking up) a submitted transaction."""

    tx_ref: str
    status: TxStatus
    error_kind: LedgerErrorKind | None = None
    message: str = ""
    logs: list[str] = field(default_factory=list)

    @property
    def confirmed(self) -> bool:
        return self.status == TxStatus.CONFIRMED

    def raise_for_failure(self) -> None:
        """Translate a failed outcome into the matching domain exception."""
        if self.status != TxStatus.FAILED:
            return
        raise ledger_error_for(self.error_kind, self.message, self.tx_ref, self.logs)


def ledger_error_for(
    kind: LedgerErrorKind | None,
    message: str,
    tx_ref: str | None = None,
    logs: list[str] | None = None,
) -> LedgerError:
    """Map a structured ledger failure kind onto the domain error taxonomy."""
    if kind == LedgerErrorKind.USER_REJECTED:
        return UserRejectedError(message or "Transaction rejected by signer")
    if kind == LedgerErrorKind.INSUFFICIENT_FUNDS:
        return InsufficientFundsError(required="?", available="?")
    if kind == LedgerErrorKind.SIMULATION_FAILED:
        return SimulationFailedError(message, logs=logs)
    if kind == LedgerErrorKind.TIMEOUT and tx_ref:
        return ConfirmationTimeoutError(tx_ref, 0)
    return LedgerTransientError(message or "Ledger error", tx_ref=tx_ref)


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------


@runtime_checkable
class LedgerClient(Protocol):
    """Operations consumed from the external ledger.

    Concrete implementations:
        - infrastructure/ledger/simulated.py     (in-memory, tests and dev)
        - infrastructure/ledger/solana_client.py (solana-py JSON-RPC)
    """

    @property
    def custodial_address(self) -> str: ...

    async def get_balance(self, address: str, asset: AssetClass) -> Decimal:
        """Balance of any account; 0 if the token account does not exist."""
        ...

    async def get_custodial_balance(self, asset: AssetClass) -> Decimal:
        """Balance of the platform vault for `asset`."""
        ...

    async def build_unsigned_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        asset: AssetClass,
    ) -> UnsignedTransaction:
        """Build a transfer with a fresh checkpoint and `from_address` as fee payer."""
        ...

    async def submit_signed(self, signed: SignedTransaction) -> str:
        """Submit a signed transaction and return its tx reference."""
        ...

    async def await_confirmation(self, tx_ref: str, timeout: float) -> TxOutcome:
        """Wait until `tx_ref` is confirmed or failed; TIMEOUT outcome on expiry."""
        ...

    async def get_transaction_outcome(self, tx_ref: str) -> TxOutcome:
        """Look up the current outcome of `tx_ref` without waiting."""
        ...


@runtime_checkable
class TransactionSigner(Protocol):
    """Anything that can sign an unsigned transaction for `address`."""

    @property
    def address(self) -> str: ...

    async def sign(self, unsigned: UnsignedTransaction) -> SignedTransaction:
        """Sign the transaction; raises UserRejectedError on refusal."""
        ...


@dataclass(frozen=True)
class OutboundNotification:
    """A notification handed to the delivery sink."""

    notification_id: str
    user_id: str
    kind: str
    title: str
    message: str
    data: dict = field(default_factory=dict)


@runtime_checkable
class NotificationSink(Protocol):
    """Fire-and-forget delivery channel (email, push, webhook, log)."""

    async def deliver(self, notification: OutboundNotification) -> None: ...
