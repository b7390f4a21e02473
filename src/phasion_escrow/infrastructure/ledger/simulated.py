"""In-memory ledger and signer for tests, the simulation script and local dev.

Balances are kept in integer minimal units keyed by (address, asset), token
accounts must exist before they can hold a token balance, and every built
transaction carries a serially-issued checkpoint that expires after
`checkpoint_ttl` newer checkpoints have been issued.

Fault injection hooks let tests reproduce the ledger failure kinds:
    ledger.fail_next_submit(LedgerErrorKind.NETWORK)
    ledger.hold_next_confirmation(lands=True)   # slow: confirms after timeout
    ledger.hold_next_confirmation(lands=False)  # dropped: never lands
    ledger.fail_next_reads(2)
    signer.reject_next()
"""

from __future__ import annotations

import asyncio
import itertools
import uuid
from typing import TYPE_CHECKING

from phasion_escrow.domain.amounts import from_minimal_units, to_minimal_units
from phasion_escrow.domain.enums import AssetClass, LedgerErrorKind, TxStatus
from phasion_escrow.domain.exceptions import (
    InsufficientFundsError,
    LedgerTransientError,
    SimulationFailedError,
    UserRejectedError,
)
from phasion_escrow.domain.ledger_protocol import (
    CreateAssociatedAccount,
    SignedTransaction,
    Transfer,
    TxOutcome,
    UnsignedTransaction,
    ledger_error_for,
)
from phasion_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from decimal import Decimal

logger = get_logger(__name__)

DEFAULT_VAULT_ADDRESS = "SimVau1t11111111111111111111111111111111111"


class SimulatedLedgerClient:
    """LedgerClient backed by dictionaries instead of a network."""

    def __init__(
        self,
        custodial_address: str = DEFAULT_VAULT_ADDRESS,
        fee_units: int = 0,
        checkpoint_ttl: int = 150,
        latency: float = 0.0,
    ) -> None:
        """
        Args:
            custodial_address: Address of the platform vault.
            fee_units: Native minimal units charged to the fee payer per transaction.
            checkpoint_ttl: How many newer checkpoints may be issued before an
                unsigned transaction's checkpoint is rejected as expired.
            latency: Seconds every submission takes, so concurrent callers interleave.
        """
        self._custodial_address = custodial_address
        self.fee_units = fee_units
        self._checkpoint_ttl = checkpoint_ttl
        self._latency = latency

        self._balances: dict[tuple[str, AssetClass], int] = {}
        self._token_accounts: set[str] = set()
        self._checkpoints = itertools.count(1)
        self._latest_checkpoint = 0
        self._outcomes: dict[str, TxOutcome] = {}
        self._slow: set[str] = set()
        self._dropped: set[str] = set()
        self.submitted: list[SignedTransaction] = []

        self._fail_next_submit: LedgerErrorKind | None = None
        self._hold_next: bool | None = None
        self._failing_reads = 0

    # --- Test / simulation helpers ---

    def credit(self, address: str, amount: Decimal, asset: AssetClass) -> None:
        """Add `amount` human units to `address`, opening its token account if needed."""
        if asset == AssetClass.TOKEN:
            self._token_accounts.add(address)
        key = (address, asset)
        self._balances[key] = self._balances.get(key, 0) + to_minimal_units(amount, asset)

    def set_balance(self, address: str, amount: Decimal, asset: AssetClass) -> None:
        if asset == AssetClass.TOKEN:
            self._token_accounts.add(address)
        self._balances[(address, asset)] = to_minimal_units(amount, asset)

    def has_token_account(self, address: str) -> bool:
        return address in self._token_accounts

    def fail_next_submit(self, kind: LedgerErrorKind) -> None:
        self._fail_next_submit = kind

    def hold_next_confirmation(self, lands: bool = True) -> None:
        self._hold_next = lands

    def fail_next_reads(self, count: int) -> None:
        self._failing_reads = count

    # --- LedgerClient protocol ---

    @property
    def custodial_address(self) -> str:
        return self._custodial_address

    async def get_balance(self, address: str, asset: AssetClass) -> Decimal:
        if self._failing_reads > 0:
            self._failing_reads -= 1
            raise LedgerTransientError("Simulated RPC read failure")
        if asset == AssetClass.TOKEN and address not in self._token_accounts:
            return from_minimal_units(0, asset)
        return from_minimal_units(self._balances.get((address, asset), 0), asset)

    async def get_custodial_balance(self, asset: AssetClass) -> Decimal:
        return await self.get_balance(self._custodial_address, asset)

    async def build_unsigned_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        asset: AssetClass,
    ) -> UnsignedTransaction:
        units = to_minimal_units(amount, asset)
        instructions: list[CreateAssociatedAccount | Transfer] = []
        if asset == AssetClass.TOKEN and to_address not in self._token_accounts:
            instructions.append(CreateAssociatedAccount(payer=from_address, owner=to_address))
        instructions.append(
            Transfer(source=from_address, destination=to_address, units=units, asset=asset)
        )
        self._latest_checkpoint = next(self._checkpoints)
        return UnsignedTransaction(
            fee_payer=from_address,
            recent_checkpoint=str(self._latest_checkpoint),
            instructions=tuple(instructions),
            amount=from_minimal_units(units, asset),
            asset=asset,
        )

    async def submit_signed(self, signed: SignedTransaction) -> str:
        tx_ref = signed.signature
        if self._latency:
            await asyncio.sleep(self._latency)

        # A resubmitted signature is the same transaction; never apply it twice
        if tx_ref in self._outcomes or tx_ref in self._dropped:
            return tx_ref

        if self._fail_next_submit is not None:
            kind, self._fail_next_submit = self._fail_next_submit, None
            raise ledger_error_for(kind, f"Simulated {kind} on submit", logs=["sim: injected"])

        unsigned = signed.unsigned
        if int(unsigned.recent_checkpoint) < self._latest_checkpoint - self._checkpoint_ttl:
            raise SimulationFailedError(
                "Blockhash not found", logs=[f"checkpoint {unsigned.recent_checkpoint} expired"]
            )
        self._check_funds(unsigned)

        hold, self._hold_next = self._hold_next, None
        if hold is False:
            self._dropped.add(tx_ref)
            self.submitted.append(signed)
            logger.info("sim_ledger.tx_dropped", tx_ref=tx_ref)
            return tx_ref

        self._apply(unsigned)
        self._outcomes[tx_ref] = TxOutcome(tx_ref=tx_ref, status=TxStatus.CONFIRMED)
        if hold is True:
            self._slow.add(tx_ref)
        self.submitted.append(signed)
        logger.info(
            "sim_ledger.tx_applied",
            tx_ref=tx_ref,
            amount=unsigned.amount,
            asset=unsigned.asset.value,
        )
        return tx_ref

    async def await_confirmation(self, tx_ref: str, timeout: float) -> TxOutcome:
        await asyncio.sleep(0)
        if tx_ref in self._slow or tx_ref in self._dropped:
            return TxOutcome(
                tx_ref=tx_ref,
                status=TxStatus.PENDING,
                error_kind=LedgerErrorKind.TIMEOUT,
                message=f"not confirmed within {timeout}s",
            )
        return await self.get_transaction_outcome(tx_ref)

    async def get_transaction_outcome(self, tx_ref: str) -> TxOutcome:
        if tx_ref in self._dropped:
            return TxOutcome(
                tx_ref=tx_ref,
                status=TxStatus.FAILED,
                error_kind=LedgerErrorKind.NETWORK,
                message="Transaction never landed; checkpoint expired",
            )
        self._slow.discard(tx_ref)
        outcome = self._outcomes.get(tx_ref)
        if outcome is None:
            return TxOutcome(
                tx_ref=tx_ref,
                status=TxStatus.FAILED,
                error_kind=LedgerErrorKind.NETWORK,
                message="Unknown transaction",
            )
        return outcome

    # --- Internals ---

    def _check_funds(self, unsigned: UnsignedTransaction) -> None:
        native_needed = self.fee_units
        for ix in unsigned.instructions:
            if not isinstance(ix, Transfer):
                continue
            if ix.asset == AssetClass.NATIVE:
                native_needed += ix.units
            else:
                available = self._balances.get((ix.source, AssetClass.TOKEN), 0)
                if ix.source not in self._token_accounts or available < ix.units:
                    raise InsufficientFundsError(
                        required=str(from_minimal_units(ix.units, ix.asset)),
                        available=str(from_minimal_units(available, ix.asset)),
                        asset=ix.asset.value,
                    )
        native_available = self._balances.get((unsigned.fee_payer, AssetClass.NATIVE), 0)
        if native_available < native_needed:
            raise InsufficientFundsError(
                required=str(from_minimal_units(native_needed, AssetClass.NATIVE)),
                available=str(from_minimal_units(native_available, AssetClass.NATIVE)),
                asset=AssetClass.NATIVE.value,
            )

    def _apply(self, unsigned: UnsignedTransaction) -> None:
        fee_key = (unsigned.fee_payer, AssetClass.NATIVE)
        self._balances[fee_key] = self._balances.get(fee_key, 0) - self.fee_units
        for ix in unsigned.instructions:
            if isinstance(ix, CreateAssociatedAccount):
                self._token_accounts.add(ix.owner)
                continue
            src = (ix.source, ix.asset)
            dst = (ix.destination, ix.asset)
            self._balances[src] = self._balances.get(src, 0) - ix.units
            self._balances[dst] = self._balances.get(dst, 0) + ix.units


class SimulatedSigner:
    """TransactionSigner that produces fake signatures for one address."""

    def __init__(self, address: str) -> None:
        self._address = address
        self._reject_next = False

    @property
    def address(self) -> str:
        return self._address

    def reject_next(self) -> None:
        self._reject_next = True

    async def sign(self, unsigned: UnsignedTransaction) -> SignedTransaction:
        if self._reject_next:
            self._reject_next = False
            raise UserRejectedError("User rejected the request")
        if unsigned.fee_payer != self._address:
            raise UserRejectedError(
                f"Signer {self._address} cannot sign for fee payer {unsigned.fee_payer}"
            )
        signature = uuid.uuid4().hex + uuid.uuid4().hex
        return SignedTransaction(unsigned=unsigned, signature=signature)
