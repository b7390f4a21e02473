"""Solana JSON-RPC ledger adapter and custodial keypair signer.

NATIVE is SOL (lamports, 9 decimals). TOKEN is the SPL mint configured as
`token_mint_address` (6 decimals), held in associated token accounts.

RPC failures are classified into the domain error taxonomy:
    - preflight "insufficient funds"/"insufficient lamports" -> InsufficientFundsError
    - other preflight failures                               -> SimulationFailedError (with logs)
    - HTTP / connection errors                               -> LedgerTransientError
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams as SystemTransferParams
from solders.system_program import transfer as system_transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

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
)
from phasion_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Iterator
    from decimal import Decimal

    from solders.instruction import Instruction

logger = get_logger(__name__)

_POLL_INTERVAL_SECONDS = 0.5
# A blockhash stays usable for this many blocks after it is issued
_BLOCKHASH_VALIDITY_BLOCKS = 150
_INSUFFICIENT_MARKERS = ("insufficient funds", "insufficient lamports", "insufficientfunds")


@contextlib.contextmanager
def _translate_rpc_errors(tx_ref: str | None = None) -> Iterator[None]:
    """Map solana-py / httpx exceptions onto the domain ledger errors."""
    try:
        yield
    except RPCException as exc:
        detail = exc.args[0] if exc.args else exc
        message = str(getattr(detail, "message", detail))
        logs = list(getattr(getattr(detail, "data", None), "logs", None) or [])
        if any(m in message.lower() for m in _INSUFFICIENT_MARKERS) or any(
            m in line.lower() for line in logs for m in _INSUFFICIENT_MARKERS
        ):
            raise InsufficientFundsError(required="?", available="?") from exc
        raise SimulationFailedError(message, logs=logs) from exc
    except (SolanaRpcException, httpx.HTTPError, OSError) as exc:
        raise LedgerTransientError(f"RPC unavailable: {exc}", tx_ref=tx_ref) from exc


class SolanaLedgerClient:
    """LedgerClient over solana-py's AsyncClient."""

    def __init__(
        self,
        rpc_url: str,
        custodial_address: str,
        token_mint: str,
        commitment: str = "confirmed",
        read_retries: int = 3,
    ) -> None:
        self._client = AsyncClient(rpc_url, commitment=Commitment(commitment))
        self._commitment = Commitment(commitment)
        self._custodial = Pubkey.from_string(custodial_address)
        self._mint = Pubkey.from_string(token_mint)
        self._read_retries = read_retries
        # blockhash -> last valid block height, used to tell "slow" from "dropped".
        # Submitted tx refs are forgotten once final; stale blockhashes are
        # pruned on the next build.
        self._checkpoint_expiry: dict[str, int] = {}
        self._tx_checkpoint: dict[str, str] = {}

    @property
    def custodial_address(self) -> str:
        return str(self._custodial)

    @property
    def token_mint(self) -> Pubkey:
        return self._mint

    async def close(self) -> None:
        await self._client.close()

    async def _read(self, fn, *args):  # noqa: ANN001, ANN202
        """Run a read-only RPC call with exponential backoff on transient errors."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._read_retries),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(LedgerTransientError),
            reraise=True,
        ):
            with attempt, _translate_rpc_errors():
                return await fn(*args)
        return None

    # --- Balances ---

    async def _token_account_exists(self, owner: Pubkey) -> bool:
        ata = get_associated_token_address(owner, self._mint)
        resp = await self._read(self._client.get_account_info, ata)
        return resp.value is not None

    async def get_balance(self, address: str, asset: AssetClass) -> Decimal:
        owner = Pubkey.from_string(address)
        if asset == AssetClass.NATIVE:
            resp = await self._read(self._client.get_balance, owner)
            return from_minimal_units(resp.value, asset)

        if not await self._token_account_exists(owner):
            return from_minimal_units(0, asset)
        ata = get_associated_token_address(owner, self._mint)
        resp = await self._read(self._client.get_token_account_balance, ata)
        return from_minimal_units(int(resp.value.amount), asset)

    async def get_custodial_balance(self, asset: AssetClass) -> Decimal:
        return await self.get_balance(self.custodial_address, asset)

    # --- Transactions ---

    async def build_unsigned_transfer(
        self,
        from_address: str,
        to_address: str,
        amount: Decimal,
        asset: AssetClass,
    ) -> UnsignedTransaction:
        units = to_minimal_units(amount, asset)
        instructions: list[CreateAssociatedAccount | Transfer] = []
        if asset == AssetClass.TOKEN and not await self._token_account_exists(
            Pubkey.from_string(to_address)
        ):
            instructions.append(CreateAssociatedAccount(payer=from_address, owner=to_address))
        instructions.append(
            Transfer(source=from_address, destination=to_address, units=units, asset=asset)
        )

        resp = await self._read(self._client.get_latest_blockhash, self._commitment)
        blockhash = str(resp.value.blockhash)
        self._prune_checkpoints(resp.value.last_valid_block_height - _BLOCKHASH_VALIDITY_BLOCKS)
        self._checkpoint_expiry[blockhash] = resp.value.last_valid_block_height

        return UnsignedTransaction(
            fee_payer=from_address,
            recent_checkpoint=blockhash,
            instructions=tuple(instructions),
            amount=from_minimal_units(units, asset),
            asset=asset,
        )

    async def submit_signed(self, signed: SignedTransaction) -> str:
        if not signed.payload:
            raise ValueError("Signed transaction carries no wire payload")
        with _translate_rpc_errors(tx_ref=signed.signature):
            resp = await self._client.send_raw_transaction(
                signed.payload,
                opts=TxOpts(skip_confirmation=True, preflight_commitment=self._commitment),
            )
        tx_ref = str(resp.value)
        self._tx_checkpoint[tx_ref] = signed.unsigned.recent_checkpoint
        logger.info("solana.tx_submitted", tx_ref=tx_ref, asset=signed.unsigned.asset.value)
        return tx_ref

    async def await_confirmation(self, tx_ref: str, timeout: float) -> TxOutcome:
        try:
            async with asyncio.timeout(timeout):
                while True:
                    outcome = await self.get_transaction_outcome(tx_ref)
                    if outcome.status != TxStatus.PENDING:
                        return outcome
                    await asyncio.sleep(_POLL_INTERVAL_SECONDS)
        except TimeoutError:
            return TxOutcome(
                tx_ref=tx_ref,
                status=TxStatus.PENDING,
                error_kind=LedgerErrorKind.TIMEOUT,
                message=f"not confirmed within {timeout}s",
            )

    async def get_transaction_outcome(self, tx_ref: str) -> TxOutcome:
        outcome = await self._read_outcome(tx_ref)
        if outcome.status != TxStatus.PENDING:
            self._tx_checkpoint.pop(tx_ref, None)
        return outcome

    async def _read_outcome(self, tx_ref: str) -> TxOutcome:
        resp = await self._read(
            self._client.get_signature_statuses, [Signature.from_string(tx_ref)], True
        )
        status = resp.value[0]

        if status is None:
            if await self._checkpoint_expired(tx_ref):
                return TxOutcome(
                    tx_ref=tx_ref,
                    status=TxStatus.FAILED,
                    error_kind=LedgerErrorKind.NETWORK,
                    message="Transaction never landed; blockhash expired",
                )
            return TxOutcome(tx_ref=tx_ref, status=TxStatus.PENDING)

        if status.err is not None:
            message = str(status.err)
            kind = (
                LedgerErrorKind.INSUFFICIENT_FUNDS
                if any(m in message.lower() for m in _INSUFFICIENT_MARKERS)
                else LedgerErrorKind.SIMULATION_FAILED
            )
            return TxOutcome(tx_ref=tx_ref, status=TxStatus.FAILED, error_kind=kind, message=message)

        level = str(status.confirmation_status).rsplit(".", 1)[-1].lower()
        wanted = {"confirmed", "finalized"} if self._commitment != "finalized" else {"finalized"}
        if level in wanted:
            return TxOutcome(tx_ref=tx_ref, status=TxStatus.CONFIRMED)
        return TxOutcome(tx_ref=tx_ref, status=TxStatus.PENDING)

    async def _checkpoint_expired(self, tx_ref: str) -> bool:
        blockhash = self._tx_checkpoint.get(tx_ref)
        expiry = self._checkpoint_expiry.get(blockhash) if blockhash else None
        if expiry is None:
            # Unknown after a restart: keep it pending and let an operator decide
            return False
        resp = await self._read(self._client.get_block_height, self._commitment)
        return resp.value > expiry

    def _prune_checkpoints(self, block_height: int) -> None:
        """Drop expired blockhashes that no tracked transaction still needs."""
        in_use = set(self._tx_checkpoint.values())
        for blockhash, expiry in list(self._checkpoint_expiry.items()):
            if expiry < block_height and blockhash not in in_use:
                del self._checkpoint_expiry[blockhash]


def to_solders_instruction(
    ix: CreateAssociatedAccount | Transfer,
    token_mint: Pubkey,
) -> Instruction:
    """Translate a ledger-neutral instruction into a Solana instruction."""
    if isinstance(ix, CreateAssociatedAccount):
        return create_associated_token_account(
            payer=Pubkey.from_string(ix.payer),
            owner=Pubkey.from_string(ix.owner),
            mint=token_mint,
        )

    source = Pubkey.from_string(ix.source)
    destination = Pubkey.from_string(ix.destination)
    if ix.asset == AssetClass.NATIVE:
        return system_transfer(
            SystemTransferParams(from_pubkey=source, to_pubkey=destination, lamports=ix.units)
        )
    return transfer_checked(
        TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=get_associated_token_address(source, token_mint),
            mint=token_mint,
            dest=get_associated_token_address(destination, token_mint),
            owner=source,
            amount=ix.units,
            decimals=ix.asset.decimals,
        )
    )


class KeypairSigner:
    """Signs custodial transfers with the vault keypair held in memory."""

    def __init__(self, keypair: Keypair, token_mint: str) -> None:
        self._keypair = keypair
        self._mint = Pubkey.from_string(token_mint)

    @classmethod
    def from_base58(cls, secret: str, token_mint: str) -> KeypairSigner:
        return cls(Keypair.from_base58_string(secret), token_mint)

    @property
    def address(self) -> str:
        return str(self._keypair.pubkey())

    async def sign(self, unsigned: UnsignedTransaction) -> SignedTransaction:
        if unsigned.fee_payer != self.address:
            raise UserRejectedError(
                f"Custodial key {self.address} cannot sign for fee payer {unsigned.fee_payer}"
            )
        blockhash = Hash.from_string(unsigned.recent_checkpoint)
        message = Message.new_with_blockhash(
            [to_solders_instruction(ix, self._mint) for ix in unsigned.instructions],
            self._keypair.pubkey(),
            blockhash,
        )
        tx = Transaction([self._keypair], message, blockhash)
        return SignedTransaction(
            unsigned=unsigned,
            signature=str(tx.signatures[0]),
            payload=bytes(tx),
        )
