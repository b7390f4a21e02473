"""Serialized access to the custodial signing key.

Every release or refund builds a transaction with a freshly issued ledger
checkpoint and signs it with the single vault key. `CustodialSigner` lets
exactly one such operation run at a time per process (asyncio.Lock) and,
when Redis is configured, across processes (Redis lock).
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING

from redis.exceptions import LockError, RedisError

from phasion_escrow.domain.exceptions import LedgerTransientError
from phasion_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from redis.asyncio.lock import Lock as RedisLock

    from phasion_escrow.domain.ledger_protocol import (
        SignedTransaction,
        TransactionSigner,
        UnsignedTransaction,
    )

logger = get_logger(__name__)


class CustodialSigner:
    """Single-writer wrapper around the vault's TransactionSigner."""

    def __init__(
        self,
        signer: TransactionSigner,
        lock_timeout: float = 120.0,
        distributed_lock: Callable[[float], RedisLock | None] | None = None,
    ) -> None:
        self._signer = signer
        self._lock = asyncio.Lock()
        self._lock_timeout = lock_timeout
        self._distributed_lock = distributed_lock

    @property
    def address(self) -> str:
        return self._signer.address

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextlib.asynccontextmanager
    async def serialized(self) -> AsyncIterator[None]:
        """Hold the custodial key for the duration of one payout."""
        async with self._lock:
            dlock = self._distributed_lock(self._lock_timeout) if self._distributed_lock else None
            if dlock is None:
                yield
                return

            try:
                acquired = await dlock.acquire()
            except RedisError as exc:
                raise LedgerTransientError(f"Custodial lock unavailable: {exc}") from exc
            if not acquired:
                raise LedgerTransientError("Custodial signer busy in another worker; retry")
            try:
                yield
            finally:
                try:
                    await dlock.release()
                except LockError as exc:
                    logger.warning("custodial.lock_release_failed", error=str(exc))

    async def sign(self, unsigned: UnsignedTransaction) -> SignedTransaction:
        if not self._lock.locked():
            raise RuntimeError("Custodial signing requires CustodialSigner.serialized()")
        return await self._signer.sign(unsigned)
