"""Ledger adapters and the factory that picks one from settings.

The Solana adapter is imported lazily so the simulated ledger (tests,
simulation script, local dev) never needs an RPC endpoint or key material.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from phasion_escrow.infrastructure.ledger.simulated import (
    SimulatedLedgerClient,
    SimulatedSigner,
)
from phasion_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from phasion_escrow.config import Settings
    from phasion_escrow.domain.ledger_protocol import LedgerClient, TransactionSigner

logger = get_logger(__name__)


@dataclass
class LedgerContext:
    """Ledger client plus the custodial signing handle, built once per process."""

    client: LedgerClient
    custodial_signer: TransactionSigner
    simulated: bool

    async def close(self) -> None:
        close = getattr(self.client, "close", None)
        if close is not None:
            await close()


def build_ledger(settings: Settings) -> LedgerContext:
    """Build the ledger client and custodial signer selected by `ledger_simulate`."""
    if settings.ledger_simulate:
        client = SimulatedLedgerClient()
        logger.info("ledger.simulated", vault=client.custodial_address)
        return LedgerContext(
            client=client,
            custodial_signer=SimulatedSigner(client.custodial_address),
            simulated=True,
        )

    from phasion_escrow.infrastructure.ledger.solana_client import (
        KeypairSigner,
        SolanaLedgerClient,
    )

    if not settings.vault_private_key:
        raise RuntimeError("vault_private_key must be set when ledger_simulate is false")

    signer = KeypairSigner.from_base58(settings.vault_private_key, settings.token_mint_address)
    vault = settings.vault_wallet_address or signer.address
    if vault != signer.address:
        raise RuntimeError("vault_wallet_address does not match vault_private_key")

    client = SolanaLedgerClient(
        rpc_url=settings.solana_rpc_url,
        custodial_address=vault,
        token_mint=settings.token_mint_address,
        commitment=settings.ledger_commitment,
        read_retries=settings.ledger_read_retries,
    )
    logger.info("ledger.solana", rpc_url=settings.solana_rpc_url, vault=vault)
    return LedgerContext(client=client, custodial_signer=signer, simulated=False)


__all__ = [
    "LedgerContext",
    "SimulatedLedgerClient",
    "SimulatedSigner",
    "build_ledger",
]
