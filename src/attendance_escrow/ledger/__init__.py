"""Escrow ledger clients and the process-wide ledger singleton.

Two implementations of the EscrowLedger protocol:
    - SimulatedEscrowLedger:  In-process contract model (dev, tests)
    - Web3EscrowLedger:       Deployed EventEscrow contract over JSON-RPC

``create_ledger`` picks one from ``settings.ledger_backend``. The app
lifespan calls ``init_ledger`` once; request handlers use ``get_ledger``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from attendance_escrow.domain.ledger_protocol import EscrowLedger
from attendance_escrow.ledger.encoding import from_wei, hash_event_id, same_address, to_wei
from attendance_escrow.ledger.simulated import SimulatedEscrowLedger
from attendance_escrow.ledger.web3_client import Web3EscrowLedger
from attendance_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from attendance_escrow.config import Settings

logger = get_logger(__name__)

_ledger: EscrowLedger | None = None


def create_ledger(settings: Settings) -> EscrowLedger:
    """Build the ledger client configured by ``settings.ledger_backend``."""
    if settings.ledger_backend == "web3":
        return Web3EscrowLedger(
            rpc_url=settings.eth_rpc_url,
            contract_address=settings.escrow_contract_address,
            chain_id=settings.chain_id,
            signer_private_keys=settings.signer_private_key_list,
        )
    return SimulatedEscrowLedger(
        owner=settings.escrow_owner_address,
        refund_cutoff=settings.refund_cutoff,
    )


def init_ledger(settings: Settings) -> EscrowLedger:
    """Create the singleton ledger client. Called during app startup."""
    global _ledger
    _ledger = create_ledger(settings)
    logger.info("ledger.initialized", backend=settings.ledger_backend, chain_id=settings.chain_id)
    return _ledger


def get_ledger() -> EscrowLedger:
    """Return the ledger singleton. Must call init_ledger() first."""
    if _ledger is None:
        raise RuntimeError("Ledger not initialized. Call init_ledger() first.")
    return _ledger


def close_ledger() -> None:
    global _ledger
    _ledger = None


__all__ = [
    "EscrowLedger",
    "SimulatedEscrowLedger",
    "Web3EscrowLedger",
    "close_ledger",
    "create_ledger",
    "from_wei",
    "get_ledger",
    "hash_event_id",
    "init_ledger",
    "same_address",
    "to_wei",
]
