"""Escrow Ledger Protocol.

Defines the interface of the external EventEscrow contract the coordinator
depends on. This is a Protocol (structural subtyping) so ledger clients don't
need to inherit from a base class — they just need to match the shape.

The ledger holds one stake per (event, attendee) and is mutated only through
four guarded operations:

    stake    payable, amount >= minimum stake, only when no record exists
    release  organizer/owner only, Staked -> Released, pays the organizer
    refund   attendee only, Staked and now < start - refund cutoff -> Refunded
    forfeit  organizer/owner only, Staked and now >= start -> Forfeited

Guard failures raise LedgerRevertError. Network failures raise
LedgerTransportError and mean the outcome is unknown.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from attendance_escrow.domain.models import LedgerReceipt, StakeDeposit, StakeRecord


@runtime_checkable
class EscrowLedger(Protocol):
    """Protocol that all ledger clients must satisfy.

    Concrete implementations:
        - ledger/simulated.py   (in-process contract model)
        - ledger/web3_client.py (JSON-RPC via web3.py)
    """

    async def get_stake(self, event_id_hash: str, attendee: str) -> StakeRecord:
        """Read the current record; status NONE when nothing was staked."""
        ...

    async def get_stake_deposit(self, tx_ref: str) -> StakeDeposit | None:
        """Decode a mined ``stake`` transaction, or None if unknown / not a stake."""
        ...

    async def block_number(self) -> int: ...

    async def stake(
        self,
        event_id_hash: str,
        organizer: str,
        event_start_time: int,
        *,
        sender: str,
        amount_wei: int,
    ) -> LedgerReceipt: ...

    async def release(
        self, event_id_hash: str, attendee: str, *, sender: str
    ) -> LedgerReceipt: ...

    async def refund(self, event_id_hash: str, *, sender: str) -> LedgerReceipt: ...

    async def forfeit(
        self, event_id_hash: str, attendee: str, *, sender: str
    ) -> LedgerReceipt: ...
