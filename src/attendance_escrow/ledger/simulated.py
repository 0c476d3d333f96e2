"""In-process model of the EventEscrow contract.

Used in development (``ledger_backend=simulated``) and throughout the test
suite. It enforces the same guards as the deployed contract, keeps native
balances so payouts can be asserted, and numbers blocks so confirmation
depth can be exercised with ``mine()``.

Fault injection:
    ledger.fail_next("release", times=2)   # next two release calls raise LedgerTransportError
    ledger.delay_next("get_stake", 5.0)    # next get_stake sleeps 5s (timeout tests)
"""

from __future__ import annotations

import asyncio
import secrets
from collections import defaultdict
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING

from attendance_escrow.domain.enums import StakeStatus
from attendance_escrow.domain.exceptions import LedgerRevertError, LedgerTransportError
from attendance_escrow.domain.models import LedgerReceipt, StakeDeposit, StakeRecord
from attendance_escrow.ledger.encoding import ZERO_ADDRESS, to_wei
from attendance_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Callable

logger = get_logger(__name__)

MINIMUM_STAKE_WEI = to_wei(Decimal("0.001"))
DEFAULT_REFUND_CUTOFF = timedelta(hours=1)


class SimulatedEscrowLedger:
    """Simulated EventEscrow contract with balances, blocks and guards."""

    def __init__(
        self,
        owner: str,
        *,
        clock: Callable[[], datetime] | None = None,
        minimum_stake_wei: int = MINIMUM_STAKE_WEI,
        refund_cutoff: timedelta = DEFAULT_REFUND_CUTOFF,
    ) -> None:
        self.owner = owner.lower()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._minimum_stake_wei = minimum_stake_wei
        self._refund_cutoff_seconds = int(refund_cutoff.total_seconds())

        self._stakes: dict[tuple[str, str], StakeRecord] = {}
        self._deposits: dict[str, StakeDeposit] = {}
        self._balances: dict[str, int] = defaultdict(int)
        self._block = 0
        self.escrowed_wei = 0

        self._faults: dict[str, int] = defaultdict(int)
        self._delays: dict[str, float] = {}
        self.calls: list[tuple[str, tuple]] = []

    # ------------------------------------------------------------------
    # Test / dev controls
    # ------------------------------------------------------------------

    def fund(self, address: str, amount_wei: int) -> None:
        self._balances[address.lower()] += amount_wei

    def balance_of(self, address: str) -> int:
        return self._balances[address.lower()]

    def mine(self, blocks: int = 1) -> int:
        self._block += blocks
        return self._block

    def fail_next(self, operation: str, times: int = 1) -> None:
        self._faults[operation] += times

    def delay_next(self, operation: str, seconds: float) -> None:
        self._delays[operation] = seconds

    def call_count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_stake(self, event_id_hash: str, attendee: str) -> StakeRecord:
        await self._enter("get_stake", event_id_hash, attendee)
        record = self._stakes.get((event_id_hash, attendee.lower()))
        if record is None:
            return StakeRecord(
                event_id_hash=event_id_hash,
                attendee=attendee.lower(),
                organizer=ZERO_ADDRESS,
                amount_wei=0,
                status=StakeStatus.NONE,
            )
        return record

    async def get_stake_deposit(self, tx_ref: str) -> StakeDeposit | None:
        await self._enter("get_stake_deposit", tx_ref)
        return self._deposits.get(tx_ref.lower())

    async def block_number(self) -> int:
        await self._enter("block_number")
        return self._block

    # ------------------------------------------------------------------
    # Guarded writes
    # ------------------------------------------------------------------

    async def stake(
        self,
        event_id_hash: str,
        organizer: str,
        event_start_time: int,
        *,
        sender: str,
        amount_wei: int,
    ) -> LedgerReceipt:
        await self._enter("stake", event_id_hash, organizer, event_start_time, sender, amount_wei)
        attendee = sender.lower()
        key = (event_id_hash, attendee)

        if amount_wei < self._minimum_stake_wei:
            raise LedgerRevertError("stake", "amount below minimum stake")
        existing = self._stakes.get(key)
        if existing is not None and existing.status != StakeStatus.NONE:
            raise LedgerRevertError("stake", "stake already exists")
        if self._balances[attendee] < amount_wei:
            raise LedgerRevertError("stake", "insufficient balance")

        self._balances[attendee] -= amount_wei
        self.escrowed_wei += amount_wei
        receipt = self._mine_tx()
        self._stakes[key] = StakeRecord(
            event_id_hash=event_id_hash,
            attendee=attendee,
            organizer=organizer.lower(),
            amount_wei=amount_wei,
            status=StakeStatus.STAKED,
            staked_at=self._now_ts(),
            event_start_time=event_start_time,
        )
        self._deposits[receipt.tx_hash] = StakeDeposit(
            tx_hash=receipt.tx_hash,
            attendee=attendee,
            organizer=organizer.lower(),
            event_id_hash=event_id_hash,
            amount_wei=amount_wei,
            block_number=receipt.block_number,
            succeeded=True,
            event_start_time=event_start_time,
        )
        logger.debug("ledger.staked", tx_hash=receipt.tx_hash, attendee=attendee)
        return receipt

    async def release(self, event_id_hash: str, attendee: str, *, sender: str) -> LedgerReceipt:
        await self._enter("release", event_id_hash, attendee, sender)
        record = self._active_record("release", event_id_hash, attendee)
        self._require_organizer_or_owner("release", record, sender)
        return self._settle(record, StakeStatus.RELEASED, payee=record.organizer)

    async def refund(self, event_id_hash: str, *, sender: str) -> LedgerReceipt:
        await self._enter("refund", event_id_hash, sender)
        record = self._active_record("refund", event_id_hash, sender)
        if self._now_ts() >= record.event_start_time - self._refund_cutoff_seconds:
            raise LedgerRevertError("refund", "refund window closed")
        return self._settle(record, StakeStatus.REFUNDED, payee=record.attendee)

    async def forfeit(self, event_id_hash: str, attendee: str, *, sender: str) -> LedgerReceipt:
        await self._enter("forfeit", event_id_hash, attendee, sender)
        record = self._active_record("forfeit", event_id_hash, attendee)
        self._require_organizer_or_owner("forfeit", record, sender)
        if self._now_ts() < record.event_start_time:
            raise LedgerRevertError("forfeit", "event has not started")
        return self._settle(record, StakeStatus.FORFEITED, payee=record.organizer)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _enter(self, operation: str, *args: object) -> None:
        self.calls.append((operation, args))
        delay = self._delays.pop(operation, None)
        if delay:
            await asyncio.sleep(delay)
        if self._faults[operation] > 0:
            self._faults[operation] -= 1
            raise LedgerTransportError(f"simulated RPC failure during {operation}")

    def _active_record(self, operation: str, event_id_hash: str, attendee: str) -> StakeRecord:
        record = self._stakes.get((event_id_hash, attendee.lower()))
        if record is None or record.status != StakeStatus.STAKED:
            raise LedgerRevertError(operation, "no active stake")
        return record

    def _require_organizer_or_owner(self, operation: str, record: StakeRecord, sender: str) -> None:
        if sender.lower() not in (self.owner, record.organizer):
            raise LedgerRevertError(operation, "caller is not organizer or owner")

    def _settle(self, record: StakeRecord, status: StakeStatus, payee: str) -> LedgerReceipt:
        self.escrowed_wei -= record.amount_wei
        self._balances[payee] += record.amount_wei
        self._stakes[(record.event_id_hash, record.attendee)] = replace(record, status=status)
        receipt = self._mine_tx()
        logger.debug(
            "ledger.settled",
            status=status.name,
            attendee=record.attendee,
            tx_hash=receipt.tx_hash,
        )
        return receipt

    def _mine_tx(self) -> LedgerReceipt:
        self._block += 1
        return LedgerReceipt(tx_hash="0x" + secrets.token_hex(32), block_number=self._block)

    def _now_ts(self) -> int:
        return int(self._clock().timestamp())
