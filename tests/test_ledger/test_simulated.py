"""Tests for the SimulatedEscrowLedger contract guards."""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from factories import (
    ATTENDEE_WALLET,
    NOW,
    ORGANIZER_WALLET,
    OWNER_WALLET,
    STAKE,
    FakeClock,
)

from attendance_escrow.domain.enums import StakeStatus
from attendance_escrow.domain.exceptions import LedgerRevertError, LedgerTransportError
from attendance_escrow.ledger import SimulatedEscrowLedger, hash_event_id, to_wei

EVENT_HASH = hash_event_id("event-1")
START = NOW + timedelta(days=2)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> SimulatedEscrowLedger:
    ledger = SimulatedEscrowLedger(OWNER_WALLET, clock=clock)
    ledger.fund(ATTENDEE_WALLET, to_wei(Decimal("1")))
    return ledger


async def _stake(ledger: SimulatedEscrowLedger, amount: Decimal = STAKE):
    return await ledger.stake(
        EVENT_HASH,
        ORGANIZER_WALLET,
        int(START.timestamp()),
        sender=ATTENDEE_WALLET,
        amount_wei=to_wei(amount),
    )


class TestStake:
    @pytest.mark.asyncio
    async def test_stake_records_deposit(self, ledger: SimulatedEscrowLedger) -> None:
        receipt = await _stake(ledger)

        record = await ledger.get_stake(EVENT_HASH, ATTENDEE_WALLET)
        assert record.status == StakeStatus.STAKED
        assert record.amount_wei == to_wei(STAKE)
        assert ledger.escrowed_wei == to_wei(STAKE)

        deposit = await ledger.get_stake_deposit(receipt.tx_hash)
        assert deposit is not None
        assert deposit.block_number == receipt.block_number
        assert deposit.organizer == ORGANIZER_WALLET.lower()

    @pytest.mark.asyncio
    async def test_below_minimum_reverts(self, ledger: SimulatedEscrowLedger) -> None:
        with pytest.raises(LedgerRevertError, match="minimum"):
            await _stake(ledger, Decimal("0.0001"))

    @pytest.mark.asyncio
    async def test_double_stake_reverts(self, ledger: SimulatedEscrowLedger) -> None:
        await _stake(ledger)
        with pytest.raises(LedgerRevertError, match="already exists"):
            await _stake(ledger)

    @pytest.mark.asyncio
    async def test_unknown_stake_reads_none(self, ledger: SimulatedEscrowLedger) -> None:
        record = await ledger.get_stake(EVENT_HASH, ORGANIZER_WALLET)
        assert record.status == StakeStatus.NONE
        assert await ledger.get_stake_deposit("0xdeadbeef") is None


class TestSettlement:
    @pytest.mark.asyncio
    async def test_release_pays_organizer_once(self, ledger: SimulatedEscrowLedger) -> None:
        await _stake(ledger)

        await ledger.release(EVENT_HASH, ATTENDEE_WALLET, sender=OWNER_WALLET)
        assert ledger.balance_of(ORGANIZER_WALLET) == to_wei(STAKE)
        assert ledger.escrowed_wei == 0

        with pytest.raises(LedgerRevertError, match="no active stake"):
            await ledger.release(EVENT_HASH, ATTENDEE_WALLET, sender=OWNER_WALLET)
        record = await ledger.get_stake(EVENT_HASH, ATTENDEE_WALLET)
        assert record.status == StakeStatus.RELEASED

    @pytest.mark.asyncio
    async def test_release_by_stranger_reverts(self, ledger: SimulatedEscrowLedger) -> None:
        await _stake(ledger)
        with pytest.raises(LedgerRevertError, match="not organizer or owner"):
            await ledger.release(EVENT_HASH, ATTENDEE_WALLET, sender=ATTENDEE_WALLET)

    @pytest.mark.asyncio
    async def test_refund_before_cutoff(self, ledger: SimulatedEscrowLedger) -> None:
        await _stake(ledger)
        before = ledger.balance_of(ATTENDEE_WALLET)

        await ledger.refund(EVENT_HASH, sender=ATTENDEE_WALLET)
        assert ledger.balance_of(ATTENDEE_WALLET) == before + to_wei(STAKE)

    @pytest.mark.asyncio
    async def test_refund_at_cutoff_reverts(
        self, ledger: SimulatedEscrowLedger, clock: FakeClock
    ) -> None:
        await _stake(ledger)
        clock.set(START - timedelta(hours=1))
        with pytest.raises(LedgerRevertError, match="refund window closed"):
            await ledger.refund(EVENT_HASH, sender=ATTENDEE_WALLET)

    @pytest.mark.asyncio
    async def test_forfeit_before_start_reverts(self, ledger: SimulatedEscrowLedger) -> None:
        await _stake(ledger)
        with pytest.raises(LedgerRevertError, match="not started"):
            await ledger.forfeit(EVENT_HASH, ATTENDEE_WALLET, sender=OWNER_WALLET)

    @pytest.mark.asyncio
    async def test_forfeit_after_start(
        self, ledger: SimulatedEscrowLedger, clock: FakeClock
    ) -> None:
        await _stake(ledger)
        clock.set(START + timedelta(hours=5))
        await ledger.forfeit(EVENT_HASH, ATTENDEE_WALLET, sender=ORGANIZER_WALLET)

        record = await ledger.get_stake(EVENT_HASH, ATTENDEE_WALLET)
        assert record.status == StakeStatus.FORFEITED
        assert ledger.balance_of(ORGANIZER_WALLET) == to_wei(STAKE)


class TestFaultInjection:
    @pytest.mark.asyncio
    async def test_fail_next_raises_transport_error(self, ledger: SimulatedEscrowLedger) -> None:
        ledger.fail_next("block_number", times=2)
        for _ in range(2):
            with pytest.raises(LedgerTransportError):
                await ledger.block_number()
        assert await ledger.block_number() == 0
        assert ledger.call_count("block_number") == 3

    @pytest.mark.asyncio
    async def test_mine_advances_head(self, ledger: SimulatedEscrowLedger) -> None:
        receipt = await _stake(ledger)
        ledger.mine(2)
        assert await ledger.block_number() == receipt.block_number + 2
