"""Tests for Web3EscrowLedger error mapping and decoding.

RPC traffic is replaced by mocks; the ``integration`` test at the bottom
talks to a real endpoint when ESCROW_TEST_RPC_URL is set.
"""

from __future__ import annotations

import os
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest
from factories import ATTENDEE_WALLET, ORGANIZER_WALLET, OWNER_WALLET
from web3.exceptions import ContractLogicError, TransactionNotFound

from attendance_escrow.config import Settings
from attendance_escrow.domain.enums import StakeStatus
from attendance_escrow.domain.exceptions import LedgerRevertError, LedgerTransportError
from attendance_escrow.ledger import (
    SimulatedEscrowLedger,
    Web3EscrowLedger,
    create_ledger,
    hash_event_id,
)

CONTRACT = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
EVENT_HASH = hash_event_id("evt-1")


@pytest.fixture
def client() -> Web3EscrowLedger:
    return Web3EscrowLedger("http://localhost:8545", CONTRACT, chain_id=31337)


async def _refused():
    raise aiohttp.ClientConnectionError("connection refused")


class TestReads:
    @pytest.mark.asyncio
    async def test_get_stake_decodes_record(self, client) -> None:
        client._contract = MagicMock()
        client._contract.functions.getStake.return_value.call = AsyncMock(
            return_value=(10**16, ORGANIZER_WALLET, 1, 1_700_000_000, 1_700_100_000)
        )

        record = await client.get_stake(EVENT_HASH, ATTENDEE_WALLET)

        assert record.status == StakeStatus.STAKED
        assert record.amount_wei == 10**16
        assert record.organizer == ORGANIZER_WALLET.lower()
        assert record.attendee == ATTENDEE_WALLET.lower()

    @pytest.mark.asyncio
    async def test_contract_error_is_revert(self, client) -> None:
        client._contract = MagicMock()
        client._contract.functions.getStake.return_value.call = AsyncMock(
            side_effect=ContractLogicError("execution reverted")
        )
        with pytest.raises(LedgerRevertError):
            await client.get_stake(EVENT_HASH, ATTENDEE_WALLET)

    @pytest.mark.asyncio
    async def test_connection_error_is_transport(self, client) -> None:
        client._w3 = MagicMock()
        client._w3.eth.block_number = _refused()
        with pytest.raises(LedgerTransportError, match="block number"):
            await client.block_number()

    @pytest.mark.asyncio
    async def test_unknown_transaction(self, client) -> None:
        client._w3 = MagicMock()
        client._w3.eth.get_transaction = AsyncMock(side_effect=TransactionNotFound("missing"))
        assert await client.get_stake_deposit("0x" + "ab" * 32) is None

    @pytest.mark.asyncio
    async def test_transaction_to_other_contract_is_ignored(self, client) -> None:
        client._w3 = MagicMock()
        client._w3.eth.get_transaction = AsyncMock(
            return_value={"to": ORGANIZER_WALLET, "input": "0x", "hash": b"\x01" * 32}
        )
        client._w3.eth.get_transaction_receipt = AsyncMock(
            return_value={"status": 1, "blockNumber": 10}
        )
        assert await client.get_stake_deposit("0x" + "01" * 32) is None


class TestWrites:
    @pytest.mark.asyncio
    async def test_sender_without_key_is_revert(self, client) -> None:
        client._w3 = MagicMock()
        with pytest.raises(LedgerRevertError, match="no signing key"):
            await client.refund(EVENT_HASH, sender=ATTENDEE_WALLET)
        client._w3.eth.get_transaction_count.assert_not_called()


class TestCreateLedger:
    def test_simulated_by_default(self) -> None:
        ledger = create_ledger(Settings(_env_file=None, escrow_owner_address=OWNER_WALLET))
        assert isinstance(ledger, SimulatedEscrowLedger)
        assert ledger.owner == OWNER_WALLET.lower()

    def test_web3_backend(self) -> None:
        settings = Settings(
            _env_file=None,
            ledger_backend="web3",
            eth_rpc_url="http://localhost:8545",
            escrow_contract_address=CONTRACT,
        )
        assert isinstance(create_ledger(settings), Web3EscrowLedger)


@pytest.mark.integration
@pytest.mark.skipif(
    not os.environ.get("ESCROW_TEST_RPC_URL"), reason="ESCROW_TEST_RPC_URL not set"
)
class TestLiveEndpoint:
    @pytest.mark.asyncio
    async def test_block_number(self) -> None:
        client = Web3EscrowLedger(
            os.environ["ESCROW_TEST_RPC_URL"],
            os.environ.get("ESCROW_TEST_CONTRACT", CONTRACT),
            chain_id=int(os.environ.get("ESCROW_TEST_CHAIN_ID", "31337")),
        )
        assert await client.block_number() > 0
