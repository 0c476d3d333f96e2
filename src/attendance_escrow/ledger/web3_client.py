"""EventEscrow client over JSON-RPC using web3.py.

Reads go through ``eth_call``; writes are built, signed locally with one of
the configured signer keys, broadcast, and awaited until mined. A write
whose ``sender`` has no local key cannot be signed here (an attendee's
refund, for instance, is sent from the attendee's own wallet) and is
reported as a revert so the coordinator falls back to reading the record.

Errors are mapped onto the domain taxonomy:
    - ContractLogicError / failed receipt  -> LedgerRevertError
    - connection errors / timeouts         -> LedgerTransportError
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import aiohttp
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound

from attendance_escrow.domain.enums import StakeStatus
from attendance_escrow.domain.exceptions import LedgerRevertError, LedgerTransportError
from attendance_escrow.domain.models import LedgerReceipt, StakeDeposit, StakeRecord
from attendance_escrow.ledger.abi import ESCROW_ABI
from attendance_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount

logger = get_logger(__name__)

_TRANSPORT_ERRORS = (aiohttp.ClientError, OSError, TimeoutError, TimeExhausted)


class Web3EscrowLedger:
    """Talks to a deployed EventEscrow contract."""

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        chain_id: int,
        signer_private_keys: list[str] | None = None,
        receipt_timeout_seconds: float = 120.0,
    ) -> None:
        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._address = Web3.to_checksum_address(contract_address)
        self._contract = self._w3.eth.contract(address=self._address, abi=ESCROW_ABI)
        self._chain_id = chain_id
        self._receipt_timeout = receipt_timeout_seconds
        self._accounts: dict[str, LocalAccount] = {}
        for key in signer_private_keys or []:
            account = Account.from_key(key)
            self._accounts[account.address.lower()] = account

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_stake(self, event_id_hash: str, attendee: str) -> StakeRecord:
        try:
            amount, organizer, status, staked_at, start = await self._contract.functions.getStake(
                Web3.to_bytes(hexstr=event_id_hash),
                Web3.to_checksum_address(attendee),
            ).call()
        except ContractLogicError as err:
            raise LedgerRevertError("getStake", str(err)) from err
        except _TRANSPORT_ERRORS as err:
            raise LedgerTransportError(f"getStake failed: {err}") from err

        return StakeRecord(
            event_id_hash=event_id_hash,
            attendee=attendee.lower(),
            organizer=organizer.lower(),
            amount_wei=int(amount),
            status=StakeStatus(status),
            staked_at=int(staked_at),
            event_start_time=int(start),
        )

    async def get_stake_deposit(self, tx_ref: str) -> StakeDeposit | None:
        try:
            tx = await self._w3.eth.get_transaction(tx_ref)
            receipt = await self._w3.eth.get_transaction_receipt(tx_ref)
        except TransactionNotFound:
            return None
        except _TRANSPORT_ERRORS as err:
            raise LedgerTransportError(f"transaction lookup failed: {err}") from err

        if tx.get("to") is None or tx["to"].lower() != self._address.lower():
            return None
        try:
            function, params = self._contract.decode_function_input(tx["input"])
        except ValueError:
            return None
        if function.fn_name != "stake":
            return None

        return StakeDeposit(
            tx_hash=Web3.to_hex(tx["hash"]),
            attendee=tx["from"].lower(),
            organizer=params["organizer"].lower(),
            event_id_hash=Web3.to_hex(params["eventId"]),
            amount_wei=int(tx["value"]),
            block_number=int(receipt["blockNumber"]),
            succeeded=receipt["status"] == 1,
            event_start_time=int(params["eventStartTime"]),
        )

    async def block_number(self) -> int:
        try:
            return int(await self._w3.eth.block_number)
        except _TRANSPORT_ERRORS as err:
            raise LedgerTransportError(f"block number lookup failed: {err}") from err

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
        fn = self._contract.functions.stake(
            Web3.to_bytes(hexstr=event_id_hash),
            Web3.to_checksum_address(organizer),
            event_start_time,
        )
        return await self._transact("stake", fn, sender, value=amount_wei)

    async def release(self, event_id_hash: str, attendee: str, *, sender: str) -> LedgerReceipt:
        fn = self._contract.functions.release(
            Web3.to_bytes(hexstr=event_id_hash),
            Web3.to_checksum_address(attendee),
        )
        return await self._transact("release", fn, sender)

    async def refund(self, event_id_hash: str, *, sender: str) -> LedgerReceipt:
        fn = self._contract.functions.refund(Web3.to_bytes(hexstr=event_id_hash))
        return await self._transact("refund", fn, sender)

    async def forfeit(self, event_id_hash: str, attendee: str, *, sender: str) -> LedgerReceipt:
        fn = self._contract.functions.forfeit(
            Web3.to_bytes(hexstr=event_id_hash),
            Web3.to_checksum_address(attendee),
        )
        return await self._transact("forfeit", fn, sender)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transact(self, operation: str, fn: Any, sender: str, value: int = 0) -> LedgerReceipt:
        account = self._accounts.get(sender.lower())
        if account is None:
            raise LedgerRevertError(operation, f"no signing key for {sender}")

        try:
            nonce = await self._w3.eth.get_transaction_count(account.address, "pending")
            tx = await fn.build_transaction(
                {
                    "from": account.address,
                    "nonce": nonce,
                    "chainId": self._chain_id,
                    "value": value,
                }
            )
            signed = account.sign_transaction(tx)
            tx_hash = await self._w3.eth.send_raw_transaction(signed.raw_transaction)
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout
            )
        except ContractLogicError as err:
            raise LedgerRevertError(operation, str(err)) from err
        except _TRANSPORT_ERRORS as err:
            raise LedgerTransportError(f"{operation} failed: {err}") from err

        hex_hash = Web3.to_hex(tx_hash)
        if receipt["status"] != 1:
            raise LedgerRevertError(operation, f"transaction {hex_hash} reverted")

        logger.info(
            "ledger.transaction_mined",
            operation=operation,
            tx_hash=hex_hash,
            block=receipt["blockNumber"],
        )
        return LedgerReceipt(tx_hash=hex_hash, block_number=int(receipt["blockNumber"]))
