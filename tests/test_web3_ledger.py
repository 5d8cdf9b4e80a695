"""Tests pour l'adaptateur web3: erreurs RPC/contrat, nonce, profondeur de confirmation et
décodage des reçus.

Le client AsyncWeb3 est remplacé par des mocks; aucun nœud n'est contacté.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_utils import keccak
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception

from anchor_backend.domain.errors import ErrorKind, LedgerError, NotFound
from anchor_backend.domain.hash_binder import bind, to_bytes32
from anchor_backend.domain.receipt_parser import ZERO_ADDRESS, parse_created_id
from anchor_backend.infra.ledger.web3_client import Web3Ledger, load_abi

PRIVATE_KEY = "0x" + "11" * 32
CONTRACT = "0x" + "22" * 20
OWNER = "0x" + "ab" * 20
RAW_TX = b"\x02signed"
TX_HASH = b"\x0a" * 32
COMMITMENT = bind("ipfs://Qm1")


class _Const:
    """Valeur attendable plusieurs fois (ex: `await w3.eth.chain_id`)."""

    def __init__(self, value):
        self.value = value

    def __await__(self):
        if False:  # pragma: no cover
            yield
        return self.value


class _Heads:
    """Hauteurs de chaîne successives renvoyées par `await w3.eth.block_number`."""

    def __init__(self, *values):
        self.values = list(values)

    def __await__(self):
        if False:  # pragma: no cover
            yield
        return self.values.pop(0)


def _ledger(**kwargs):
    w3 = MagicMock()
    w3.eth.get_transaction_count = AsyncMock(return_value=7)
    w3.eth.chain_id = _Const(31337)
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"")
    ledger = Web3Ledger("http://node.test", PRIVATE_KEY, CONTRACT, load_abi(), w3=w3, **kwargs)
    contract = w3.eth.contract.return_value
    contract.functions.safeMint.return_value.build_transaction = AsyncMock(
        return_value={"nonce": 7}
    )
    ledger._account = MagicMock(address=ledger.signer)
    ledger._account.sign_transaction.return_value = SimpleNamespace(raw_transaction=RAW_TX)
    return ledger, w3, contract


def test_load_abi_bundled_surface():
    abi = load_abi()
    names = {entry.get("name") for entry in abi}
    assert {"safeMint", "commitEvolution", "tokenURI", "Transfer"} <= names


@pytest.mark.asyncio
async def test_submit_create_returns_pending_and_advances_nonce():
    ledger, w3, contract = _ledger()

    pending = await ledger.submit_create(OWNER, "ipfs://Qm1", bind("ipfs://Qm1"))
    second = await ledger.submit_create(OWNER, "ipfs://Qm2", bind("ipfs://Qm2"))

    assert pending.tx_hash == "0x" + keccak(RAW_TX).hex()
    assert pending.nonce == 7
    assert second.nonce == 8
    w3.eth.get_transaction_count.assert_awaited_once()
    args = contract.functions.safeMint.call_args_list[0].args
    assert args[1] == "ipfs://Qm1"
    assert len(args[2]) == 32


@pytest.mark.asyncio
async def test_contract_revert_during_build_is_permanent():
    ledger, _w3, contract = _ledger()
    contract.functions.safeMint.return_value.build_transaction = AsyncMock(
        side_effect=ContractLogicError("execution reverted: ERC721InvalidReceiver")
    )

    with pytest.raises(LedgerError) as exc_info:
        await ledger.submit_create(OWNER, "ipfs://Qm1", bind("ipfs://Qm1"))

    assert exc_info.value.kind is ErrorKind.REVERTED
    assert not exc_info.value.transient


@pytest.mark.asyncio
async def test_unreachable_node_is_transient_and_resets_nonce():
    ledger, w3, _contract = _ledger()
    w3.eth.send_raw_transaction = AsyncMock(side_effect=ConnectionRefusedError("refused"))

    with pytest.raises(LedgerError) as exc_info:
        await ledger.submit_create(OWNER, "ipfs://Qm1", bind("ipfs://Qm1"))

    assert exc_info.value.transient
    assert not exc_info.value.broadcast
    w3.eth.send_raw_transaction = AsyncMock(return_value=b"")
    await ledger.submit_create(OWNER, "ipfs://Qm1", bind("ipfs://Qm1"))
    assert w3.eth.get_transaction_count.await_count == 2


@pytest.mark.asyncio
async def test_ambiguous_send_failure_is_marked_broadcast():
    ledger, w3, _contract = _ledger()
    w3.eth.send_raw_transaction = AsyncMock(side_effect=Web3Exception("request timed out"))

    with pytest.raises(LedgerError) as exc_info:
        await ledger.submit_create(OWNER, "ipfs://Qm1", bind("ipfs://Qm1"))

    err = exc_info.value
    assert err.broadcast
    assert not err.transient
    assert err.tx_hash == "0x" + keccak(RAW_TX).hex()


@pytest.mark.asyncio
async def test_read_uri_unknown_token_is_not_found():
    ledger, _w3, contract = _ledger()
    contract.functions.tokenURI.return_value.call = AsyncMock(
        side_effect=ContractLogicError("ERC721NonexistentToken(9)")
    )

    with pytest.raises(NotFound):
        await ledger.read_uri(9)


@pytest.mark.asyncio
async def test_read_uri_at_block():
    ledger, _w3, contract = _ledger()
    call = AsyncMock(return_value="ipfs://Qm1")
    contract.functions.tokenURI.return_value.call = call

    assert await ledger.read_uri(1, block=12) == "ipfs://Qm1"
    call.assert_awaited_once_with(block_identifier=12)


@pytest.mark.asyncio
async def test_get_receipt_pending_and_unknown():
    ledger, w3, _contract = _ledger()
    w3.eth.get_transaction_receipt = AsyncMock(side_effect=TransactionNotFound("pending"))
    w3.eth.get_transaction = AsyncMock(return_value={"hash": "0x01"})
    assert await ledger.get_receipt("0x" + "01" * 32) is None

    w3.eth.get_transaction = AsyncMock(side_effect=TransactionNotFound("unknown"))
    with pytest.raises(NotFound):
        await ledger.get_receipt("0x" + "01" * 32)


@pytest.mark.asyncio
async def test_send_timeout_is_ambiguous_not_retryable():
    ledger, w3, _contract = _ledger()
    w3.eth.send_raw_transaction = AsyncMock(side_effect=asyncio.TimeoutError("read timed out"))

    with pytest.raises(LedgerError) as exc_info:
        await ledger.submit_create(OWNER, "ipfs://Qm1", bind("ipfs://Qm1"))

    err = exc_info.value
    assert err.broadcast
    assert not err.transient
    assert err.tx_hash == "0x" + keccak(RAW_TX).hex()
    assert ledger._nonce is None


def _raw_receipt(block: int = 10) -> dict:
    return {"transactionHash": TX_HASH, "blockNumber": block, "status": 1, "logs": []}


def _with_decoded_mint(w3, contract) -> None:
    contract.events.Transfer.return_value.process_receipt.return_value = [
        {
            "event": "Transfer",
            "args": {"from": ZERO_ADDRESS, "to": OWNER, "tokenId": 5},
            "logIndex": 3,
            "address": CONTRACT,
        }
    ]
    contract.events.EvolutionCommitted.return_value.process_receipt.return_value = [
        {
            "event": "EvolutionCommitted",
            "args": {"tokenId": 5, "newUri": "ipfs://Qm1", "newHash": to_bytes32(COMMITMENT)},
            "logIndex": 1,
            "address": CONTRACT,
        }
    ]
    w3.eth.get_transaction = AsyncMock(return_value={"input": "0xdeadbeef"})
    contract.decode_function_input.return_value = (
        MagicMock(),
        {"to": OWNER, "uri": "ipfs://Qm1", "metadataHash": to_bytes32(COMMITMENT)},
    )


@pytest.mark.asyncio
async def test_await_confirmation_waits_for_depth():
    ledger, w3, contract = _ledger(poll_interval=0)
    _with_decoded_mint(w3, contract)
    w3.eth.get_transaction_receipt = AsyncMock(
        side_effect=[TransactionNotFound("pending"), _raw_receipt(), _raw_receipt(), _raw_receipt()]
    )
    w3.eth.block_number = _Heads(10, 11, 12)

    receipt = await ledger.await_confirmation(SimpleNamespace(tx_hash="0x" + "0a" * 32), 3)

    assert w3.eth.get_transaction_receipt.await_count == 4
    assert receipt.block_number == 10
    assert receipt.succeeded


@pytest.mark.asyncio
async def test_await_confirmation_keeps_polling_through_rpc_errors():
    ledger, w3, contract = _ledger(poll_interval=0)
    _with_decoded_mint(w3, contract)
    w3.eth.get_transaction_receipt = AsyncMock(
        side_effect=[ConnectionResetError("reset"), _raw_receipt()]
    )
    w3.eth.block_number = _Heads(10)

    receipt = await ledger.await_confirmation(SimpleNamespace(tx_hash="0x" + "0a" * 32), 1)

    assert receipt.tx_hash == "0x" + "0a" * 32


@pytest.mark.asyncio
async def test_receipt_decodes_events_and_submitted_arguments():
    ledger, w3, contract = _ledger()
    _with_decoded_mint(w3, contract)
    w3.eth.get_transaction_receipt = AsyncMock(return_value=_raw_receipt(block=7))

    receipt = await ledger.get_receipt("0x" + "0a" * 32)

    assert receipt.tx_hash == "0x" + "0a" * 32
    assert receipt.block_number == 7
    assert [entry.event for entry in receipt.logs] == ["EvolutionCommitted", "Transfer"]
    assert receipt.logs[1].args["tokenId"] == 5
    assert receipt.logs[1].address == CONTRACT
    assert receipt.committed_reference == "ipfs://Qm1"
    assert receipt.committed_hash == COMMITMENT
    assert parse_created_id(receipt) == 5
    w3.eth.get_transaction.assert_awaited_once_with("0x" + "0a" * 32)


@pytest.mark.asyncio
async def test_undecodable_input_leaves_submitted_arguments_unknown():
    ledger, w3, contract = _ledger()
    _with_decoded_mint(w3, contract)
    contract.decode_function_input.side_effect = ValueError("Could not find any function")
    w3.eth.get_transaction_receipt = AsyncMock(return_value=_raw_receipt())

    receipt = await ledger.get_receipt("0x" + "0a" * 32)

    assert receipt.committed_reference is None
    assert receipt.committed_hash is None
    assert len(receipt.logs) == 2


@pytest.mark.asyncio
async def test_read_commitment_without_getter_returns_none():
    ledger, _w3, contract = _ledger()

    assert await ledger.read_commitment(1, block=12) is None
    contract.functions.tokenHash.assert_not_called()


@pytest.mark.asyncio
async def test_read_commitment_with_configured_getter():
    ledger, _w3, contract = _ledger(commitment_fn="tokenHash")
    call = AsyncMock(return_value=to_bytes32(COMMITMENT))
    contract.functions.tokenHash.return_value.call = call

    assert await ledger.read_commitment(1, block=12) == COMMITMENT
    contract.functions.tokenHash.assert_called_once_with(1)
    call.assert_awaited_once_with(block_identifier=12)

    call.side_effect = ContractLogicError("ERC721NonexistentToken(1)")
    with pytest.raises(NotFound):
        await ledger.read_commitment(1)
