# ============================================================
# Module : anchor_backend/infra/ledger/web3_client.py
# Objet  : Accès au contrat d'ancrage via JSON-RPC (AsyncWeb3).
# Invariants :
#  - Le nonce local n'avance qu'après une diffusion acceptée.
#  - Un échec ambigu après l'envoi est signalé `broadcast=True` (jamais rejoué).
#  - La clé privée n'est jamais journalisée.
# ============================================================
"""Adaptateur ledger EVM basé sur web3.py.

Surface du contrat (configurable):
  - création: `safeMint(to, uri, hash)`, identifiant attribué via l'événement `Transfer`;
  - évolution: `commitEvolution(tokenId, uri, hash)`;
  - lecture: `tokenURI(tokenId)`;
  - hash stocké: getter optionnel (`commitment_fn`). Sans getter, la vérification post-confirmation
    s'appuie sur les arguments décodés de la transaction et sur la relecture de la référence.
"""

from __future__ import annotations

import asyncio
import json
from importlib import resources
from pathlib import Path
from typing import Any

import structlog
from eth_account import Account
from eth_utils import keccak, to_checksum_address
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception
from web3.logs import DISCARD

from anchor_backend.domain.entities import LogEntry, PendingTx, Receipt
from anchor_backend.domain.errors import ErrorKind, LedgerError, NotFound
from anchor_backend.domain.hash_binder import normalize, to_bytes32
from anchor_backend.infra.ledger.base import LedgerClient

_RPC_ERRORS = (Web3Exception, OSError, asyncio.TimeoutError)


def load_abi(path: str | None = None) -> list[dict[str, Any]]:
    """Charge l'ABI depuis `path`, ou l'ABI minimale embarquée dans le paquet."""
    if path:
        return json.loads(Path(path).read_text(encoding="utf-8"))
    raw = resources.files("anchor_backend.contracts").joinpath("abi.json").read_text("utf-8")
    return json.loads(raw)


def _revert_reason(exc: ContractLogicError) -> str:
    return str(getattr(exc, "message", None) or exc or "execution reverted")


class Web3Ledger(LedgerClient):
    """Client du contrat d'ancrage signant avec un compte local."""

    name = "web3"

    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        contract_address: str,
        abi: list[dict[str, Any]],
        *,
        create_fn: str = "safeMint",
        update_fn: str = "commitEvolution",
        read_fn: str = "tokenURI",
        commitment_fn: str | None = None,
        poll_interval: float = 1.0,
        w3: AsyncWeb3 | None = None,
    ) -> None:
        self.w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url))
        self._account = Account.from_key(private_key)
        self.contract = self.w3.eth.contract(address=to_checksum_address(contract_address), abi=abi)
        self.create_fn = create_fn
        self.update_fn = update_fn
        self.read_fn = read_fn
        self.commitment_fn = commitment_fn
        self.poll_interval = poll_interval
        self._event_names = [e["name"] for e in abi if e.get("type") == "event"]
        self._nonce: int | None = None
        self._chain_id: int | None = None
        self._log = structlog.get_logger(__name__).bind(
            component="web3_ledger", signer=self._account.address
        )

    @property
    def signer(self) -> str | None:
        return self._account.address

    async def _prepare(self, fn_name: str, *args: Any) -> tuple[dict[str, Any], int]:
        """Construit la transaction (estimation de gas comprise) sans rien diffuser."""
        try:
            if self._nonce is None:
                self._nonce = await self.w3.eth.get_transaction_count(self.signer, "pending")
            if self._chain_id is None:
                self._chain_id = await self.w3.eth.chain_id
            nonce = self._nonce
            call = getattr(self.contract.functions, fn_name)(*args)
            tx = await call.build_transaction(
                {"from": self.signer, "nonce": nonce, "chainId": self._chain_id}
            )
        except ContractLogicError as exc:
            raise LedgerError(_revert_reason(exc), ErrorKind.REVERTED) from exc
        except _RPC_ERRORS as exc:
            self._nonce = None
            raise LedgerError(f"ledger RPC failure: {exc}", ErrorKind.TRANSIENT) from exc
        return tx, nonce

    async def _send(self, fn_name: str, *args: Any) -> PendingTx:
        tx, nonce = await self._prepare(fn_name, *args)
        signed = self._account.sign_transaction(tx)
        tx_hash = "0x" + keccak(signed.raw_transaction).hex()
        try:
            await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        except ContractLogicError as exc:
            raise LedgerError(_revert_reason(exc), ErrorKind.REVERTED, tx_hash=tx_hash) from exc
        except (Web3Exception, asyncio.TimeoutError) as exc:
            # TimeoutError hérite d'OSError: la requête a pu atteindre le nœud.
            self._nonce = None
            raise LedgerError(
                f"ledger broadcast outcome unknown: {exc}",
                ErrorKind.TRANSIENT,
                tx_hash=tx_hash,
                broadcast=True,
            ) from exc
        except OSError as exc:
            # Connexion impossible: rien n'a quitté le processus.
            self._nonce = None
            raise LedgerError(f"ledger RPC unreachable: {exc}", ErrorKind.TRANSIENT) from exc
        self._nonce = nonce + 1
        self._log.info("ledger_tx_broadcast", fn=fn_name, nonce=nonce, tx_hash=tx_hash)
        return PendingTx(tx_hash=tx_hash, nonce=nonce)

    async def submit_create(self, owner: str, reference: str, commitment: str) -> PendingTx:
        return await self._send(
            self.create_fn, to_checksum_address(owner), reference, to_bytes32(commitment)
        )

    async def submit_update(self, record_id: int, reference: str, commitment: str) -> PendingTx:
        return await self._send(self.update_fn, int(record_id), reference, to_bytes32(commitment))

    async def read_uri(self, record_id: int, block: int | None = None) -> str:
        fn = getattr(self.contract.functions, self.read_fn)(int(record_id))
        try:
            return await fn.call(block_identifier=block if block is not None else "latest")
        except ContractLogicError as exc:
            raise NotFound(f"token {record_id} does not exist") from exc
        except _RPC_ERRORS as exc:
            raise LedgerError(f"ledger RPC failure: {exc}", ErrorKind.TRANSIENT) from exc

    async def read_commitment(self, record_id: int, block: int | None = None) -> str | None:
        if not self.commitment_fn:
            return None
        fn = getattr(self.contract.functions, self.commitment_fn)(int(record_id))
        try:
            stored = await fn.call(block_identifier=block if block is not None else "latest")
        except ContractLogicError as exc:
            raise NotFound(f"token {record_id} does not exist") from exc
        except _RPC_ERRORS as exc:
            raise LedgerError(f"ledger RPC failure: {exc}", ErrorKind.TRANSIENT) from exc
        return normalize(stored)

    def _decode_logs(self, raw_receipt: Any) -> list[LogEntry]:
        entries: list[LogEntry] = []
        for name in self._event_names:
            event = getattr(self.contract.events, name)()
            for decoded in event.process_receipt(raw_receipt, errors=DISCARD):
                entries.append(
                    LogEntry(
                        event=decoded["event"],
                        args=dict(decoded["args"]),
                        log_index=int(decoded["logIndex"]),
                        address=decoded["address"],
                    )
                )
        entries.sort(key=lambda e: e.log_index)
        return entries

    async def _committed_args(self, tx_hash: str) -> tuple[str | None, str | None]:
        """Décode l'appel réellement exécuté: (référence, hash) soumis."""
        try:
            tx = await self.w3.eth.get_transaction(tx_hash)
            _fn, params = self.contract.decode_function_input(tx["input"])
        except (ValueError, *_RPC_ERRORS) as exc:
            self._log.warning("ledger_tx_input_undecodable", tx_hash=tx_hash, error=str(exc))
            return None, None
        values = list(params.values())
        if len(values) < 2:  # noqa: PLR2004
            return None, None
        return str(values[-2]), normalize(values[-1])

    async def _to_receipt(self, raw: Any) -> Receipt:
        tx_hash = normalize(bytes(raw["transactionHash"]))
        reference, commitment = await self._committed_args(tx_hash)
        return Receipt(
            tx_hash=tx_hash,
            block_number=int(raw["blockNumber"]),
            status=int(raw["status"]),
            logs=tuple(self._decode_logs(raw)),
            committed_reference=reference,
            committed_hash=commitment,
        )

    async def await_confirmation(self, pending: PendingTx, confirmations: int) -> Receipt:
        depth = max(1, int(confirmations))
        while True:
            try:
                raw = await self.w3.eth.get_transaction_receipt(pending.tx_hash)
                head = await self.w3.eth.block_number
            except TransactionNotFound:
                raw = None
            except _RPC_ERRORS as exc:
                # Le polling continue; le timeout global est imposé par l'orchestrateur.
                self._log.warning(
                    "ledger_receipt_poll_failed", tx_hash=pending.tx_hash, error=str(exc)
                )
                raw = None
            if raw is not None and head - int(raw["blockNumber"]) + 1 >= depth:
                return await self._to_receipt(raw)
            await asyncio.sleep(self.poll_interval)

    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        try:
            raw = await self.w3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            raw = None
        except _RPC_ERRORS as exc:
            raise LedgerError(f"ledger RPC failure: {exc}", ErrorKind.TRANSIENT) from exc
        if raw is not None:
            return await self._to_receipt(raw)
        try:
            await self.w3.eth.get_transaction(tx_hash)
        except TransactionNotFound as exc:
            raise NotFound(f"transaction {tx_hash} not found") from exc
        except _RPC_ERRORS as exc:
            raise LedgerError(f"ledger RPC failure: {exc}", ErrorKind.TRANSIENT) from exc
        return None

    async def aclose(self) -> None:
        provider = getattr(self.w3, "provider", None)
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()
