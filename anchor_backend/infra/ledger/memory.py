"""
Ledger en mémoire (utilisé pour dev/tests).

Reproduit la surface du contrat (création avec événement `Transfer` depuis l'adresse nulle,
évolution, lecture d'URI) et la numérotation séquentielle des transactions d'un signataire.
Quelques attributs publics permettent aux tests d'injecter latences et pannes.
"""

from __future__ import annotations

import asyncio
from typing import Any

from eth_utils import keccak

from anchor_backend.domain.entities import LogEntry, PendingTx, Receipt
from anchor_backend.domain.errors import ErrorKind, LedgerError, NotFound
from anchor_backend.domain.receipt_parser import ZERO_ADDRESS
from anchor_backend.infra.ledger.base import LedgerClient

DEFAULT_SIGNER = "0x" + "5" * 40


class InMemoryLedger(LedgerClient):
    """Implémentation locale de `LedgerClient` (enregistrements dans un dict)."""

    name = "memory"

    def __init__(self, signer: str = DEFAULT_SIGNER, first_id: int = 1) -> None:
        self._signer = signer
        self._next_id = first_id
        self._nonce = 0
        self.records: dict[int, dict[str, Any]] = {}
        self.receipts: dict[str, Receipt] = {}
        self.submissions: list[dict[str, Any]] = []
        # Points d'injection pour les tests
        self.submit_failures: list[Exception] = []
        self.submit_delay: float = 0.0
        self.confirmation_delay: float = 0.0
        self.emit_events: bool = True
        self.hash_override: str | None = None
        self.reference_override: str | None = None
        self._in_submit = 0
        self.max_concurrent_submits = 0

    @property
    def signer(self) -> str | None:
        return self._signer

    def _tx_hash(self, nonce: int) -> str:
        return "0x" + keccak(f"{self._signer}:{nonce}".encode()).hex()

    async def _submit(self, call: str, apply) -> PendingTx:
        self._in_submit += 1
        self.max_concurrent_submits = max(self.max_concurrent_submits, self._in_submit)
        try:
            if self.submit_delay:
                await asyncio.sleep(self.submit_delay)
            if self.submit_failures:
                raise self.submit_failures.pop(0)
            nonce = self._nonce
            tx_hash = self._tx_hash(nonce)
            logs, reference, commitment = apply(tx_hash)
            self._nonce += 1
            self.submissions.append({"call": call, "nonce": nonce, "tx_hash": tx_hash})
            self.receipts[tx_hash] = Receipt(
                tx_hash=tx_hash,
                block_number=len(self.receipts) + 1,
                status=1,
                logs=tuple(logs) if self.emit_events else (),
                committed_reference=self.reference_override or reference,
                committed_hash=commitment,
            )
            return PendingTx(tx_hash=tx_hash, nonce=nonce)
        finally:
            self._in_submit -= 1

    async def submit_create(self, owner: str, reference: str, commitment: str) -> PendingTx:
        if owner.lower() == ZERO_ADDRESS:
            raise LedgerError("ERC721InvalidReceiver(0x0)", ErrorKind.REVERTED)

        def apply(tx_hash: str):
            record_id = self._next_id
            self._next_id += 1
            stored = self.hash_override or commitment
            self.records[record_id] = {"owner": owner, "uri": reference, "hash": stored}
            transfer = LogEntry(
                event="Transfer",
                args={"from": ZERO_ADDRESS, "to": owner, "tokenId": record_id},
            )
            return [transfer], reference, stored

        return await self._submit("create", apply)

    async def submit_update(self, record_id: int, reference: str, commitment: str) -> PendingTx:
        if record_id not in self.records:
            raise LedgerError(f"ERC721NonexistentToken({record_id})", ErrorKind.REVERTED)

        def apply(tx_hash: str):
            stored = self.hash_override or commitment
            self.records[record_id].update({"uri": reference, "hash": stored})
            event = LogEntry(
                event="EvolutionCommitted",
                args={"tokenId": record_id, "uri": reference, "hash": commitment},
            )
            return [event], reference, stored

        return await self._submit("update", apply)

    async def read_uri(self, record_id: int, block: int | None = None) -> str:
        record = self.records.get(record_id)
        if record is None:
            raise NotFound(f"token {record_id} does not exist")
        return record["uri"]

    async def read_commitment(self, record_id: int, block: int | None = None) -> str | None:
        record = self.records.get(record_id)
        return record["hash"] if record else None

    async def await_confirmation(self, pending: PendingTx, confirmations: int) -> Receipt:
        if self.confirmation_delay:
            await asyncio.sleep(self.confirmation_delay)
        return self.receipts[pending.tx_hash]

    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            raise NotFound(f"transaction {tx_hash} not found")
        return receipt

    async def aclose(self) -> None:
        return None
