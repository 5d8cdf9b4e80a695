"""Orchestrateur des opérations d'ancrage.

Ce module enchaîne, pour une création ou une évolution d'enregistrement:
upload du contenu (optionnel) → assemblage et publication des métadonnées → calcul du hash lié →
soumission ledger → confirmation → vérification post-confirmation.

Chaque demande devient une `AnchorOperation` exécutée dans une tâche asyncio détachée: un client
qui se déconnecte n'interrompt pas une soumission déjà partie, et les doublons concurrents
(même type, même cible, même hash) attendent l'issue de l'opération d'origine au lieu de
resoumettre une transaction.
"""

from __future__ import annotations

import asyncio
import dataclasses
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import structlog

from anchor_backend.app.metrics import (
    ANCHOR_CONFIRMATION_SECONDS,
    ANCHOR_INFLIGHT_DEDUP_TOTAL,
    ANCHOR_INFLIGHT_OPERATIONS,
    ANCHOR_OPERATIONS_TOTAL,
    ANCHOR_RETRIES_TOTAL,
)
from anchor_backend.domain.entities import (
    DEFAULT_DESCRIPTION,
    DEFAULT_NAME,
    AnchorOperation,
    AnchorRequest,
    AnchorResult,
    AnchorState,
    ContentPayload,
    ContentReference,
    CreateAnchor,
    MetadataDocument,
    PendingTx,
    Receipt,
    UpdateAnchor,
    UploadResult,
)
from anchor_backend.domain.errors import (
    AnchorError,
    ErrorKind,
    HashMismatch,
    LedgerError,
    NotFound,
    OperationCancelled,
    ParseError,
    ValidationError,
)
from anchor_backend.domain.hash_binder import bind, normalize
from anchor_backend.domain.inflight import Admission, InFlightRegistry, make_key
from anchor_backend.domain.receipt_parser import CreationEventSchema, parse_created_id
from anchor_backend.domain.retry import RetryPolicy, retry_async
from anchor_backend.infra.content.base import ContentStoreClient
from anchor_backend.infra.ledger.base import LedgerClient

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OrchestratorConfig:
    """Paramètres d'exécution (profondeur, timeout, politiques de retry, événement de création)."""

    confirmations: int = 1
    confirmation_timeout_s: float = 120.0
    upload_policy: RetryPolicy = field(default_factory=RetryPolicy)
    submit_policy: RetryPolicy = field(default_factory=RetryPolicy)
    event_schema: CreationEventSchema = field(default_factory=CreationEventSchema)


def assemble_metadata(payload: ContentPayload, image: ContentReference) -> dict[str, Any]:
    """Construit le document de métadonnées pointant vers l'image publiée."""
    document = MetadataDocument(
        name=payload.name or DEFAULT_NAME,
        description=payload.description or DEFAULT_DESCRIPTION,
        image=image.uri,
        attributes=payload.attributes if payload.attributes is not None else [],
    )
    return document.model_dump()


def outcome_payload(op: AnchorOperation, result: AnchorResult | None) -> dict[str, Any]:
    """Forme JSON de l'issue terminale conservée dans l'OutcomeStore."""
    if result is not None:
        return {
            "status": "confirmed",
            "txHash": result.tx_hash,
            "tokenId": result.record_id,
            "metadataUri": result.reference,
            "hash": result.commitment,
            "blockNumber": result.block_number,
        }
    error = op.error
    return {
        "status": "failed",
        "code": error.code if error else AnchorError.code,
        "kind": getattr(getattr(error, "kind", None), "value", None),
        "message": error.message if error else "unknown failure",
        "txHash": op.tx_hash,
    }


def error_from_payload(payload: dict[str, Any]) -> AnchorError:
    """Reconstruit l'erreur typée d'une issue `failed` enregistrée."""
    code = payload.get("code")
    message = payload.get("message") or "operation failed"
    tx_hash = payload.get("txHash")
    if code == LedgerError.code:
        kind = ErrorKind(payload.get("kind") or ErrorKind.TRANSIENT.value)
        return LedgerError(message, kind, tx_hash=tx_hash, broadcast=tx_hash is not None)
    if code == ParseError.code:
        return ParseError(message, tx_hash=tx_hash)
    if code == HashMismatch.code:
        return HashMismatch(message, tx_hash=tx_hash)
    return AnchorError(message, tx_hash=tx_hash)


def _mark_retrieved(fut: asyncio.Future) -> None:
    if not fut.cancelled():
        fut.exception()


class AnchorOrchestrator:
    """Coordonne store de contenu, ledger et registre des opérations en vol.

    Responsabilités:
    - garantir qu'une seule transaction est soumise par clé d'idempotence;
    - sérialiser les soumissions d'un même signataire (verrou tenu pendant l'envoi seulement);
    - borner les retries aux erreurs transitoires survenues avant toute diffusion;
    - refuser un résultat dont le hash relu après confirmation diffère du hash lié.
    """

    def __init__(
        self,
        content_store: ContentStoreClient,
        ledger: LedgerClient,
        registry: InFlightRegistry | None = None,
        config: OrchestratorConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.content = content_store
        self.ledger = ledger
        self.registry = registry or InFlightRegistry()
        self.config = config or OrchestratorConfig()
        self._sleep = sleep
        self._signer_locks: dict[str, asyncio.Lock] = {}
        self._tasks: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # API publique
    # ------------------------------------------------------------------
    async def mint(self, owner: str, reference: str) -> AnchorResult:
        """Crée un enregistrement pour `owner` pointant vers `reference`."""
        return await self.anchor(CreateAnchor(owner, reference=ContentReference.parse(reference)))

    async def evolve(self, record_id: int, reference: str) -> AnchorResult:
        """Fait évoluer l'enregistrement `record_id` vers `reference`."""
        return await self.anchor(
            UpdateAnchor(record_id, reference=ContentReference.parse(reference))
        )

    async def anchor(self, request: AnchorRequest) -> AnchorResult:
        """Démarre (ou rejoint) l'opération et attend son issue terminale."""
        op = self.start(request)
        return await self.wait(op)

    def start(self, request: AnchorRequest) -> AnchorOperation:
        """Admet la demande et lance son pipeline en tâche de fond.

        Doit être appelé depuis la boucle d'événements. Retourne l'opération à suivre, qui est
        celle d'origine lorsqu'un doublon est détecté dès l'admission.
        """
        if (request.reference is None) == (request.content is None):
            raise ValidationError("exactly one of reference or content must be provided")
        loop = asyncio.get_running_loop()
        op = AnchorOperation(kind=request.kind, target=request.target)
        op.outcome = loop.create_future()
        op.outcome.add_done_callback(_mark_retrieved)

        if request.reference is not None:
            self._bind(op, request.reference)
            admission = self.registry.register(make_key(op.kind, op.target, op.commitment), op)
            if not admission.admitted:
                return self._attach(admission)
            self._advance(op, AnchorState.HASH_BOUND)
        else:
            self.registry.track(op)

        self._spawn(op, request)
        return op

    async def wait(self, op: AnchorOperation) -> AnchorResult:
        """Attend l'issue de `op`; l'annulation de l'appelant n'atteint pas le pipeline."""
        return await asyncio.shield(op.outcome)

    async def upload_content(self, payload: ContentPayload) -> UploadResult:
        """Publie image puis métadonnées, sans ancrage."""
        return await self._upload_pipeline(payload, None)

    async def read_reference(self, record_id: int) -> str:
        """Lit la référence courante d'un enregistrement (`NotFound` si inconnu)."""
        return await retry_async(
            lambda: self.ledger.read_uri(record_id),
            self.config.submit_policy,
            on_retry=self._on_retry("read", None),
            sleep=self._sleep,
        )

    def get_operation(self, op_id: str) -> AnchorOperation | None:
        return self.registry.get(op_id)

    def cancel(self, op_id: str) -> AnchorOperation:
        """Demande l'annulation d'une opération.

        Avant l'envoi au ledger, l'opération s'arrête au prochain point de contrôle en
        `OperationCancelled`. Après, la transaction ne peut plus être rappelée: l'opération est
        seulement marquée abandonnée et va à son terme.
        """
        op = self.registry.get(op_id)
        if op is None:
            raise NotFound(f"operation {op_id} not found")
        if op.terminal:
            return op
        if op.submit_started or op.submitted:
            op.abandoned = True
            log.info("anchor_abandoned", operation_id=op.id, tx_hash=op.tx_hash)
        else:
            op.cancel_requested = True
            log.info("anchor_cancel_requested", operation_id=op.id, state=op.state.value)
        return op

    async def transaction_status(self, tx_hash: str) -> dict[str, Any]:
        """Statut d'une transaction: `pending`, `confirmed` ou `reverted`."""
        receipt = await self.ledger.get_receipt(tx_hash)
        if receipt is None:
            return {"txHash": tx_hash, "status": "pending", "blockNumber": None}
        return {
            "txHash": receipt.tx_hash,
            "status": "confirmed" if receipt.succeeded else "reverted",
            "blockNumber": receipt.block_number,
        }

    async def drain(self, timeout: float = 5.0) -> None:
        """Laisse aux opérations en vol une chance de se terminer (arrêt de l'application)."""
        if self._tasks:
            await asyncio.wait(set(self._tasks), timeout=timeout)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------
    def _spawn(self, op: AnchorOperation, request: AnchorRequest) -> None:
        task = asyncio.get_running_loop().create_task(self._run(op, request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        ANCHOR_INFLIGHT_OPERATIONS.set(self.registry.active_count())

    async def _run(self, op: AnchorOperation, request: AnchorRequest) -> None:
        structlog.contextvars.bind_contextvars(operation_id=op.id, kind=op.kind.value)
        result: AnchorResult | None = None
        upload: UploadResult | None = None
        try:
            if request.content is not None:
                upload = await self._upload_pipeline(request.content, op)
                self._bind(op, ContentReference.parse(upload.metadata_uri))
                self._advance(op, AnchorState.HASH_BOUND)
                admission = self.registry.register(
                    make_key(op.kind, op.target, op.commitment), op
                )
                if not admission.admitted:
                    await self._follow(op, admission, upload)
                    return
            if await self._replay_recorded(op, request, upload):
                return
            if isinstance(request, UpdateAnchor):
                await self._ensure_exists(request.record_id)
            pending = await self._submit(op, request)
            op.tx_hash = pending.tx_hash
            self._advance(op, AnchorState.SUBMITTED)
            receipt = await self._confirm(op, pending)
            if isinstance(request, CreateAnchor):
                record_id = parse_created_id(receipt, self.config.event_schema)
            else:
                record_id = request.record_id
            op.record_id = record_id
            await self._verify(op, receipt, record_id)
            self._advance(op, AnchorState.CONFIRMED)
            result = AnchorResult(
                operation_id=op.id,
                kind=op.kind,
                tx_hash=receipt.tx_hash,
                record_id=record_id,
                reference=op.reference,
                commitment=op.commitment,
                block_number=receipt.block_number,
                image_cid=upload.image_cid if upload else None,
                metadata_cid=upload.metadata_cid if upload else None,
                metadata=upload.metadata if upload else None,
            )
            # Issue conservée avant d'être rendue: un retry immédiat ailleurs la retrouve.
            await self.registry.record(op, outcome_payload(op, result))
            op.outcome.set_result(result)
        except AnchorError as err:
            self._fail(op, err)
        except asyncio.CancelledError:
            self._fail(op, OperationCancelled("operation interrupted by shutdown"))
            raise
        except Exception as exc:
            log.exception("anchor_internal_error", operation_id=op.id)
            self._fail(op, AnchorError(f"internal error: {exc}", tx_hash=op.tx_hash))
        finally:
            self.registry.retire(op)
            if op.duplicate_of is None:
                if result is None:
                    await self.registry.record(op, outcome_payload(op, None))
                ANCHOR_OPERATIONS_TOTAL.labels(
                    op.kind.value, "confirmed" if result is not None else "failed"
                ).inc()
            ANCHOR_INFLIGHT_OPERATIONS.set(self.registry.active_count())
            structlog.contextvars.unbind_contextvars("operation_id", "kind")

    def _fail(self, op: AnchorOperation, err: AnchorError) -> None:
        op.fail(err)
        err.operation_id = err.operation_id or op.id
        err.tx_hash = err.tx_hash or op.tx_hash
        log.warning(
            "anchor_failed",
            operation_id=op.id,
            code=err.code,
            error=err.message,
            tx_hash=op.tx_hash,
            abandoned=op.abandoned,
        )
        if not op.outcome.done():
            op.outcome.set_exception(err)

    def _bind(self, op: AnchorOperation, reference: ContentReference) -> None:
        op.reference = reference.uri
        op.commitment = bind(reference.uri)

    def _advance(self, op: AnchorOperation | None, state: AnchorState) -> None:
        if op is None:
            return
        previous = op.state
        op.advance(state)
        log.info(
            "anchor_state",
            operation_id=op.id,
            kind=op.kind.value,
            target=op.target,
            from_state=previous.value,
            to_state=state.value,
            tx_hash=op.tx_hash,
        )

    def _checkpoint(self, op: AnchorOperation | None) -> None:
        if op is not None and op.cancel_requested:
            raise OperationCancelled("operation cancelled before submission")

    def _on_retry(self, stage: str, op: AnchorOperation | None):
        def notify(attempt: int, exc: AnchorError, delay: float) -> None:
            ANCHOR_RETRIES_TOTAL.labels(stage).inc()
            log.warning(
                "anchor_retry",
                stage=stage,
                attempt=attempt,
                delay_s=round(delay, 3),
                error=exc.message,
                operation_id=op.id if op else None,
            )

        return notify

    # Doublons --------------------------------------------------------
    def _attach(self, admission: Admission) -> AnchorOperation:
        ANCHOR_INFLIGHT_DEDUP_TOTAL.labels(admission.operation.kind.value).inc()
        log.info(
            "anchor_duplicate_attached",
            operation_id=admission.operation.id,
            state=admission.operation.state.value,
        )
        return admission.operation

    async def _replay_recorded(
        self, op: AnchorOperation, request: AnchorRequest, upload: UploadResult | None
    ) -> bool:
        """Rejoue l'issue enregistrée pour la clé de `op` (autre processus, ou avant redémarrage).

        Une évolution confirmée n'est rejouée que si le ledger porte toujours sa référence: une
        évolution ultérieure de la même cible l'a peut-être remplacée.
        """
        recorded = await self.registry.recall(op.key)
        if recorded is None:
            return False
        if isinstance(request, UpdateAnchor) and recorded.get("status") == "confirmed":
            current = await self.read_reference(request.record_id)
            if current != op.reference:
                log.info(
                    "anchor_recorded_outcome_stale",
                    operation_id=op.id,
                    record_id=request.record_id,
                    current=current,
                )
                return False
        ANCHOR_INFLIGHT_DEDUP_TOTAL.labels(op.kind.value).inc()
        op.duplicate_of = "recorded"
        log.info("anchor_recorded_outcome_replayed", operation_id=op.id, key=op.key)
        self._settle_recorded(op, recorded, upload)
        return True

    def _settle_recorded(
        self, op: AnchorOperation, recorded: dict[str, Any], upload: UploadResult | None = None
    ) -> None:
        """Rejoue une issue enregistrée sans rien resoumettre."""
        if recorded.get("status") == "confirmed":
            record_id = int(recorded["tokenId"])
            op.adopt(AnchorState.CONFIRMED, tx_hash=recorded.get("txHash"), record_id=record_id)
            op.outcome.set_result(
                AnchorResult(
                    operation_id=op.id,
                    kind=op.kind,
                    tx_hash=recorded["txHash"],
                    record_id=record_id,
                    reference=recorded.get("metadataUri") or op.reference,
                    commitment=recorded.get("hash") or op.commitment,
                    block_number=recorded.get("blockNumber"),
                    image_cid=upload.image_cid if upload else None,
                    metadata_cid=upload.metadata_cid if upload else None,
                    metadata=upload.metadata if upload else None,
                )
            )
            return
        err = error_from_payload(recorded)
        op.adopt(AnchorState.FAILED, tx_hash=err.tx_hash, error=err)
        op.outcome.set_exception(err)

    async def _follow(
        self, op: AnchorOperation, admission: Admission, upload: UploadResult
    ) -> None:
        """Aligne une opération (contenu publié) sur l'opération portant déjà sa clé."""
        ANCHOR_INFLIGHT_DEDUP_TOTAL.labels(op.kind.value).inc()
        origin = admission.operation
        op.duplicate_of = origin.id
        log.info("anchor_duplicate_attached", operation_id=op.id, origin_id=origin.id)
        try:
            result = await asyncio.shield(origin.outcome)
        except AnchorError as err:
            op.adopt(AnchorState.FAILED, tx_hash=origin.tx_hash, error=err)
            op.outcome.set_exception(err)
            return
        op.adopt(AnchorState.CONFIRMED, tx_hash=result.tx_hash, record_id=result.record_id)
        op.outcome.set_result(
            dataclasses.replace(
                result,
                image_cid=upload.image_cid,
                metadata_cid=upload.metadata_cid,
                metadata=upload.metadata,
            )
        )

    # Étapes ----------------------------------------------------------
    async def _upload(self, call: Callable[[], Awaitable[ContentReference]], stage: str, op):
        return await retry_async(
            call,
            self.config.upload_policy,
            on_retry=self._on_retry(stage, op),
            sleep=self._sleep,
        )

    async def _upload_pipeline(
        self, payload: ContentPayload, op: AnchorOperation | None
    ) -> UploadResult:
        if not payload.data:
            raise ValidationError("uploaded file is empty")
        self._advance(op, AnchorState.CONTENT_PENDING)
        image = await self._upload(
            lambda: self.content.put_bytes(payload.data, payload.filename), "upload_image", op
        )
        self._advance(op, AnchorState.CONTENT_UPLOADED)
        self._checkpoint(op)
        document = assemble_metadata(payload, image)
        self._advance(op, AnchorState.METADATA_ASSEMBLED)
        metadata = await self._upload(
            lambda: self.content.put_json(document), "upload_metadata", op
        )
        self._advance(op, AnchorState.METADATA_UPLOADED)
        self._checkpoint(op)
        return UploadResult(
            image_cid=image.cid,
            metadata_cid=metadata.cid,
            metadata_uri=metadata.uri,
            metadata=document,
        )

    async def _ensure_exists(self, record_id: int) -> None:
        """Lit l'enregistrement avant toute soumission: `NotFound` si inconnu."""
        await self.read_reference(record_id)

    def _signer_lock(self) -> asyncio.Lock:
        signer = (self.ledger.signer or "default").lower()
        lock = self._signer_locks.get(signer)
        if lock is None:
            lock = self._signer_locks[signer] = asyncio.Lock()
        return lock

    async def _submit(self, op: AnchorOperation, request: AnchorRequest) -> PendingTx:
        lock = self._signer_lock()

        async def attempt() -> PendingTx:
            async with lock:
                self._checkpoint(op)
                op.submit_started = True
                try:
                    if isinstance(request, CreateAnchor):
                        return await self.ledger.submit_create(
                            request.owner, op.reference, op.commitment
                        )
                    return await self.ledger.submit_update(
                        request.record_id, op.reference, op.commitment
                    )
                except LedgerError as err:
                    if not err.broadcast:
                        op.submit_started = False
                    raise

        return await retry_async(
            attempt,
            self.config.submit_policy,
            on_retry=self._on_retry("submit", op),
            sleep=self._sleep,
        )

    async def _confirm(self, op: AnchorOperation, pending: PendingTx) -> Receipt:
        started = time.perf_counter()
        timeout = self.config.confirmation_timeout_s
        try:
            receipt = await asyncio.wait_for(
                self.ledger.await_confirmation(pending, self.config.confirmations), timeout
            )
        except TimeoutError as err:
            raise LedgerError(
                f"transaction not confirmed within {timeout:g}s",
                ErrorKind.TIMEOUT,
                tx_hash=pending.tx_hash,
                broadcast=True,
            ) from err
        ANCHOR_CONFIRMATION_SECONDS.labels(op.kind.value).observe(time.perf_counter() - started)
        if not receipt.succeeded:
            raise LedgerError(
                "transaction reverted", ErrorKind.REVERTED, tx_hash=pending.tx_hash, broadcast=True
            )
        return receipt

    async def _verify(self, op: AnchorOperation, receipt: Receipt, record_id: int) -> None:
        """Relit l'état engagé au bloc du reçu et le compare au hash lié."""
        expected = op.commitment
        tx_hash = receipt.tx_hash
        if receipt.committed_hash is not None and normalize(receipt.committed_hash) != expected:
            raise HashMismatch(
                f"submitted hash {receipt.committed_hash} differs from bound hash {expected}",
                tx_hash=tx_hash,
            )
        if receipt.committed_reference is not None and receipt.committed_reference != op.reference:
            raise HashMismatch(
                f"submitted reference {receipt.committed_reference} differs from {op.reference}",
                tx_hash=tx_hash,
            )
        try:
            stored = await self.ledger.read_commitment(record_id, block=receipt.block_number)
            stored_uri = await self.ledger.read_uri(record_id, block=receipt.block_number)
        except NotFound as err:
            raise HashMismatch(
                f"record {record_id} unreadable after confirmation", tx_hash=tx_hash
            ) from err
        except LedgerError as err:
            raise LedgerError(
                f"post-confirmation read failed: {err.message}",
                ErrorKind.TRANSIENT,
                tx_hash=tx_hash,
                broadcast=True,
            ) from err
        if stored is not None and normalize(stored) != expected:
            raise HashMismatch(
                f"on-chain hash {normalize(stored)} differs from bound hash {expected}",
                tx_hash=tx_hash,
            )
        if bind(stored_uri) != expected:
            raise HashMismatch(
                f"on-chain reference {stored_uri} does not hash to {expected}", tx_hash=tx_hash
            )
