"""
Entités du domaine d'ancrage.

Ce module définit les valeurs échangées entre l'orchestrateur et ses adaptateurs (références de
contenu, document de métadonnées, transactions, reçus) ainsi que l'opération d'ancrage et sa
machine à états.
"""

from __future__ import annotations

import asyncio
import re
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from anchor_backend.domain.errors import AnchorError, ValidationError

_URI_RE = re.compile(r"^(?P<scheme>[a-zA-Z][a-zA-Z0-9+.-]*)://(?P<ident>\S+)$")

DEFAULT_NAME = "Untitled NFT"
DEFAULT_DESCRIPTION = "No description provided"
IPFS_SCHEME = "ipfs"


@dataclass(frozen=True)
class ContentReference:
    """Référence `scheme://identifiant` vers un contenu du store."""

    scheme: str
    cid: str

    @property
    def uri(self) -> str:
        return f"{self.scheme}://{self.cid}"

    def __str__(self) -> str:
        return self.uri

    @classmethod
    def ipfs(cls, cid: str) -> ContentReference:
        return cls(IPFS_SCHEME, cid)

    @classmethod
    def parse(cls, value: str | None, field_name: str = "metadataUri") -> ContentReference:
        """Valide et découpe une référence fournie par l'appelant."""
        m = _URI_RE.match((value or "").strip())
        if not m:
            raise ValidationError(f"{field_name} must be a URI of the form scheme://identifier")
        return cls(m.group("scheme").lower(), m.group("ident"))


class MetadataDocument(BaseModel):
    """Document de métadonnées publié sur le store (forme JSON canonique)."""

    name: str = DEFAULT_NAME
    description: str = DEFAULT_DESCRIPTION
    image: str
    attributes: list[Any] | dict[str, Any] = Field(default_factory=list)


@dataclass(frozen=True)
class ContentPayload:
    """Octets bruts d'une image et champs descriptifs, avant upload."""

    data: bytes
    filename: str
    name: str | None = None
    description: str | None = None
    attributes: list[Any] | dict[str, Any] | None = None


class AnchorKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"


@dataclass(frozen=True)
class CreateAnchor:
    """Demande de création: propriétaire + référence (ou contenu à publier)."""

    owner: str
    reference: ContentReference | None = None
    content: ContentPayload | None = None
    kind: AnchorKind = field(default=AnchorKind.CREATE, init=False)

    @property
    def target(self) -> str:
        return self.owner


@dataclass(frozen=True)
class UpdateAnchor:
    """Demande d'évolution: enregistrement existant + nouvelle référence."""

    record_id: int
    reference: ContentReference | None = None
    content: ContentPayload | None = None
    kind: AnchorKind = field(default=AnchorKind.UPDATE, init=False)

    @property
    def target(self) -> str:
        return str(self.record_id)


AnchorRequest = CreateAnchor | UpdateAnchor


class AnchorState(str, Enum):
    CREATED = "CREATED"
    CONTENT_PENDING = "CONTENT_PENDING"
    CONTENT_UPLOADED = "CONTENT_UPLOADED"
    METADATA_ASSEMBLED = "METADATA_ASSEMBLED"
    METADATA_UPLOADED = "METADATA_UPLOADED"
    HASH_BOUND = "HASH_BOUND"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


_TRANSITIONS: dict[AnchorState, frozenset[AnchorState]] = {
    AnchorState.CREATED: frozenset({AnchorState.CONTENT_PENDING, AnchorState.HASH_BOUND}),
    AnchorState.CONTENT_PENDING: frozenset({AnchorState.CONTENT_UPLOADED}),
    AnchorState.CONTENT_UPLOADED: frozenset({AnchorState.METADATA_ASSEMBLED}),
    AnchorState.METADATA_ASSEMBLED: frozenset({AnchorState.METADATA_UPLOADED}),
    AnchorState.METADATA_UPLOADED: frozenset({AnchorState.HASH_BOUND}),
    AnchorState.HASH_BOUND: frozenset({AnchorState.SUBMITTED}),
    AnchorState.SUBMITTED: frozenset({AnchorState.CONFIRMED}),
    AnchorState.CONFIRMED: frozenset(),
    AnchorState.FAILED: frozenset(),
}

TERMINAL_STATES = frozenset({AnchorState.CONFIRMED, AnchorState.FAILED})


@dataclass(frozen=True)
class PendingTx:
    """Transaction diffusée, en attente de confirmation."""

    tx_hash: str
    nonce: int | None = None


@dataclass(frozen=True)
class LogEntry:
    """Événement décodé d'un reçu (nom + arguments)."""

    event: str
    args: dict[str, Any]
    log_index: int = 0
    address: str | None = None


@dataclass(frozen=True)
class Receipt:
    """Reçu de transaction minée, indépendant de la bibliothèque ledger."""

    tx_hash: str
    block_number: int
    status: int
    logs: tuple[LogEntry, ...] = ()
    committed_reference: str | None = None
    committed_hash: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == 1


@dataclass(frozen=True)
class AnchorResult:
    """Résultat d'une opération confirmée."""

    operation_id: str
    kind: AnchorKind
    tx_hash: str
    record_id: int
    reference: str
    commitment: str
    block_number: int | None = None
    image_cid: str | None = None
    metadata_cid: str | None = None
    metadata: dict[str, Any] | None = None


@dataclass(frozen=True)
class UploadResult:
    """Résultat du pipeline image → métadonnées publiées."""

    image_cid: str
    metadata_cid: str
    metadata_uri: str
    metadata: dict[str, Any]


@dataclass
class AnchorOperation:
    """Suivi d'une opération d'ancrage à travers la machine à états."""

    kind: AnchorKind
    target: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: AnchorState = AnchorState.CREATED
    key: str | None = None
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    retired_at: float | None = None
    tx_hash: str | None = None
    record_id: int | None = None
    reference: str | None = None
    commitment: str | None = None
    error: AnchorError | None = None
    cancel_requested: bool = False
    submit_started: bool = False
    abandoned: bool = False
    duplicate_of: str | None = None
    history: list[tuple[AnchorState, float]] = field(default_factory=list)
    outcome: asyncio.Future | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.history.append((self.state, self.created_at))

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def submitted(self) -> bool:
        """Vrai dès que la soumission ledger a pu avoir lieu."""
        return self.tx_hash is not None or self.state in (
            AnchorState.SUBMITTED,
            AnchorState.CONFIRMED,
        )

    def advance(self, state: AnchorState) -> None:
        """Applique une transition; les états terminaux sont absorbants."""
        allowed = _TRANSITIONS[self.state]
        if not self.terminal:
            allowed = allowed | {AnchorState.FAILED}
        if state not in allowed:
            raise RuntimeError(f"illegal transition {self.state.value} -> {state.value}")
        now = time.time()
        self.state = state
        self.updated_at = now
        self.history.append((state, now))

    def adopt(
        self,
        state: AnchorState,
        *,
        tx_hash: str | None = None,
        record_id: int | None = None,
        error: AnchorError | None = None,
    ) -> None:
        """Aligne un doublon sur l'issue terminale de l'opération d'origine."""
        now = time.time()
        self.state = state
        self.tx_hash = tx_hash or self.tx_hash
        self.record_id = record_id if record_id is not None else self.record_id
        self.error = error
        self.updated_at = now
        self.history.append((state, now))

    def fail(self, error: AnchorError) -> None:
        if self.terminal:
            return
        self.error = error
        if error.tx_hash and not self.tx_hash:
            self.tx_hash = error.tx_hash
        self.advance(AnchorState.FAILED)

    def snapshot(self) -> dict[str, Any]:
        """Vue JSON de l'opération (exposée par `/operations/{id}`)."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "state": self.state.value,
            "txHash": self.tx_hash,
            "tokenId": str(self.record_id) if self.record_id is not None else None,
            "metadataUri": self.reference,
            "hash": self.commitment,
            "error": self.error.message if self.error else None,
            "errorCode": self.error.code if self.error else None,
            "abandoned": self.abandoned,
            "duplicateOf": self.duplicate_of,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "history": [[s.value, ts] for s, ts in self.history],
        }
