"""Taxonomie des erreurs du domaine d'ancrage.

Chaque adaptateur lève une erreur typée; l'orchestrateur ne récupère localement que les catégories
transitoires (retry borné) et propage tout le reste. La couche HTTP convertit ces erreurs en
enveloppes `{success: false, error}` via `code` et `http_status`.
"""

from __future__ import annotations

from enum import Enum

from anchor_backend.core.http_constants import (
    HTTP_BAD_GATEWAY,
    HTTP_BAD_REQUEST,
    HTTP_CONFLICT,
    HTTP_GATEWAY_TIMEOUT,
    HTTP_INTERNAL_SERVER_ERROR,
    HTTP_NOT_FOUND,
    HTTP_SERVICE_UNAVAILABLE,
)


class AnchorError(Exception):
    """Base des erreurs métier; porte un code stable et un statut HTTP."""

    code = "ANCHOR_ERROR"
    http_status = HTTP_INTERNAL_SERVER_ERROR
    transient = False

    def __init__(self, message: str, *, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.tx_hash = tx_hash
        self.operation_id: str | None = None


class ValidationError(AnchorError):
    """Champ de requête manquant ou mal formé."""

    code = "VALIDATION_ERROR"
    http_status = HTTP_BAD_REQUEST


class NotFound(AnchorError):
    """Identifiant d'enregistrement inconnu du ledger."""

    code = "NOT_FOUND"
    http_status = HTTP_NOT_FOUND


class ErrorKind(str, Enum):
    """Catégories d'échec des fournisseurs externes."""

    TRANSIENT = "transient"
    PERMANENT = "permanent"
    REVERTED = "reverted"
    TIMEOUT = "timeout"


class UploadError(AnchorError):
    """Échec du fournisseur de stockage (transitoire ou permanent)."""

    code = "UPLOAD_ERROR"

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.TRANSIENT) -> None:
        super().__init__(message)
        self.kind = kind

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.kind is ErrorKind.TRANSIENT

    @property
    def http_status(self) -> int:  # type: ignore[override]
        return HTTP_SERVICE_UNAVAILABLE if self.transient else HTTP_BAD_GATEWAY


class LedgerError(AnchorError):
    """Échec de soumission ou de confirmation côté ledger."""

    code = "LEDGER_ERROR"
    _STATUS = {
        ErrorKind.TRANSIENT: HTTP_SERVICE_UNAVAILABLE,
        ErrorKind.REVERTED: HTTP_BAD_GATEWAY,
        ErrorKind.TIMEOUT: HTTP_GATEWAY_TIMEOUT,
    }

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.TRANSIENT,
        *,
        tx_hash: str | None = None,
        broadcast: bool = False,
    ) -> None:
        super().__init__(message, tx_hash=tx_hash)
        self.kind = kind
        # True quand la transaction a pu atteindre le réseau: plus de retry possible.
        self.broadcast = broadcast

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.kind is ErrorKind.TRANSIENT and not self.broadcast

    @property
    def http_status(self) -> int:  # type: ignore[override]
        return self._STATUS.get(self.kind, HTTP_INTERNAL_SERVER_ERROR)


class ParseError(AnchorError):
    """Transaction confirmée sans l'événement de création attendu."""

    code = "PARSE_ERROR"
    http_status = HTTP_BAD_GATEWAY


class HashMismatch(AnchorError):
    """Le hash lu après confirmation diffère du hash lié localement."""

    code = "HASH_MISMATCH"
    http_status = HTTP_INTERNAL_SERVER_ERROR


class OperationCancelled(AnchorError):
    """Opération annulée par l'appelant avant soumission."""

    code = "CANCELLED"
    http_status = HTTP_CONFLICT
