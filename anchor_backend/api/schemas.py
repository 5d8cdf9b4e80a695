# Schémas Pydantic exposés par l'API (requêtes) et validations des paramètres.

import json
import re
from typing import Any

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel

from anchor_backend.domain.errors import ValidationError

_TOKEN_ID_RE = re.compile(r"^\d+$")
_TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class MintRequest(BaseModel):
    """Requête de création.

    Champs (tous deux requis, vérifiés par la route pour produire le message attendu):
    - to: adresse hexadécimale du propriétaire
    - metadataUri: référence `scheme://identifiant`
    """

    to: str | None = None
    metadataUri: str | None = None


class EvolveRequest(BaseModel):
    """Requête d'évolution: `metadataUri` est la nouvelle référence."""

    metadataUri: str | None = None


def require_address(value: str | None, field_name: str = "to") -> str:
    """Valide une adresse hexadécimale et la retourne en forme checksum."""
    candidate = (value or "").strip()
    if not is_address(candidate):
        raise ValidationError(f"{field_name} must be a 0x-prefixed 20-byte hex address")
    return to_checksum_address(candidate)


def parse_token_id(value: str) -> int:
    if not _TOKEN_ID_RE.match(value or ""):
        raise ValidationError("tokenId must be a non-negative integer")
    return int(value)


def require_tx_hash(value: str) -> str:
    if not _TX_HASH_RE.match(value or ""):
        raise ValidationError("txHash must be a 0x-prefixed 32-byte hex string")
    return value.lower()


def parse_attributes(raw: str | None) -> list[Any] | dict[str, Any] | None:
    """Décode le champ multipart `attributes` (JSON tableau ou objet)."""
    if raw is None or not raw.strip():
        return None
    try:
        value = json.loads(raw)
    except json.JSONDecodeError as err:
        raise ValidationError(f"attributes is not valid JSON: {err.msg}") from err
    if not isinstance(value, list | dict):
        raise ValidationError("attributes must be a JSON array or object")
    return value
