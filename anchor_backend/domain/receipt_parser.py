"""Extraction de l'identifiant attribué par le ledger depuis un reçu.

Le ledger choisit l'identifiant d'un enregistrement créé; il n'est connu qu'à travers l'événement
de création émis dans le reçu. Le schéma attendu est explicite (`CreationEventSchema`) et l'absence
de l'événement est une `ParseError`, jamais une valeur par défaut.
"""

from __future__ import annotations

from dataclasses import dataclass

from anchor_backend.domain.entities import Receipt
from anchor_backend.domain.errors import ParseError

ZERO_ADDRESS = "0x" + "0" * 40


@dataclass(frozen=True)
class CreationEventSchema:
    """Forme de l'événement de création (ex: `Transfer(from=0x0, to, tokenId)`)."""

    name: str = "Transfer"
    id_field: str = "tokenId"
    origin_field: str | None = "from"
    origin_value: str | None = ZERO_ADDRESS


def _matches(args: dict, schema: CreationEventSchema) -> bool:
    if schema.id_field not in args:
        return False
    if schema.origin_field is None or schema.origin_field not in args:
        return True
    return str(args[schema.origin_field]).lower() == str(schema.origin_value).lower()


def parse_created_id(receipt: Receipt, schema: CreationEventSchema | None = None) -> int:
    """Retourne l'identifiant créé, quelle que soit la position de l'événement.

    Un transfert dont l'origine n'est pas l'adresse nulle (transfert ordinaire émis dans la même
    transaction) est ignoré.
    """
    schema = schema or CreationEventSchema()
    for entry in receipt.logs:
        if entry.event != schema.name or not _matches(entry.args, schema):
            continue
        try:
            return int(entry.args[schema.id_field])
        except (TypeError, ValueError) as err:
            raise ParseError(
                f"{schema.name}.{schema.id_field} is not an integer", tx_hash=receipt.tx_hash
            ) from err
    raise ParseError(
        f"no {schema.name} event found in receipt", tx_hash=receipt.tx_hash
    )
