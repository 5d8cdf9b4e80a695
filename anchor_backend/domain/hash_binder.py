"""Calcul du hash d'engagement d'une référence de contenu.

Le hash engage la chaîne de référence elle-même (ex: `ipfs://Qm...`), pas les octets du contenu
pointé: c'est le contrat déjà présent on-chain et il doit être reproduit à l'identique.
Keccak-256 sur l'encodage UTF-8, rendu en hexadécimal préfixé `0x` (66 caractères).
"""

from __future__ import annotations

from eth_utils import keccak

HASH_HEX_LENGTH = 66


def bind(reference: str) -> str:
    """Retourne le hash d'engagement `0x…` de `reference`."""
    return "0x" + keccak(reference.encode("utf-8")).hex()


def to_bytes32(commitment: str) -> bytes:
    """Convertit un hash `0x…` en 32 octets pour l'appel de contrat."""
    raw = bytes.fromhex(commitment[2:] if commitment.startswith("0x") else commitment)
    if len(raw) != 32:  # noqa: PLR2004
        raise ValueError("commitment hash must be 32 bytes")
    return raw


def normalize(commitment: str | bytes) -> str:
    """Normalise un hash lu on-chain (bytes ou hex) au format `0x` minuscule."""
    if isinstance(commitment, (bytes, bytearray)):
        return "0x" + bytes(commitment).hex()
    value = commitment.lower()
    return value if value.startswith("0x") else "0x" + value
