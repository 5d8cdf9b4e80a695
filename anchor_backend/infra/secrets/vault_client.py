"""
Lecture des identifiants sensibles du service depuis Vault.

Trois secrets sont gérés ici: la clé privée du compte qui signe les transactions (`PRIVATE_KEY`)
et le couple de clés Pinata (`PINATA_API_KEY`, `PINATA_SECRET_API_KEY`). Les autres paramètres
(RPC_URL, adresse du contrat...) ne sont pas secrets et restent dans l'environnement ou les
settings. En dev/tests, `VAULT_MOCK_<NOM>` tient lieu de Vault.
"""

# ============================================================
# Module : anchor_backend/infra/secrets/vault_client.py
# Objet  : Secrets de signature et de stockage (Vault ou mock).
# Invariants :
#  - Une valeur de secret n'apparaît jamais dans les logs.
#  - Un nom hors MANAGED_SECRETS n'est jamais demandé à Vault.
# ============================================================

from __future__ import annotations

import os

import structlog

log = structlog.get_logger(__name__)

MANAGED_SECRETS = frozenset({"PRIVATE_KEY", "PINATA_API_KEY", "PINATA_SECRET_API_KEY"})
MOCK_PREFIX = "VAULT_MOCK_"


def _flag(raw: str | None) -> bool:
    return (raw or "").strip().lower() in {"1", "true", "yes"}


class VaultClient:
    """Source Vault des secrets du signataire et du store de contenu.

    Renvoie "" quand le secret est introuvable: le conteneur poursuit alors sa résolution
    (environnement puis settings).
    """

    def __init__(self, enabled: bool | None = None) -> None:
        self._url = os.getenv("VAULT_ADDR", "")
        self._token = os.getenv("VAULT_TOKEN", "")
        self._enabled = _flag(os.getenv("VAULT_ENABLED")) if enabled is None else bool(enabled)

    @property
    def enabled(self) -> bool:
        return self._enabled

    def get_secret(self, key: str) -> str:
        """Valeur de `key` (nom insensible à la casse), ou "" si Vault ne la fournit pas."""
        name = key.strip().upper()
        if not self._enabled:
            return ""
        if name not in MANAGED_SECRETS:
            log.debug("vault_secret_unmanaged", key=name)
            return ""
        mocked = os.getenv(MOCK_PREFIX + name)
        if mocked:
            log.debug("vault_secret_resolved", key=name, source="mock")
            return mocked
        if not (self._url and self._token):
            log.debug("vault_not_configured", key=name, has_addr=bool(self._url))
        return ""
