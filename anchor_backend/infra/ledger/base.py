"""Interface de base pour les clients ledger (contrat d'ancrage)."""

from __future__ import annotations

from abc import ABC, abstractmethod

from anchor_backend.domain.entities import PendingTx, Receipt


class LedgerClient(ABC):
    """Interface abstraite du contrat: création, évolution, lecture.

    Erreurs attendues:
      - `LedgerError(REVERTED)`: transition refusée par le ledger (permanent);
      - `LedgerError(TRANSIENT)`: échec réseau/RPC avant diffusion (rejouable);
      - `LedgerError(TRANSIENT, broadcast=True)`: échec après diffusion possible (non rejouable);
      - `NotFound`: `read_uri` sur un identifiant inconnu.

    Les soumissions d'un même signataire doivent être sérialisées par l'appelant.
    """

    name = "abstract"

    @property
    @abstractmethod
    def signer(self) -> str | None:
        """Adresse du compte signataire (clé de la file de soumission)."""
        ...

    @abstractmethod
    async def submit_create(self, owner: str, reference: str, commitment: str) -> PendingTx:
        """Soumet la création d'un enregistrement."""
        ...

    @abstractmethod
    async def submit_update(self, record_id: int, reference: str, commitment: str) -> PendingTx:
        """Soumet l'évolution d'un enregistrement existant."""
        ...

    @abstractmethod
    async def read_uri(self, record_id: int, block: int | None = None) -> str:
        """Lit la référence d'un enregistrement (au bloc `block` si fourni)."""
        ...

    async def read_commitment(self, record_id: int, block: int | None = None) -> str | None:
        """Lit le hash stocké on-chain, si le contrat l'expose (None sinon)."""
        return None

    @abstractmethod
    async def await_confirmation(self, pending: PendingTx, confirmations: int) -> Receipt:
        """Attend la profondeur de confirmation; le timeout est imposé par l'appelant."""
        ...

    @abstractmethod
    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        """Retourne le reçu d'une transaction minée, ou None si encore en attente."""
        ...

    async def aclose(self) -> None:  # noqa: B027
        """Libère les ressources réseau éventuelles."""
