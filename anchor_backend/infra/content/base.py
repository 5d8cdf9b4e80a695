"""Interface de base pour les stores de contenu adressé par contenu."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from anchor_backend.domain.entities import ContentReference


class ContentStoreClient(ABC):
    """Interface abstraite: publie des octets ou un document JSON, renvoie une référence.

    Les implémentations lèvent `UploadError` (transitoire: réseau/5xx/429; permanent: charge
    refusée). Aucune déduplication des retries n'est supposée côté store.
    """

    name = "abstract"

    @abstractmethod
    async def put_bytes(self, data: bytes, filename: str) -> ContentReference:
        """Publie des octets bruts."""
        ...

    @abstractmethod
    async def put_json(self, document: dict[str, Any]) -> ContentReference:
        """Publie un document JSON."""
        ...

    async def aclose(self) -> None:  # noqa: B027
        """Libère les ressources réseau éventuelles."""
