"""
Endpoints de santé pour vérifier la disponibilité de l'API et de ses adaptateurs.

Expose `HEAD /ping` (sonde de vie, sans corps) et `/health` (backends ledger/contenu utilisés).
"""

from fastapi import APIRouter, Depends, Response

from anchor_backend.api.deps import get_container
from anchor_backend.core.container import Container
from anchor_backend.core.http_constants import HTTP_OK

router = APIRouter(tags=["health"])
container_dep = Depends(get_container)


@router.head("/ping")
def ping():
    """Sonde de vie: 200 sans corps."""
    return Response(status_code=HTTP_OK)


@router.get("/health")
def health(container: Container = container_dep):
    """Vérifie la disponibilité de l'API et les backends configurés."""
    return {
        "status": "ok",
        "ledger": container.ledger.name,
        "content": container.content_store.name,
        "signer": container.ledger.signer,
        "outcome_store": container.outcome_store.backend,
        "inflight": container.registry.active_count(),
    }
