"""
Routes d'ancrage: création, évolution, lecture et suivi des opérations.

Ce module expose `/mint`, `/evolve/{token_id}`, `/token/{token_id}`, `/operations/{operation_id}`
et `/tx/{tx_hash}`. Les erreurs du domaine remontent telles quelles; les gestionnaires de
`api.errors` les transforment en enveloppes `{success: false, error}`.
"""

from fastapi import APIRouter, Depends

from anchor_backend.api.deps import get_orchestrator
from anchor_backend.api.schemas import (
    EvolveRequest,
    MintRequest,
    parse_token_id,
    require_address,
    require_tx_hash,
)
from anchor_backend.domain.entities import AnchorResult
from anchor_backend.domain.errors import NotFound, ValidationError
from anchor_backend.domain.orchestrator import AnchorOrchestrator

router = APIRouter(tags=["anchor"])
orchestrator_dep = Depends(get_orchestrator)


def anchor_response(result: AnchorResult) -> dict:
    return {
        "success": True,
        "txHash": result.tx_hash,
        "tokenId": str(result.record_id),
        "metadataUri": result.reference,
        "operationId": result.operation_id,
    }


@router.post("/mint")
async def mint(payload: MintRequest, orchestrator: AnchorOrchestrator = orchestrator_dep):
    """
    Crée un enregistrement pointant vers `metadataUri` pour le propriétaire `to`.

    Retour: `{success, txHash, tokenId, metadataUri, operationId}` une fois la transaction
    confirmée et relue.
    """
    if not payload.to or not payload.metadataUri:
        raise ValidationError("to and metadataUri are required")
    owner = require_address(payload.to)
    result = await orchestrator.mint(owner, payload.metadataUri)
    return anchor_response(result)


@router.post("/evolve/{token_id}")
async def evolve(
    token_id: str, payload: EvolveRequest, orchestrator: AnchorOrchestrator = orchestrator_dep
):
    """Fait évoluer l'enregistrement `token_id` vers une nouvelle référence."""
    if not payload.metadataUri:
        raise ValidationError("metadataUri is required")
    record_id = parse_token_id(token_id)
    result = await orchestrator.evolve(record_id, payload.metadataUri)
    return anchor_response(result)


@router.get("/token/{token_id}")
async def get_token(token_id: str, orchestrator: AnchorOrchestrator = orchestrator_dep):
    """Retourne la référence courante d'un enregistrement (404 si inconnu)."""
    record_id = parse_token_id(token_id)
    uri = await orchestrator.read_reference(record_id)
    return {"success": True, "tokenId": str(record_id), "uri": uri}


@router.get("/operations/{operation_id}")
def get_operation(operation_id: str, orchestrator: AnchorOrchestrator = orchestrator_dep):
    """État courant d'une opération (404 si inconnue ou évincée après rétention)."""
    op = orchestrator.get_operation(operation_id)
    if op is None:
        raise NotFound(f"operation {operation_id} not found")
    return {"success": True, "operation": op.snapshot()}


@router.delete("/operations/{operation_id}")
def cancel_operation(operation_id: str, orchestrator: AnchorOrchestrator = orchestrator_dep):
    """
    Annule une opération avant soumission.

    Une fois la transaction envoyée, l'annulation n'est plus possible: l'opération est marquée
    abandonnée et sa transaction reste consultable via `/tx/{txHash}`.
    """
    op = orchestrator.cancel(operation_id)
    return {
        "success": True,
        "cancelled": op.cancel_requested,
        "abandoned": op.abandoned,
        "state": op.state.value,
        "txHash": op.tx_hash,
    }


@router.get("/tx/{tx_hash}")
async def get_transaction(tx_hash: str, orchestrator: AnchorOrchestrator = orchestrator_dep):
    """Statut d'une transaction (`pending`, `confirmed`, `reverted`)."""
    status = await orchestrator.transaction_status(require_tx_hash(tx_hash))
    return {"success": True, **status}
