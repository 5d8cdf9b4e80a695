"""
Routes de publication de contenu: `/upload-image` et `/mint-image`.

Le fichier est accepté sous le champ `file` ou `image`; `attributes` est une chaîne JSON
(tableau ou objet).
"""

from fastapi import APIRouter, Depends, File, Form, UploadFile

from anchor_backend.api.deps import get_orchestrator
from anchor_backend.api.schemas import parse_attributes, require_address
from anchor_backend.domain.entities import ContentPayload, CreateAnchor
from anchor_backend.domain.errors import ValidationError
from anchor_backend.domain.orchestrator import AnchorOrchestrator

router = APIRouter(tags=["upload"])
orchestrator_dep = Depends(get_orchestrator)

NO_FILE_MESSAGE = "No file uploaded. Field name must be 'file'."


async def read_payload(
    file: UploadFile | None,
    image: UploadFile | None,
    name: str | None,
    description: str | None,
    attributes: str | None,
) -> ContentPayload:
    upload = file if file is not None else image
    if upload is None:
        raise ValidationError(NO_FILE_MESSAGE)
    data = await upload.read()
    return ContentPayload(
        data=data,
        filename=upload.filename or "upload",
        name=name,
        description=description,
        attributes=parse_attributes(attributes),
    )


@router.post("/upload-image")
async def upload_image(
    file: UploadFile | None = File(None),
    image: UploadFile | None = File(None),
    name: str | None = Form(None),
    description: str | None = Form(None),
    attributes: str | None = Form(None),
    orchestrator: AnchorOrchestrator = orchestrator_dep,
):
    """
    Publie l'image puis le document de métadonnées qui la référence.

    Retour: `{success, imageCid, metadataCid, metadataUri, metadata}`.
    """
    payload = await read_payload(file, image, name, description, attributes)
    result = await orchestrator.upload_content(payload)
    return {
        "success": True,
        "imageCid": result.image_cid,
        "metadataCid": result.metadata_cid,
        "metadataUri": result.metadata_uri,
        "metadata": result.metadata,
    }


@router.post("/mint-image")
async def mint_image(
    file: UploadFile | None = File(None),
    image: UploadFile | None = File(None),
    to: str | None = Form(None),
    name: str | None = Form(None),
    description: str | None = Form(None),
    attributes: str | None = Form(None),
    orchestrator: AnchorOrchestrator = orchestrator_dep,
):
    """Publie le contenu et crée l'enregistrement correspondant en une seule opération."""
    if not to:
        raise ValidationError("to is required")
    owner = require_address(to)
    payload = await read_payload(file, image, name, description, attributes)
    result = await orchestrator.anchor(CreateAnchor(owner, content=payload))
    return {
        "success": True,
        "txHash": result.tx_hash,
        "tokenId": str(result.record_id),
        "metadataUri": result.reference,
        "imageCid": result.image_cid,
        "metadataCid": result.metadata_cid,
        "metadata": result.metadata,
        "operationId": result.operation_id,
    }
