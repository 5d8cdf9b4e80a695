# ============================================================
# Module : anchor_backend/infra/content/pinata.py
# Objet  : Publication d'images et de métadonnées sur IPFS via Pinata.
# Invariants :
#  - Une tentative = un appel HTTP; le retry est décidé par l'orchestrateur.
#  - Les clés API ne sont jamais journalisées.
# ============================================================
"""Client Pinata (pinFileToIPFS / pinJSONToIPFS) au-dessus de httpx.

Classification des échecs:
  - transitoire: erreurs de transport, timeouts, 408, 429, 5xx;
  - permanent: autres 4xx (charge trop lourde, JSON invalide, identifiants refusés) et réponses
    sans `IpfsHash`.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from anchor_backend.core.http_constants import (
    HTTP_REQUEST_TIMEOUT,
    HTTP_STATUS_CLIENT_ERROR_MIN,
    HTTP_STATUS_SERVER_ERROR_MIN,
    HTTP_TOO_MANY_REQUESTS,
)
from anchor_backend.domain.entities import ContentReference
from anchor_backend.domain.errors import ErrorKind, UploadError
from anchor_backend.infra.content.base import ContentStoreClient

_TRANSIENT_4XX = {HTTP_REQUEST_TIMEOUT, HTTP_TOO_MANY_REQUESTS}


def classify_status(status_code: int) -> ErrorKind | None:
    """Retourne la catégorie d'échec d'un statut HTTP, ou None en cas de succès."""
    if status_code < HTTP_STATUS_CLIENT_ERROR_MIN:
        return None
    if status_code >= HTTP_STATUS_SERVER_ERROR_MIN or status_code in _TRANSIENT_4XX:
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


class PinataContentStore(ContentStoreClient):
    """Adaptateur Pinata.

    Variables utilisées (via Settings/Vault):
      - `PINATA_API_KEY`, `PINATA_SECRET_API_KEY`
      - `PINATA_BASE_URL` (défaut: https://api.pinata.cloud/pinning)
    """

    name = "pinata"

    def __init__(
        self,
        api_key: str,
        secret_api_key: str,
        base_url: str = "https://api.pinata.cloud/pinning",
        timeout_s: float = 60.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._log = structlog.get_logger(__name__).bind(component="pinata")
        headers = {"pinata_api_key": api_key, "pinata_secret_api_key": secret_api_key}
        if client is None:
            timeout = httpx.Timeout(connect=5.0, read=timeout_s, write=timeout_s, pool=5.0)
            limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
            client = httpx.AsyncClient(headers=headers, timeout=timeout, limits=limits)
        else:
            client.headers.update(headers)
        self._client = client

    async def _post(self, path: str, **kwargs: Any) -> str:
        url = f"{self.base_url}{path}"
        try:
            resp = await self._client.post(url, **kwargs)
        except httpx.TransportError as exc:
            raise UploadError(f"storage provider unreachable: {exc}", ErrorKind.TRANSIENT) from exc

        kind = classify_status(resp.status_code)
        if kind is not None:
            detail = resp.text[:200]
            self._log.warning("pinata_upload_rejected", path=path, status=resp.status_code)
            raise UploadError(
                f"storage provider returned {resp.status_code}: {detail}".rstrip(": "), kind
            )
        try:
            cid = resp.json().get("IpfsHash")
        except ValueError:
            cid = None
        if not cid:
            raise UploadError("storage provider response has no IpfsHash", ErrorKind.PERMANENT)
        return str(cid)

    async def put_bytes(self, data: bytes, filename: str) -> ContentReference:
        files = {"file": (filename, data)}
        cid = await self._post("/pinFileToIPFS", files=files)
        self._log.info("pinata_file_pinned", filename=filename, size=len(data), cid=cid)
        return ContentReference.ipfs(cid)

    async def put_json(self, document: dict[str, Any]) -> ContentReference:
        cid = await self._post("/pinJSONToIPFS", json=document)
        self._log.info("pinata_json_pinned", cid=cid)
        return ContentReference.ipfs(cid)

    async def aclose(self) -> None:
        await self._client.aclose()
