"""
Store de contenu en mémoire (utilisé pour dev/tests).

Les identifiants sont dérivés du SHA-256 des octets publiés: un même contenu donne toujours la
même référence, comme sur IPFS.
"""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Any

from anchor_backend.domain.entities import ContentReference
from anchor_backend.infra.content.base import ContentStoreClient


def fake_cid(data: bytes) -> str:
    digest = hashlib.sha256(data).digest()
    return "bafk" + base64.b32encode(digest).decode("ascii").lower().rstrip("=")


class InMemoryContentStore(ContentStoreClient):
    """Stocke les blobs dans un dict local, non persistant."""

    name = "memory"

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.filenames: dict[str, str] = {}

    async def put_bytes(self, data: bytes, filename: str) -> ContentReference:
        cid = fake_cid(data)
        self.blobs[cid] = data
        self.filenames[cid] = filename
        return ContentReference.ipfs(cid)

    async def put_json(self, document: dict[str, Any]) -> ContentReference:
        raw = json.dumps(document, sort_keys=True, separators=(",", ":")).encode("utf-8")
        cid = fake_cid(raw)
        self.blobs[cid] = raw
        return ContentReference.ipfs(cid)

    def get_json(self, cid: str) -> dict[str, Any]:
        return json.loads(self.blobs[cid])
