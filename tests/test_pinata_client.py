"""Tests pour le client Pinata (httpx.MockTransport, aucun appel réseau)."""

from __future__ import annotations

import json

import httpx
import pytest

from anchor_backend.domain.errors import ErrorKind, UploadError
from anchor_backend.infra.content.pinata import PinataContentStore, classify_status

BASE_URL = "https://pinata.test/pinning"


def _store(handler) -> PinataContentStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PinataContentStore("key-123", "secret-456", base_url=BASE_URL, client=client)


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        (200, None),
        (400, ErrorKind.PERMANENT),
        (401, ErrorKind.PERMANENT),
        (408, ErrorKind.TRANSIENT),
        (413, ErrorKind.PERMANENT),
        (429, ErrorKind.TRANSIENT),
        (500, ErrorKind.TRANSIENT),
        (503, ErrorKind.TRANSIENT),
    ],
)
def test_classify_status(status, expected):
    assert classify_status(status) is expected


@pytest.mark.asyncio
async def test_put_bytes_posts_multipart_with_credentials():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["api_key"] = request.headers.get("pinata_api_key")
        seen["secret"] = request.headers.get("pinata_secret_api_key")
        seen["body"] = request.content
        return httpx.Response(200, json={"IpfsHash": "QmImage"})

    store = _store(handler)
    ref = await store.put_bytes(b"PNGDATA", "art.png")
    await store.aclose()

    assert ref.uri == "ipfs://QmImage"
    assert seen["path"] == "/pinning/pinFileToIPFS"
    assert seen["api_key"] == "key-123"
    assert seen["secret"] == "secret-456"
    assert b'filename="art.png"' in seen["body"]
    assert b"PNGDATA" in seen["body"]


@pytest.mark.asyncio
async def test_put_json_posts_document():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["json"] = json.loads(request.content)
        return httpx.Response(200, json={"IpfsHash": "QmMeta", "PinSize": 10})

    store = _store(handler)
    document = {"name": "n", "description": "d", "image": "ipfs://QmImage", "attributes": []}
    ref = await store.put_json(document)

    assert ref.cid == "QmMeta"
    assert seen["path"] == "/pinning/pinJSONToIPFS"
    assert seen["json"] == document


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "transient"),
    [(500, True), (502, True), (429, True), (400, False), (403, False)],
)
async def test_error_status_maps_to_upload_error(status, transient):
    store = _store(lambda request: httpx.Response(status, text="nope"))

    with pytest.raises(UploadError) as exc_info:
        await store.put_bytes(b"x", "x.png")

    assert exc_info.value.transient is transient
    assert str(status) in exc_info.value.message


@pytest.mark.asyncio
async def test_transport_error_is_transient():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    store = _store(handler)
    with pytest.raises(UploadError) as exc_info:
        await store.put_json({"a": 1})
    assert exc_info.value.transient


@pytest.mark.asyncio
async def test_missing_ipfs_hash_is_permanent():
    store = _store(lambda request: httpx.Response(200, json={"ok": True}))
    with pytest.raises(UploadError) as exc_info:
        await store.put_json({"a": 1})
    assert exc_info.value.kind is ErrorKind.PERMANENT
