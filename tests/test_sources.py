"""Tests for the remote credential sources."""

import base64
import json
import os

import httpx
import pytest
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from relaybot.errors import CredentialFetchError
from relaybot.session.sources import PasteService, RemoteBlobStore, derive_blob_key

API_URL = "https://api.test/cs"
DOWNLOAD_URL = "https://dl.test/blob/1"


def make_key() -> str:
    return base64.urlsafe_b64encode(os.urandom(32)).decode().rstrip("=")


def encrypt(plaintext: bytes, key: str) -> bytes:
    aes_key, counter = derive_blob_key(key)
    encryptor = Cipher(algorithms.AES(aes_key), modes.CTR(counter)).encryptor()
    return encryptor.update(plaintext) + encryptor.finalize()


def blob_store(api_response, blob: bytes = b"", blob_status: int = 200):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if request.method == "POST":
            return httpx.Response(200, json=api_response)
        return httpx.Response(blob_status, content=blob)

    return RemoteBlobStore(API_URL, transport=httpx.MockTransport(handler)), requests


class TestRemoteBlobStore:
    """Tests for RemoteBlobStore."""

    @pytest.mark.asyncio
    async def test_download_and_decrypt(self):
        key = make_key()
        payload = b'{"registered": true}'
        store, requests = blob_store([{"g": DOWNLOAD_URL, "s": len(payload)}], encrypt(payload, key))

        assert await store.fetch("abc123", key) == payload

        post, get = requests
        assert json.loads(post.content) == [{"a": "g", "g": 1, "p": "abc123"}]
        assert "id" in post.url.params
        assert str(get.url) == DOWNLOAD_URL

    @pytest.mark.asyncio
    async def test_negative_error_code(self):
        store, requests = blob_store([-9])

        with pytest.raises(CredentialFetchError, match="-9"):
            await store.fetch("missing", make_key())
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_missing_download_url(self):
        store, _ = blob_store([{"s": 10}])

        with pytest.raises(CredentialFetchError, match="no download url"):
            await store.fetch("abc123", make_key())

    @pytest.mark.asyncio
    async def test_http_error_on_download(self):
        store, _ = blob_store([{"g": DOWNLOAD_URL}], blob_status=500)

        with pytest.raises(CredentialFetchError, match="failed to download"):
            await store.fetch("abc123", make_key())

    @pytest.mark.asyncio
    async def test_invalid_key_skips_network(self):
        store, requests = blob_store([{"g": DOWNLOAD_URL}])

        with pytest.raises(CredentialFetchError, match="length"):
            await store.fetch("abc123", "c2hvcnQ")
        assert requests == []


class TestPasteService:
    """Tests for PasteService."""

    @pytest.mark.asyncio
    async def test_returns_raw_bytes(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, content=b'{"me": {}}')

        service = PasteService("https://paste.test/raw/{key}", transport=httpx.MockTransport(handler))

        assert await service.fetch("Ab12") == b'{"me": {}}'
        assert seen == ["https://paste.test/raw/Ab12"]

    @pytest.mark.asyncio
    async def test_empty_paste(self):
        service = PasteService(transport=httpx.MockTransport(lambda request: httpx.Response(200, content=b"")))

        with pytest.raises(CredentialFetchError, match="empty"):
            await service.fetch("Ab12")

    @pytest.mark.asyncio
    async def test_not_found(self):
        service = PasteService(transport=httpx.MockTransport(lambda request: httpx.Response(404)))

        with pytest.raises(CredentialFetchError, match="Ab12"):
            await service.fetch("Ab12")
