"""
Tests for Reference Store

Tests for storyframe/core/reference_store.py
"""

import asyncio
import io

import httpx
import pytest
from PIL import Image

from storyframe.core.reference_store import (
    ReferenceStore,
    decode_data_uri,
    fix_mime_type,
    sniff_mime_type,
)


FACE_URL = "https://cdn.example.com/refs/face.png"


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def counting_handler(png_bytes, content_type="image/png"):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        if request.url.path.endswith("missing.png"):
            return httpx.Response(404)
        return httpx.Response(200, content=png_bytes, headers={"content-type": content_type})

    return handler, calls


class TestMimeTypes:
    """Tests for MIME type repair."""

    def test_keeps_image_type(self):
        assert fix_mime_type("image/webp; charset=binary") == "image/webp"

    def test_octet_stream_uses_url_extension(self):
        assert fix_mime_type("application/octet-stream", url="https://x.io/a/shot.JPG?sig=abc") == "image/jpeg"

    def test_sniffs_bytes(self, png_bytes):
        assert fix_mime_type("application/octet-stream", url="https://x.io/blob", data=png_bytes) == "image/png"

    def test_sniffs_jpeg(self):
        buffer = io.BytesIO()
        Image.new("RGB", (4, 4), (0, 0, 255)).save(buffer, format="JPEG")
        assert sniff_mime_type(buffer.getvalue()) == "image/jpeg"

    def test_defaults_to_png(self):
        assert fix_mime_type(None, data=b"not an image") == "image/png"


class TestDataUri:
    """Tests for data URI decoding."""

    def test_decode(self, png_bytes, image_uri):
        image = decode_data_uri(image_uri((200, 30, 30)))
        assert image.data == png_bytes
        assert image.mime_type == "image/png"

    def test_rejects_non_base64(self):
        with pytest.raises(ValueError):
            decode_data_uri("data:image/png,plain")

    def test_rejects_empty_payload(self):
        with pytest.raises(ValueError):
            decode_data_uri("data:image/png;base64,")


class TestReferenceStore:
    """Tests for ReferenceStore resolution and caching."""

    @pytest.mark.asyncio
    async def test_resolves_data_uri_without_fetch(self, image_uri, mock_client, png_bytes):
        handler, calls = counting_handler(png_bytes)
        store = ReferenceStore(client=mock_client(handler))

        image = await store.resolve(image_uri())

        assert image is not None and image.data == png_bytes
        assert calls == []

    @pytest.mark.asyncio
    async def test_same_url_fetched_once_within_ttl(self, mock_client, png_bytes):
        handler, calls = counting_handler(png_bytes)
        clock = FakeClock()
        store = ReferenceStore(client=mock_client(handler), ttl_minutes=30, clock=clock)

        first = await store.resolve(FACE_URL)
        clock.now = 10 * 60
        second = await store.resolve(FACE_URL)

        assert first is second
        assert len(calls) == 1
        assert store.fetch_count == 1

    @pytest.mark.asyncio
    async def test_refetched_after_ttl(self, mock_client, png_bytes):
        handler, calls = counting_handler(png_bytes)
        clock = FakeClock()
        store = ReferenceStore(client=mock_client(handler), ttl_minutes=30, clock=clock)

        await store.resolve(FACE_URL)
        clock.now = 31 * 60
        await store.resolve(FACE_URL)

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_fetch(self, mock_client, png_bytes):
        handler, calls = counting_handler(png_bytes)
        store = ReferenceStore(client=mock_client(handler))

        results = await asyncio.gather(*(store.resolve(FACE_URL) for _ in range(4)))

        assert all(r is not None for r in results)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_octet_stream_response_repaired(self, mock_client, png_bytes):
        handler, _ = counting_handler(png_bytes, content_type="application/octet-stream")
        store = ReferenceStore(client=mock_client(handler))

        image = await store.resolve("https://cdn.example.com/refs/blob?id=7")

        assert image.mime_type == "image/png"

    @pytest.mark.asyncio
    async def test_failures_resolve_to_none(self, mock_client, png_bytes):
        handler, _ = counting_handler(png_bytes)
        store = ReferenceStore(client=mock_client(handler))

        assert await store.resolve("https://cdn.example.com/refs/missing.png") is None
        assert await store.resolve("ftp://example.com/a.png") is None
        assert await store.resolve("data:image/png;base64,") is None
        assert await store.resolve(None) is None

    @pytest.mark.asyncio
    async def test_connection_error_resolves_to_none(self, mock_client):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        store = ReferenceStore(client=mock_client(handler))
        assert await store.resolve(FACE_URL) is None

    @pytest.mark.asyncio
    async def test_capacity_evicts_oldest(self, image_uri):
        store = ReferenceStore(max_size=2)
        refs = [image_uri((i, i, i)) for i in (1, 2, 3)]

        for ref in refs:
            await store.resolve(ref)

        assert refs[0] not in store
        assert refs[1] in store and refs[2] in store
        assert store.stats()["size"] == 2

    @pytest.mark.asyncio
    async def test_pre_warm(self, mock_client, png_bytes, image_uri):
        handler, calls = counting_handler(png_bytes)
        store = ReferenceStore(client=mock_client(handler))

        warmed = await store.pre_warm([
            FACE_URL, FACE_URL, None, "", image_uri(), "https://cdn.example.com/refs/missing.png"
        ])

        assert warmed == 2
        assert FACE_URL in store
        assert len([c for c in calls if c == FACE_URL]) == 1

    @pytest.mark.asyncio
    async def test_clear(self, image_uri):
        store = ReferenceStore()
        ref = image_uri()
        await store.resolve(ref)

        store.clear()

        assert ref not in store
