"""
Reference Store - Cached Reference Image Resolution

Turns reference strings (inline data URIs or http(s) URLs) into raw image
bytes with a usable MIME type. Results are cached per store instance:

- capacity-bounded, oldest inserted entry evicted first
- whole cache invalidated once it is older than the TTL
- concurrent resolves of one reference share a single fetch

Resolution never raises: an unreachable or malformed reference resolves to
None and the caller simply leaves that image out.
"""

import asyncio
import base64
import binascii
import io
import time
from collections import OrderedDict
from typing import Callable, Dict, Iterable, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from storyframe.core.logging_config import get_logger
from storyframe.core.models import ImageData

logger = get_logger("core.reference_store")

DEFAULT_MIME_TYPE = "image/png"

EXTENSION_MIME_TYPES = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "webp": "image/webp",
    "gif": "image/gif",
}


def sniff_mime_type(data: bytes) -> Optional[str]:
    """Detect an image MIME type from its bytes using Pillow."""
    try:
        with Image.open(io.BytesIO(data)) as img:
            return Image.MIME.get(img.format or "")
    except (UnidentifiedImageError, OSError, ValueError):
        return None


def fix_mime_type(mime_type: Optional[str], url: Optional[str] = None, data: Optional[bytes] = None) -> str:
    """
    Return a MIME type image backends will accept.

    Generic or missing types (including application/octet-stream) are replaced
    by the URL's file extension, then by sniffing the bytes, then image/png.

    Args:
        mime_type: Type reported by the transport, if any
        url: Source URL; the query string is ignored
        data: Image bytes used for sniffing

    Returns:
        An ``image/*`` MIME type
    """
    if mime_type:
        mime_type = mime_type.split(";")[0].strip().lower()
        if mime_type.startswith("image/"):
            return mime_type

    if url:
        path = url.split("?")[0].split("#")[0]
        ext = path.rsplit(".", 1)[-1].lower() if "." in path.rsplit("/", 1)[-1] else ""
        if ext in EXTENSION_MIME_TYPES:
            return EXTENSION_MIME_TYPES[ext]

    if data:
        sniffed = sniff_mime_type(data)
        if sniffed:
            return sniffed

    logger.debug(f"MIME type '{mime_type}' replaced with {DEFAULT_MIME_TYPE}")
    return DEFAULT_MIME_TYPE


def decode_data_uri(ref: str) -> ImageData:
    """
    Decode a ``data:<mime>;base64,<payload>`` reference.

    Raises:
        ValueError: If the reference is not a base64 data URI
    """
    header, sep, payload = ref.partition(",")
    if not sep or ";base64" not in header:
        raise ValueError("Not a base64 data URI")
    mime_type = header[len("data:"):].split(";")[0]
    try:
        data = base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 payload: {e}") from e
    if not data:
        raise ValueError("Empty data URI payload")
    return ImageData(data=data, mime_type=fix_mime_type(mime_type, data=data))


class ReferenceStore:
    """
    Per-instance cache of resolved reference images.

    Usage:
        async with ReferenceStore() as store:
            image = await store.resolve("https://cdn.example.com/face.png")
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        max_size: int = 100,
        ttl_minutes: float = 30.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the store.

        Args:
            client: Shared HTTP client. One is created (and owned) if omitted.
            timeout: Per-fetch timeout in seconds
            max_size: Maximum number of cached images
            ttl_minutes: Age after which the whole cache is dropped
            clock: Monotonic time source in seconds
        """
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout
        self.max_size = max_size
        self.ttl_seconds = ttl_minutes * 60
        self._clock = clock
        self._cache: "OrderedDict[str, ImageData]" = OrderedDict()
        self._inflight: Dict[str, "asyncio.Future[Optional[ImageData]]"] = {}
        self._cache_started = clock()
        self.fetch_count = 0

    async def __aenter__(self) -> "ReferenceStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    def _check_expiry(self) -> None:
        if self._clock() - self._cache_started > self.ttl_seconds:
            if self._cache:
                logger.debug(f"Reference cache expired, dropping {len(self._cache)} entries")
            self._cache.clear()
            self._cache_started = self._clock()

    def _store(self, ref: str, image: ImageData) -> None:
        while len(self._cache) >= self.max_size:
            self._cache.popitem(last=False)
        self._cache[ref] = image

    async def resolve(self, ref: Optional[str]) -> Optional[ImageData]:
        """
        Resolve a reference string to image bytes.

        Args:
            ref: Data URI or http(s) URL

        Returns:
            ImageData, or None if the reference cannot be resolved
        """
        if not ref:
            return None

        self._check_expiry()
        cached = self._cache.get(ref)
        if cached is not None:
            return cached

        pending = self._inflight.get(ref)
        if pending is not None:
            return await asyncio.shield(pending)

        future: "asyncio.Future[Optional[ImageData]]" = asyncio.get_running_loop().create_future()
        self._inflight[ref] = future
        try:
            image = await self._load(ref)
            if image is not None:
                self._store(ref, image)
            future.set_result(image)
            return image
        finally:
            self._inflight.pop(ref, None)
            if not future.done():
                future.set_result(None)

    async def _load(self, ref: str) -> Optional[ImageData]:
        if ref.startswith("data:"):
            try:
                return decode_data_uri(ref)
            except ValueError as e:
                logger.warning(f"Unusable data URI reference: {e}")
                return None

        if ref.startswith(("http://", "https://")):
            return await self._fetch(ref)

        logger.warning(f"Unsupported reference format: {ref[:40]}")
        return None

    async def _fetch(self, url: str) -> Optional[ImageData]:
        start = time.time()
        self.fetch_count += 1
        try:
            response = await self._get_client().get(url, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"Failed to fetch reference {url[:80]}: {e}")
            return None

        data = response.content
        if not data:
            logger.warning(f"Empty reference body for {url[:80]}")
            return None

        mime_type = fix_mime_type(response.headers.get("content-type"), url=url, data=data)
        logger.debug(f"Fetched reference in {int((time.time() - start) * 1000)}ms ({mime_type})")
        return ImageData(data=data, mime_type=mime_type)

    async def pre_warm(self, refs: Iterable[Optional[str]]) -> int:
        """
        Resolve many references concurrently ahead of a batch.

        Args:
            refs: Reference strings; empty values and duplicates are skipped

        Returns:
            Number of references that resolved successfully
        """
        unique = list(dict.fromkeys(r for r in refs if r))
        if not unique:
            return 0

        logger.info(f"Pre-warming reference cache with {len(unique)} images...")
        results = await asyncio.gather(*(self.resolve(r) for r in unique))
        success_count = sum(1 for r in results if r is not None)
        logger.info(f"Pre-warmed {success_count}/{len(unique)} reference images")
        return success_count

    def clear(self) -> None:
        self._cache.clear()
        self._cache_started = self._clock()

    def stats(self) -> Dict[str, float]:
        return {
            "size": len(self._cache),
            "max_size": self.max_size,
            "ttl_minutes": self.ttl_seconds / 60,
            "age_minutes": round((self._clock() - self._cache_started) / 60),
        }

    def __contains__(self, ref: str) -> bool:
        return ref in self._cache
