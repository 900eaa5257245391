"""
Async network I/O: URL verification, image fetching and embedding retrieval
"""
import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

import aiohttp

from .config import EmbeddingSettings, NetworkSettings
from .models import Image
from .similarity import to_unit

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 10 * 1024 * 1024

HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/122.0 Safari/537.36',
    'Accept': 'image/webp,image/apng,image/*,*/*;q=0.8',
}


def is_remote(url: str) -> bool:
    return bool(url) and url.startswith(('http://', 'https://'))


def _headers_for(url: str) -> dict:
    headers = dict(HEADERS)
    # Referer from the URL improves CDN acceptance
    parsed = urlparse(url)
    if parsed.netloc:
        headers['Referer'] = f"{parsed.scheme}://{parsed.netloc}"
    return headers


async def verify_url(session: aiohttp.ClientSession, url: str) -> bool:
    """
    Check that an image URL is reachable.

    A HEAD request counts as success on 2xx, 3xx and 403 (some storage hosts
    refuse HEAD but serve GET). Otherwise a single-byte ranged GET decides.
    Local paths are checked for existence.

    Args:
        session: aiohttp session for making requests
        url: Image URL or local path

    Returns:
        True if the image can be fetched
    """
    if not url:
        return False
    if not is_remote(url):
        return Path(url).exists()

    try:
        async with session.head(url, headers=_headers_for(url), allow_redirects=True) as response:
            if 200 <= response.status < 400 or response.status == 403:
                return True
            logger.debug(f"HEAD {response.status} for {url}; trying ranged GET")
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.debug(f"HEAD failed for {url}: {str(e)}; trying ranged GET")

    try:
        headers = _headers_for(url)
        headers['Range'] = 'bytes=0-0'
        async with session.get(url, headers=headers) as response:
            if 200 <= response.status < 300:
                return True
            logger.warning(f"HTTP {response.status} verifying {url}")
            return False
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        logger.warning(f"Cannot reach {url}: {str(e)}")
        return False


async def verify_batch(urls: List[str], settings: Optional[NetworkSettings] = None) -> Dict[str, bool]:
    """
    Verify many URLs concurrently.

    Args:
        urls: URLs or local paths
        settings: Concurrency and timeout

    Returns:
        Dictionary mapping URL to reachability
    """
    settings = settings or NetworkSettings()
    connector = aiohttp.TCPConnector(limit=settings.concurrency)
    timeout = aiohttp.ClientTimeout(total=settings.timeout)

    async with aiohttp.ClientSession(connector=connector, timeout=timeout) as session:
        results = await asyncio.gather(*(verify_url(session, url) for url in urls), return_exceptions=True)

    url_ok = {}
    for url, result in zip(urls, results):
        if isinstance(result, Exception):
            logger.error(f"Exception verifying {url}: {result}")
            url_ok[url] = False
        else:
            url_ok[url] = result
    return url_ok


async def fetch_image(session: aiohttp.ClientSession, url: str, max_retries: int = 1) -> Optional[bytes]:
    """
    Download image from URL (or read a local file) and return bytes or None if failed.

    Args:
        session: aiohttp session for making requests
        url: Image URL or local path
        max_retries: Maximum number of retry attempts

    Returns:
        Image bytes if successful, None if failed
    """
    if not is_remote(url):
        try:
            return Path(url).read_bytes()
        except OSError as e:
            logger.error(f"Error reading image {url}: {str(e)}")
            return None

    for attempt in range(max_retries + 1):
        try:
            async with session.get(url, headers=_headers_for(url)) as response:
                if response.status == 200:
                    content_type = response.headers.get('content-type', '').lower()
                    if content_type and not content_type.startswith('image/'):
                        logger.warning(f"URL does not return an image: {url} (content-type: {content_type})")
                        return None

                    image_bytes = await response.read()
                    if len(image_bytes) > MAX_IMAGE_BYTES:
                        logger.warning(f"Downloaded image too large: {url} ({len(image_bytes)} bytes)")
                        return None
                    return image_bytes

                elif response.status in (403, 404):
                    logger.warning(f"HTTP {response.status} for image: {url}")
                    return None
                else:
                    logger.warning(f"HTTP {response.status} for URL: {url}")
                    if attempt < max_retries:
                        await asyncio.sleep(2 ** attempt)
                        continue
                    return None

        except asyncio.TimeoutError:
            logger.warning(f"Timeout downloading image (attempt {attempt + 1}): {url}")
            if attempt < max_retries:
                await asyncio.sleep(2 ** attempt)
                continue
            return None
        except aiohttp.ClientError as e:
            logger.error(f"Error downloading image (attempt {attempt + 1}): {url} - {str(e)}")
            if attempt < max_retries:
                await asyncio.sleep(2 ** attempt)
                continue
            return None

    return None


def parse_embedding(payload: Any) -> Optional[List[float]]:
    """
    Extract a unit-length vector from an inference response.

    Handles a flat vector, a per-token matrix (mean pooled), a batch of one,
    and objects wrapping either under `embedding`, `embeddings` or `data`.

    Returns:
        Unit vector, or None when the payload holds no usable numbers
    """
    if isinstance(payload, dict):
        for name in ('embedding', 'embeddings', 'data', 'vector'):
            if name in payload:
                return parse_embedding(payload[name])
        return None
    if not isinstance(payload, list) or not payload:
        return None
    if all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in payload):
        vector = [float(v) for v in payload]
        if not any(vector):
            return None
        return to_unit(vector)
    if len(payload) == 1:
        return parse_embedding(payload[0])
    if all(isinstance(row, list) for row in payload):
        rows = [parse_embedding(row) for row in payload]
        rows = [r for r in rows if r is not None]
        if not rows or len({len(r) for r in rows}) != 1:
            return None
        pooled = [sum(col) / len(rows) for col in zip(*rows)]
        return to_unit(pooled) if any(pooled) else None
    return None


class EmbeddingProvider:
    """Source of image embeddings; implementations return None on failure."""

    name = 'base'

    async def embed(self, session: aiohttp.ClientSession, image: Image) -> Optional[List[float]]:
        raise NotImplementedError


class HttpEmbeddingProvider(EmbeddingProvider):
    """Posts image bytes to an inference endpoint and parses the returned vector."""

    name = 'http'

    def __init__(self, endpoint: str, token: str = ''):
        self.endpoint = endpoint
        self.token = token

    async def embed(self, session: aiohttp.ClientSession, image: Image) -> Optional[List[float]]:
        data = await fetch_image(session, image.url)
        if not data:
            return None
        headers = {'Content-Type': 'application/octet-stream'}
        if self.token:
            headers['Authorization'] = f"Bearer {self.token}"
        async with session.post(self.endpoint, data=data, headers=headers) as response:
            if response.status != 200:
                logger.warning(f"Embedding endpoint returned HTTP {response.status} for {image.key}")
                return None
            payload = await response.json(content_type=None)
        return parse_embedding(payload)


def make_provider(settings: EmbeddingSettings) -> Optional[EmbeddingProvider]:
    """
    Provider named by the embedding settings.

    Returns:
        Provider, or None when embeddings are disabled
    """
    provider = (settings.provider or 'none').lower()
    if provider == 'http':
        if not settings.endpoint:
            logger.warning("Embedding provider 'http' configured without endpoint; embeddings disabled")
            return None
        return HttpEmbeddingProvider(settings.endpoint, settings.token)
    if provider == 'clip':
        from .clip_service import ClipEmbeddingProvider
        return ClipEmbeddingProvider(settings)
    if provider != 'none':
        logger.warning(f"Unknown embedding provider '{provider}'; embeddings disabled")
    return None


class EmbeddingStore:
    """
    Memoized embedding lookups for one run.

    Each image is fetched at most once; concurrent requests for the same key
    share one in-flight task. Failures are remembered as None.
    """

    def __init__(self, provider: EmbeddingProvider, settings: Optional[NetworkSettings] = None):
        self.provider = provider
        self.settings = settings or NetworkSettings()
        self._vectors: Dict[str, Optional[List[float]]] = {}
        self._tasks: Dict[str, asyncio.Task] = {}
        self._semaphore: Optional[asyncio.Semaphore] = None

    async def _fetch(self, session: aiohttp.ClientSession, image: Image) -> Optional[List[float]]:
        async with self._semaphore:
            try:
                vector = await self.provider.embed(session, image)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                logger.warning(f"Embedding request failed for {image.key}: {str(e)}")
                return None
            except Exception as e:
                logger.error(f"Embedding failed for {image.key}: {str(e)}")
                return None
        if vector is None:
            logger.debug(f"No embedding for {image.key}")
        return vector

    @property
    def cached(self) -> Dict[str, Optional[List[float]]]:
        return dict(self._vectors)

    async def get(self, session: aiohttp.ClientSession, image: Image) -> Optional[List[float]]:
        if image.key in self._vectors:
            return self._vectors[image.key]
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.settings.concurrency)
        task = self._tasks.get(image.key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(session, image))
            self._tasks[image.key] = task
        vector = await task
        self._vectors[image.key] = vector
        self._tasks.pop(image.key, None)
        return vector

    async def fetch_all(self, images: Iterable[Image]) -> Dict[str, Optional[List[float]]]:
        """
        Embeddings for many images, bounded by the configured concurrency.

        Returns:
            Dictionary mapping image key to vector (or None)
        """
        images = list(images)
        self._semaphore = asyncio.Semaphore(self.settings.concurrency)
        timeout = aiohttp.ClientTimeout(total=self.settings.timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            vectors = await asyncio.gather(*(self.get(session, image) for image in images))
        found = sum(1 for v in vectors if v)
        logger.info(f"Got {found}/{len(images)} embeddings from {self.provider.name} provider")
        return {image.key: vector for image, vector in zip(images, vectors)}
