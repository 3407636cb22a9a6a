"""HTTP fetch client with retries, status validation and a response cache."""
import asyncio
import json
import logging
import time
from collections import OrderedDict
from enum import Enum
from typing import Any, Callable, Dict, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from ..config import Settings
from ..errors import DecodeError, InvalidURLError, ServerError, TransportError

log = logging.getLogger(__name__)

# Messages httpx/OS resolvers use for unknown hosts; retrying these is pointless.
_DNS_FAILURE_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "temporary failure in name resolution",
    "no address associated with hostname",
    "getaddrinfo failed",
)


class CachePolicy(Enum):
    RETURN_CACHE_ELSE_LOAD = "return_cache_else_load"
    RELOAD_IGNORING_CACHE = "reload_ignoring_cache"


class ResponseCache:
    """LRU cache of response bodies bounded by age and total size."""

    def __init__(
        self,
        ttl: float = 300.0,
        max_bytes: int = 50 * 1024 * 1024,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl = ttl
        self.max_bytes = max_bytes
        self._clock = clock
        self._entries: "OrderedDict[str, Tuple[float, bytes]]" = OrderedDict()
        self._size = 0

    @property
    def size(self) -> int:
        """Total bytes currently held."""
        return self._size

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, url: str) -> Optional[bytes]:
        entry = self._entries.get(url)
        if entry is None:
            return None
        stored_at, data = entry
        if self._clock() - stored_at > self.ttl:
            self._remove(url)
            return None
        self._entries.move_to_end(url)
        return data

    def put(self, url: str, data: bytes) -> None:
        if len(data) > self.max_bytes:
            return
        if url in self._entries:
            self._remove(url)
        self._entries[url] = (self._clock(), data)
        self._size += len(data)
        while self._size > self.max_bytes:
            oldest = next(iter(self._entries))
            self._remove(oldest)

    def clear(self) -> None:
        self._entries.clear()
        self._size = 0

    def _remove(self, url: str) -> None:
        _, data = self._entries.pop(url)
        self._size -= len(data)


class FetchClient:
    """Single point of outbound HTTP access for all parsers."""

    TIMEOUT = 60.0
    MAX_RETRIES = 3
    BACKOFF = 0.5
    CHUNK_SIZE = 65536  # 64KB chunks

    # Headers to mimic a TV/media player app
    DEFAULT_HEADERS = {
        "User-Agent": "IPTV Smarters Pro/2.2.2.5 (Linux; Android 10)",
        "Accept": "application/json, text/plain, */*",
        "Accept-Language": "en-US,en;q=0.9",
        "Connection": "keep-alive",
    }

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff: Optional[float] = None,
        cache: Optional[ResponseCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.timeout = self.TIMEOUT if timeout is None else timeout
        self.max_retries = max(1, self.MAX_RETRIES if max_retries is None else max_retries)
        self.backoff = self.BACKOFF if backoff is None else backoff
        self.cache = cache if cache is not None else ResponseCache()
        self._transport = transport
        self._headers = dict(self.DEFAULT_HEADERS)
        if headers:
            self._headers.update(headers)

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "FetchClient":
        """Create a client configured from :class:`Settings`."""
        cache = ResponseCache(ttl=settings.cache_ttl, max_bytes=settings.cache_max_mb * 1024 * 1024)
        return cls(
            timeout=settings.timeout,
            max_retries=settings.max_retries,
            backoff=settings.backoff,
            cache=cache,
            **kwargs,
        )

    def _create_client(self) -> httpx.AsyncClient:
        """Create configured HTTP client."""
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=min(30.0, self.timeout)),
            follow_redirects=True,
            headers=self._headers,
            verify=False,  # Some IPTV servers have invalid SSL certs
            transport=self._transport,
        )

    async def fetch(
        self,
        url: str,
        cache_policy: CachePolicy = CachePolicy.RETURN_CACHE_ELSE_LOAD,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> bytes:
        """Download the raw payload of ``url``, retrying transient failures."""
        _validate_url(url)

        if cache_policy is CachePolicy.RETURN_CACHE_ELSE_LOAD:
            cached = self.cache.get(url)
            if cached is not None:
                log.debug("Cache hit: %s", url)
                return cached

        last_error: Optional[TransportError] = None
        for attempt in range(self.max_retries):
            try:
                data = await self._fetch_once(url, progress_callback)
            except TransportError as e:
                if not e.retryable:
                    raise
                last_error = e
                log.debug("Transient failure (attempt %d/%d) for %s: %s", attempt + 1, self.max_retries, url, e)
            else:
                self.cache.put(url, data)
                return data

            # Wait before retry
            if attempt < self.max_retries - 1 and self.backoff > 0:
                await asyncio.sleep(self.backoff * (2 ** attempt))

        raise TransportError(f"Giving up on {url} after {self.max_retries} attempts: {last_error}")

    async def fetch_json(
        self,
        url: str,
        decoder: Optional[Callable[[Any], Any]] = None,
        cache_policy: CachePolicy = CachePolicy.RETURN_CACHE_ELSE_LOAD,
    ) -> Any:
        """Download ``url`` and decode it as JSON, optionally through ``decoder``.

        Schema failures raised by ``decoder`` (KeyError, TypeError, ValueError)
        are wrapped in :class:`DecodeError`.
        """
        data = await self.fetch(url, cache_policy=cache_policy)
        try:
            payload = json.loads(data)
        except ValueError as e:
            raise DecodeError(f"Invalid JSON from {url}: {e}") from e

        if decoder is None:
            return payload
        try:
            return decoder(payload)
        except (KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"Unexpected payload from {url}: {e}") from e

    async def _fetch_once(self, url: str, progress_callback: Optional[Callable[[int, int], None]]) -> bytes:
        log.debug("Starting network request: %s", url)
        try:
            async with self._create_client() as client:
                # Stream the response for large files
                async with client.stream("GET", url) as response:
                    if not 200 <= response.status_code <= 299:
                        raise ServerError(response.status_code, url)

                    total_size = int(response.headers.get("content-length", 0) or 0)
                    downloaded = 0
                    chunks = []
                    async for chunk in response.aiter_bytes(chunk_size=self.CHUNK_SIZE):
                        chunks.append(chunk)
                        downloaded += len(chunk)
                        if progress_callback and total_size > 0:
                            progress_callback(downloaded, total_size)
                    return b"".join(chunks)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as e:
            raise InvalidURLError(f"Invalid URL {url}: {e}") from e
        except httpx.TimeoutException as e:
            raise TransportError(f"Timed out after {self.timeout}s") from e
        except (httpx.NetworkError, httpx.RemoteProtocolError) as e:
            message = str(e) or type(e).__name__
            raise TransportError(message, retryable=not _is_dns_failure(message)) from e
        except httpx.HTTPError as e:
            raise TransportError(f"{type(e).__name__}: {e}", retryable=False) from e


def _validate_url(url: str) -> None:
    try:
        parts = urlsplit(url or "")
    except ValueError as e:
        raise InvalidURLError(f"Invalid URL {url!r}") from e
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise InvalidURLError(f"Invalid URL {url!r}")


def _is_dns_failure(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _DNS_FAILURE_MARKERS)
