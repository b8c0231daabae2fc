"""Read-through cache for homepage scrapes, keyed by content address."""

import hashlib
import json
import logging
from typing import Awaitable, Callable

from app.core.exceptions import StorageError
from app.core.metrics import page_cache_total

logger = logging.getLogger(__name__)


def sha256(text: str) -> str:
    """Hex-lower SHA-256 of a string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def page_cache_key(url: str) -> str:
    return f"{sha256(url)}/homepage.json"


class PageCache:
    """Cache gate around the page-fetch collaborator.

    ``store`` is any object exposing async ``get(key)`` and
    ``setex(key, ttl, value)`` (the resilient Redis client in production).
    Read and write failures are logged and treated as a miss; they never
    fail the job.
    """

    def __init__(self, store, ttl: int = 86400, enabled: bool = True):
        self.store = store
        self.ttl = ttl
        self.enabled = enabled

    async def _read(self, key: str) -> dict | None:
        try:
            data = await self.store.get(key)
        except Exception as e:
            raise StorageError(f"Cache get failed for {key}", details=str(e)) from e
        if not data:
            return None
        try:
            page = json.loads(data)
        except (TypeError, ValueError) as e:
            raise StorageError(f"Corrupt cache entry {key}", details=str(e)) from e
        return page if isinstance(page, dict) else None

    async def _write(self, key: str, page: dict) -> None:
        try:
            await self.store.setex(key, self.ttl, json.dumps(page, default=str))
        except Exception as e:
            raise StorageError(f"Cache set failed for {key}", details=str(e)) from e

    async def get(self, url: str) -> dict | None:
        if not self.enabled:
            return None
        try:
            return await self._read(page_cache_key(url))
        except StorageError as e:
            page_cache_total.labels(result="error").inc()
            logger.warning(f"{e.message}: {e.details}")
            return None

    async def put(self, url: str, page: dict) -> None:
        if not self.enabled:
            return
        try:
            await self._write(page_cache_key(url), page)
            logger.debug(f"Cached homepage for {url} (TTL={self.ttl}s)")
        except StorageError as e:
            page_cache_total.labels(result="error").inc()
            logger.warning(f"{e.message}: {e.details}")

    async def get_or_fetch(
        self,
        url: str,
        fetch: Callable[[], Awaitable[dict]],
        force_refresh: bool = False,
    ) -> dict:
        """Return the cached page for ``url`` or fetch and write it through.

        ``force_refresh`` skips the lookup but still refreshes the entry.
        Errors raised by ``fetch`` propagate to the caller.
        """
        if force_refresh:
            page_cache_total.labels(result="bypass").inc()
        else:
            cached = await self.get(url)
            if cached is not None:
                page_cache_total.labels(result="hit").inc()
                logger.info(f"Cache hit for {url}")
                return cached
            page_cache_total.labels(result="miss").inc()

        page = await fetch()
        await self.put(url, page)
        return page
