# catalog.py

import asyncio
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, List, Optional

import httpx
from pydantic import ValidationError

from config import (
    CATALOG_BACKOFF_SECONDS, CATALOG_BASE_URL, CATALOG_CACHE_TTL, CATALOG_MAX_RETRIES,
    CATALOG_TIMEOUT, CATALOG_USAGE_TIMEOUT
)
from prompts import BUILTIN_TEMPLATES
from schemas import DocumentType, Template
from utils import log


@dataclass(frozen=True)
class TemplateFilter:
    """Cache key and query for one candidate pool."""
    category: DocumentType
    active_only: bool = True


class TTLCache:
    """A small thread-safe key/value cache with per-entry expiry driven by an injectable clock."""

    def __init__(self, ttl_seconds: float = CATALOG_CACHE_TTL, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[Hashable, tuple] = {}
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() >= expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self._ttl, value)

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        with self._lock:
            if key is None:
                self._entries.clear()
            else:
                self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def fallback_templates(category: DocumentType, active_only: bool = True) -> List[Template]:
    """The built-in set for a category; never empty for any DocumentType."""
    return [
        template for template in BUILTIN_TEMPLATES
        if template.category == category and (template.is_active or not active_only)
    ]


class CatalogClient:
    """HTTP client for the remote template catalog."""

    def __init__(self, base_url: str = CATALOG_BASE_URL, timeout: float = CATALOG_TIMEOUT,
                 http_client: Optional[httpx.AsyncClient] = None):
        self._client = http_client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        log.info(f"Catalog client targeting {base_url} (timeout {timeout}s).")

    async def list_templates(self, template_filter: TemplateFilter) -> List[Template]:
        params = {"category": template_filter.category.value}
        if template_filter.active_only:
            params["active"] = "true"
        response = await self._client.get("/api/ai/prompts", params=params)
        response.raise_for_status()
        payload = response.json()

        if isinstance(payload, dict):
            records = payload.get("data") or payload.get("prompts") or []
        else:
            records = payload or []

        templates = []
        for record in records:
            if not isinstance(record, dict):
                continue
            try:
                templates.append(Template.model_validate({**record, "source": "catalog"}))
            except ValidationError as e:
                log.warning(
                    f"Dropping catalog template '{record.get('id', record.get('_id'))}': "
                    f"{e.error_count()} validation error(s), first: {e.errors()[0]['msg']}"
                )
        return templates

    async def record_usage(self, template_id: str, payload: Dict[str, Any]) -> None:
        response = await self._client.post(
            f"/api/ai/prompts/{template_id}/usage", json=payload, timeout=CATALOG_USAGE_TIMEOUT
        )
        response.raise_for_status()

    async def close(self):
        await self._client.aclose()
        log.info("Closed catalog HTTP client.")


class TemplateCatalog:
    """
    Cached access to candidate templates.

    Cache hits are served directly. Misses go to the remote catalog with bounded
    retries and progressive backoff; when that fails, or returns nothing for the
    category, the built-in set is returned instead and is not cached.
    """

    def __init__(
        self,
        client: Optional[CatalogClient],
        cache: Optional[TTLCache] = None,
        max_retries: int = CATALOG_MAX_RETRIES,
        backoff_seconds: float = CATALOG_BACKOFF_SECONDS,
        sleep: Callable = asyncio.sleep,
    ):
        self.client = client
        self.cache = cache or TTLCache()
        self._max_retries = max(1, max_retries)
        self._backoff_seconds = backoff_seconds
        self._sleep = sleep

    async def _fetch_remote(self, template_filter: TemplateFilter) -> Optional[List[Template]]:
        category = template_filter.category.value
        for attempt in range(1, self._max_retries + 1):
            try:
                return await self.client.list_templates(template_filter)
            except Exception as e:
                log.warning(f"Catalog fetch for '{category}' failed (attempt {attempt}/{self._max_retries}): {e}")
                if attempt < self._max_retries:
                    await self._sleep(self._backoff_seconds * attempt)
        return None

    async def get_templates(self, template_filter: TemplateFilter) -> List[Template]:
        cached = self.cache.get(template_filter)
        if cached is not None:
            log.debug(f"Catalog cache hit for '{template_filter.category.value}' ({len(cached)} template(s)).")
            return list(cached)

        templates = await self._fetch_remote(template_filter) if self.client else None
        if templates is not None and template_filter.active_only:
            templates = [template for template in templates if template.is_active]

        if not templates:
            reason = "unreachable" if templates is None else "empty"
            log.warning(f"Catalog {reason} for '{template_filter.category.value}'. Using built-in fallback templates.")
            return fallback_templates(template_filter.category, template_filter.active_only)

        self.cache.set(template_filter, templates)
        log.info(f"Fetched {len(templates)} template(s) for '{template_filter.category.value}' from catalog.")
        return list(templates)
