"""
Product catalog API client with TTL caching and retry.

Blocking HTTP calls (requests) run in worker threads so callers can await them.
Each request carries a timeout; the retry policy bounds how many are made.
"""

import asyncio
import json
from typing import Any, Dict, List, Optional, Union

import requests

from .cache import TTLCache
from ..core import heartbeat
from ..core.config import CATALOG_CACHE_SWEEP_SEC, CATALOG_REQUEST_TIMEOUT_SEC
from ..core.errors import CatalogApiError, translate_request_error
from ..core.models import ApiCredentials
from ..core.retry import CATALOG_POLICY, RetryPolicy
from ..util.logging import logger

SEARCH_PATH = "/v0/variant-groups"
SWEEP_TASK_NAME = "catalog_cache_sweep"
MALFORMED_RESPONSE_STATUS = 422
MISSING = object()


def is_valid_search_response(data: Any) -> bool:
    """Shape check: {count: int, variantGroups: [{id: str, primaryVariant: {id: str, productName: str}}]}."""
    if not isinstance(data, dict):
        return False
    count = data.get("count")
    if not isinstance(count, int) or isinstance(count, bool):
        return False
    groups = data.get("variantGroups")
    if not isinstance(groups, list):
        return False
    for group in groups:
        if not isinstance(group, dict) or not isinstance(group.get("id"), str):
            return False
        variant = group.get("primaryVariant")
        if not isinstance(variant, dict):
            return False
        if not isinstance(variant.get("id"), str) or not isinstance(variant.get("productName"), str):
            return False
    return True


class CatalogApiClient:
    def __init__(self, credentials: Optional[Union[ApiCredentials, Dict[str, Any]]] = None,
                 cache: Optional[TTLCache] = None,
                 retry_policy: RetryPolicy = CATALOG_POLICY,
                 session: Optional[requests.Session] = None,
                 timeout: float = CATALOG_REQUEST_TIMEOUT_SEC):
        self.credentials: Optional[ApiCredentials] = None
        self.cache = cache if cache is not None else TTLCache()
        self.retry_policy = retry_policy
        self.session = session or requests.Session()
        self.timeout = timeout
        self.request_count = 0
        if credentials is not None:
            self.configure(credentials)

    def configure(self, credentials: Union[ApiCredentials, Dict[str, Any]]) -> None:
        if not isinstance(credentials, ApiCredentials):
            credentials = ApiCredentials.model_validate(credentials)
        self.credentials = credentials

    def is_configured(self) -> bool:
        return self.credentials is not None and self.credentials.has_credentials()

    def _require_configured(self, endpoint: str) -> None:
        if not self.is_configured():
            raise CatalogApiError("API client not configured", 400, endpoint)

    @property
    def country(self) -> str:
        return self.credentials.country

    # ---- transport ----

    def _fetch(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "accept": "application/json",
            "x-api-key": self.credentials.api_key,
        }
        self.request_count += 1
        try:
            response = self.session.get(url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise translate_request_error(e, url) from e

        if not response.ok:
            raise CatalogApiError(f"API request failed: {response.status_code} {response.reason}",
                                  response.status_code, url)

        try:
            data = response.json()
        except ValueError as e:
            raise CatalogApiError("API response is not JSON", MALFORMED_RESPONSE_STATUS, url, e) from e

        if not is_valid_search_response(data):
            raise CatalogApiError("Invalid API response structure", MALFORMED_RESPONSE_STATUS, url)
        return data

    # ---- lookups ----

    async def search_variant_groups(self, page: int = 1, page_size: int = 20, country: Optional[str] = None,
                                    variant_id: Optional[str] = None, query: Optional[str] = None,
                                    use_cache: bool = True) -> Dict[str, Any]:
        """One page of variant groups; cached by the full parameter set."""
        self._require_configured("searchVariantGroups")

        params = {"page": page, "pageSize": page_size, "country": country or self.country}
        if variant_id is not None:
            params["variantId"] = variant_id
        if query:
            params["query"] = query

        cache_key = f"search:{json.dumps(params, sort_keys=True)}"
        if use_cache:
            cached = self.cache.get(cache_key)
            if cached is not None:
                return cached

        url = f"{self.credentials.base_url}{SEARCH_PATH}"
        result = await self.retry_policy.execute(
            lambda: asyncio.to_thread(self._fetch, url, params),
            label="catalog.search",
        )

        if use_cache:
            self.cache.set(cache_key, result)
        return result

    async def get_variant_group(self, variant_id: str, use_cache: bool = True) -> Optional[Dict[str, Any]]:
        """Variant group for one SKU, None when the catalog has no match."""
        self._require_configured("getVariantGroup")

        cache_key = f"variant:{variant_id}:{self.country}"
        if use_cache:
            cached = self.cache.get(cache_key, MISSING)
            if cached is not MISSING:
                return cached

        response = await self.search_variant_groups(page=1, page_size=1, variant_id=variant_id, use_cache=False)
        groups = response["variantGroups"]
        result = groups[0] if groups else None

        # unknown SKUs are cached as None for the same TTL
        if use_cache:
            self.cache.set(cache_key, result)
        return result

    async def get_multiple_variant_groups(self, variant_ids: List[str]) -> List[Dict[str, Any]]:
        """
        Look up several SKUs one by one.

        Per-item failures are logged and skipped; the call raises only when every lookup failed.
        """
        self._require_configured("getMultipleVariantGroups")
        if not variant_ids:
            return []

        results = []
        errors = []
        for variant_id in variant_ids:
            try:
                group = await self.get_variant_group(variant_id)
            except CatalogApiError as e:
                errors.append(f"{variant_id}: {e.message}")
                logger.warning(f"Failed to fetch variant {variant_id}: {e.message}")
                continue
            if group is not None:
                results.append(group)

        if errors and not results:
            raise CatalogApiError(f"Failed to fetch any variants. Errors: {', '.join(errors)}",
                                  500, "getMultipleVariantGroups")
        if errors:
            logger.log_operation("catalog.batch", "partial", {
                "fetched": len(results),
                "requested": len(variant_ids),
                "errors": errors,
            })
        return results

    async def validate_credentials(self) -> bool:
        """One minimal uncached request; any well-formed response counts as valid."""
        if not self.is_configured():
            return False
        try:
            await self.search_variant_groups(page=1, page_size=1, use_cache=False)
        except CatalogApiError as e:
            logger.warning(f"Credential validation failed: {e.message}")
            return False
        return True

    async def check_health(self) -> bool:
        try:
            response = await self.search_variant_groups(page=1, page_size=1)
        except CatalogApiError as e:
            logger.warning(f"Catalog health check failed: {e.message}")
            return False
        return response["count"] >= 0

    # ---- cache management ----

    def sweep_expired(self) -> int:
        return self.cache.purge_expired()

    def start_cache_sweep(self, interval_sec: int = CATALOG_CACHE_SWEEP_SEC) -> None:
        """Register the expired-entry sweep with the heartbeat loop."""
        heartbeat.register_task(SWEEP_TASK_NAME, interval_sec, self.sweep_expired)

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.log_cache_event("clear")

    async def refresh_cache(self) -> None:
        self.clear_cache()

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.cache.stats()

    def dispose(self) -> None:
        heartbeat.unregister_task(SWEEP_TASK_NAME)
        self.clear_cache()
        self.session.close()


_client: Optional[CatalogApiClient] = None


def get_catalog_client(credentials: Optional[Union[ApiCredentials, Dict[str, Any]]] = None) -> CatalogApiClient:
    """Process-wide client; passing credentials reconfigures it."""
    global _client
    if _client is None:
        _client = CatalogApiClient()
        _client.start_cache_sweep()
    if credentials is not None:
        _client.configure(credentials)
    return _client


def reset_catalog_client() -> None:
    """Dispose the process-wide client (tests)."""
    global _client
    if _client is not None:
        _client.dispose()
    _client = None
