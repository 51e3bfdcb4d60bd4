"""
Catalog API client, its TTL cache and product hydration.
"""

import asyncio

import pytest
import requests

from shopconfig.catalog import CatalogApiClient, TTLCache, get_catalog_client, reset_catalog_client
from shopconfig.catalog.products import (
    hydrate_product_configuration,
    map_variant_to_product,
    validate_sku,
)
from shopconfig.core import heartbeat
from shopconfig.core.errors import CatalogApiError
from shopconfig.core.models import ProductConfiguration
from shopconfig.core.retry import CATALOG_POLICY

CREDENTIALS = {"apiKey": "test-key", "accountId": 7, "baseUrl": "https://catalog.test", "country": "SAU"}


def run(coro):
    return asyncio.run(coro)


def variant_group(sku, name=None, **extra):
    variant = {"id": sku, "productName": name or f"Product {sku}", "productPrice": 100, "productProfit": 20}
    variant.update(extra)
    return {"id": f"group-{sku}", "primaryVariant": variant}


class FakeResponse:
    def __init__(self, status_code=200, payload=None, json_error=False):
        self.status_code = status_code
        self.ok = status_code < 400
        self.reason = "OK" if self.ok else "Error"
        self._payload = payload
        self._json_error = json_error

    def json(self):
        if self._json_error:
            raise ValueError("not json")
        return self._payload


class FakeSession:
    """Answers variant lookups from a catalog dict; `script` queues canned responses or exceptions."""

    def __init__(self, catalog=None):
        self.catalog = catalog or {}
        self.script = []
        self.calls = []
        self.closed = False

    def get(self, url, params=None, headers=None, timeout=None):
        self.calls.append({"url": url, "params": params, "headers": headers, "timeout": timeout})
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        variant_id = (params or {}).get("variantId")
        if variant_id is not None:
            groups = [self.catalog[variant_id]] if variant_id in self.catalog else []
        else:
            groups = list(self.catalog.values())[:params.get("pageSize", 20)]
        return FakeResponse(200, {"count": len(groups), "variantGroups": groups})

    def close(self):
        self.closed = True


@pytest.fixture
def session():
    return FakeSession({sku: variant_group(sku) for sku in ("SKU123", "AAA111", "BBB222", "PRIME001")})


@pytest.fixture
def client(session):
    return CatalogApiClient(CREDENTIALS, retry_policy=CATALOG_POLICY.with_delays(), session=session)


class TestLookups:
    def test_second_lookup_is_served_from_cache(self, client, session):
        first = run(client.get_variant_group("SKU123"))
        second = run(client.get_variant_group("SKU123"))
        assert first == second
        assert len(session.calls) == 1
        assert client.request_count == 1

    def test_request_shape(self, client, session):
        run(client.get_variant_group("SKU123"))
        call = session.calls[0]
        assert call["url"] == "https://catalog.test/v0/variant-groups"
        assert call["params"] == {"page": 1, "pageSize": 1, "country": "SAU", "variantId": "SKU123"}
        assert call["headers"]["x-api-key"] == "test-key"
        assert call["timeout"] == client.timeout

    def test_unknown_sku_returns_none(self, client):
        assert run(client.get_variant_group("MISSING1")) is None

    def test_unknown_sku_is_cached(self, client, session):
        assert run(client.get_variant_group("MISSING1")) is None
        assert run(client.get_variant_group("MISSING1")) is None
        assert len(session.calls) == 1
        assert client.cache.stats()["hits"] == 1

    def test_cached_miss_expires(self, session):
        now = [0.0]
        client = CatalogApiClient(CREDENTIALS, retry_policy=CATALOG_POLICY.with_delays(), session=session,
                                  cache=TTLCache(ttl=60, clock=lambda: now[0]))
        run(client.get_variant_group("MISSING1"))
        session.catalog["MISSING1"] = variant_group("MISSING1")
        now[0] = 61
        assert run(client.get_variant_group("MISSING1"))["primaryVariant"]["id"] == "MISSING1"
        assert len(session.calls) == 2

    def test_bypassing_cache(self, client, session):
        run(client.get_variant_group("SKU123", use_cache=False))
        run(client.get_variant_group("SKU123", use_cache=False))
        assert len(session.calls) == 2

    def test_search_is_cached_by_parameters(self, client, session):
        run(client.search_variant_groups(page=1, page_size=2))
        run(client.search_variant_groups(page=1, page_size=2))
        run(client.search_variant_groups(page=2, page_size=2))
        assert len(session.calls) == 2


class TestFailures:
    def test_unconfigured_client_rejects_calls(self, session):
        client = CatalogApiClient(session=session)
        with pytest.raises(CatalogApiError) as exc:
            run(client.get_variant_group("SKU123"))
        assert exc.value.status_code == 400
        assert session.calls == []

    def test_service_unavailable_is_retried(self, client, session):
        session.script = [FakeResponse(503)]
        assert run(client.get_variant_group("SKU123")) is not None
        assert len(session.calls) == 2

    def test_bad_request_is_not_retried(self, client, session):
        session.script = [FakeResponse(400)]
        with pytest.raises(CatalogApiError) as exc:
            run(client.get_variant_group("SKU123"))
        assert exc.value.status_code == 400
        assert len(session.calls) == 1

    def test_retries_exhausted(self, client, session):
        session.script = [FakeResponse(502), FakeResponse(502), FakeResponse(502)]
        with pytest.raises(CatalogApiError) as exc:
            run(client.get_variant_group("SKU123"))
        assert exc.value.status_code == 502
        assert len(session.calls) == 3

    def test_timeout_is_retried(self, client, session):
        session.script = [requests.Timeout("slow")]
        assert run(client.get_variant_group("SKU123")) is not None
        assert len(session.calls) == 2

    def test_malformed_response_is_rejected(self, client, session):
        session.script = [FakeResponse(200, {"count": "many", "variantGroups": []})]
        with pytest.raises(CatalogApiError, match="Invalid API response structure"):
            run(client.get_variant_group("SKU123"))
        assert len(session.calls) == 1

    def test_non_json_response_is_rejected(self, client, session):
        session.script = [FakeResponse(200, json_error=True)]
        with pytest.raises(CatalogApiError):
            run(client.get_variant_group("SKU123"))


class TestBatchLookups:
    def test_partial_failure_returns_what_succeeded(self, client, session):
        session.script = [FakeResponse(404)]
        groups = run(client.get_multiple_variant_groups(["AAA111", "BBB222"]))
        assert [g["primaryVariant"]["id"] for g in groups] == ["BBB222"]

    def test_total_failure_raises(self, client, session):
        session.script = [FakeResponse(404), FakeResponse(404)]
        with pytest.raises(CatalogApiError) as exc:
            run(client.get_multiple_variant_groups(["AAA111", "BBB222"]))
        assert exc.value.status_code == 500

    def test_missing_skus_are_skipped(self, client):
        groups = run(client.get_multiple_variant_groups(["AAA111", "MISSING1"]))
        assert len(groups) == 1

    def test_empty_batch(self, client, session):
        assert run(client.get_multiple_variant_groups([])) == []
        assert session.calls == []


class TestCredentialsAndHealth:
    def test_valid_credentials(self, client, session):
        assert run(client.validate_credentials()) is True

    def test_rejected_credentials(self, client, session):
        session.script = [FakeResponse(401)]
        assert run(client.validate_credentials()) is False

    def test_unconfigured_credentials(self, session):
        assert run(CatalogApiClient(session=session).validate_credentials()) is False

    def test_health_check(self, client, session):
        assert run(client.check_health()) is True
        session.script = [FakeResponse(400)]
        client.clear_cache()
        assert run(client.check_health()) is False


class TestCacheManagement:
    def test_refresh_clears_cache(self, client, session):
        run(client.get_variant_group("SKU123"))
        run(client.refresh_cache())
        run(client.get_variant_group("SKU123"))
        assert len(session.calls) == 2

    def test_stats(self, client):
        run(client.get_variant_group("SKU123"))
        run(client.get_variant_group("SKU123"))
        stats = client.get_cache_stats()
        assert stats["hits"] == 1
        assert stats["size"] == 1
        assert stats["maxSize"] == client.cache.max_entries

    def test_process_wide_client_registers_sweep(self):
        client = get_catalog_client(CREDENTIALS)
        assert client.is_configured()
        assert get_catalog_client() is client
        assert "catalog_cache_sweep" in heartbeat.list_tasks()
        reset_catalog_client()
        assert "catalog_cache_sweep" not in heartbeat.list_tasks()

    def test_dispose_closes_session(self, client, session):
        client.dispose()
        assert session.closed


class TestTTLCache:
    def test_entry_expires(self):
        now = [0.0]
        cache = TTLCache(ttl=10, max_entries=5, clock=lambda: now[0])
        cache.set("a", 1)
        assert cache.get("a") == 1
        now[0] = 11
        assert cache.get("a") is None
        assert "a" not in cache

    def test_full_cache_evicts_oldest_tenth(self):
        now = [0.0]
        cache = TTLCache(ttl=3600, max_entries=1000, clock=lambda: now[0])
        for i in range(1000):
            now[0] = float(i)
            cache.set(f"key-{i}", i)

        now[0] = 1000.0
        cache.set("key-1000", 1000)

        assert len(cache) <= 901
        assert "key-0" not in cache
        assert "key-99" not in cache
        assert "key-100" in cache
        assert "key-1000" in cache

    def test_overwriting_existing_key_does_not_evict(self):
        cache = TTLCache(ttl=60, max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 3)
        assert len(cache) == 2
        assert cache.get("a") == 3

    def test_small_cache_evicts_at_least_one(self):
        cache = TTLCache(ttl=60, max_entries=3)
        for key in ("a", "b", "c", "d"):
            cache.set(key, key)
        assert len(cache) == 3

    def test_purge_expired(self):
        now = [0.0]
        cache = TTLCache(ttl=10, max_entries=10, clock=lambda: now[0])
        cache.set("early", 1)
        now[0] = 6
        cache.set("late", 2)
        now[0] = 12
        assert cache.purge_expired() == 1
        assert len(cache) == 1
        assert "late" in cache

    def test_zero_ttl_never_serves_a_hit(self):
        now = [0.0]
        cache = TTLCache(ttl=0, max_entries=10, clock=lambda: now[0])
        cache.set("a", 1)
        assert cache.get("a") is None
        assert cache.stats()["hits"] == 0

    def test_stored_none_is_a_hit(self):
        cache = TTLCache(ttl=60, max_entries=10)
        cache.set("unknown", None)
        assert cache.get("unknown", "absent") is None
        assert cache.get("other", "absent") == "absent"
        assert cache.stats()["hits"] == 1

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            TTLCache(max_entries=0)


class TestProducts:
    def test_mapping(self):
        variant = variant_group(
            "SKU123",
            productPicture="https://img/1.jpg",
            extraImage1="https://img/2.jpg",
            howToUse="• Apply daily\n• Rinse",
            specifications='{"Weight": "100g"}',
            description={"en": "English text"},
            orderCount=12,
        )["primaryVariant"]
        product = map_variant_to_product(variant)
        assert product.original_price == 120.0
        assert product.images == ["https://img/2.jpg"]
        assert product.features == ["Apply daily", "Rinse"]
        assert product.specifications == {"Weight": "100g"}
        assert product.description == "English text"
        assert product.to_dict()["orderCount"] == 12

    def test_plain_text_specifications(self):
        variant = variant_group("SKU123", specifications="Cotton, hand wash")["primaryVariant"]
        assert map_variant_to_product(variant).specifications == {"Specifications": "Cotton, hand wash"}

    def test_validate_sku(self, client):
        assert run(validate_sku(client, "SKU123")).is_valid is True
        missing = run(validate_sku(client, "MISSING1"))
        assert missing.is_valid is False
        assert missing.error == "Product not found"

    def test_hydration_degrades_failed_sections(self, client, session):
        product_config = ProductConfiguration(
            primary_reference="PRIME001",
            recommendations=["AAA111"],
            bundle_references=["BBB222"],
        )
        hydrated = run(hydrate_product_configuration(client, product_config))
        assert hydrated["primaryReference"].id == "PRIME001"
        assert [p.id for p in hydrated["recommendations"]] == ["AAA111"]
        assert [p.id for p in hydrated["bundleReferences"]] == ["BBB222"]
        assert hydrated["postPurchaseOffers"] == []

        client.clear_cache()
        session.script = [FakeResponse(400), FakeResponse(400), FakeResponse(400)]
        hydrated = run(hydrate_product_configuration(client, product_config))
        assert hydrated["primaryReference"] is None
        assert hydrated["recommendations"] == []
        assert hydrated["bundleReferences"] == []
