import asyncio

import httpx
import pytest

from catalog import CatalogClient, TemplateCatalog, TemplateFilter, TTLCache, fallback_templates
from fakes import FakeCatalogClient, FakeClock, make_template, no_sleep
from schemas import DocumentType


def test_ttl_cache_expires_by_injected_clock():
    clock = FakeClock()
    cache = TTLCache(ttl_seconds=300, clock=clock)
    cache.set("po", ["template"])

    clock.advance(299)
    assert cache.get("po") == ["template"]
    clock.advance(1)
    assert cache.get("po") is None
    assert len(cache) == 0


def test_ttl_cache_invalidate():
    cache = TTLCache(ttl_seconds=60, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.invalidate("a")
    assert cache.get("a") is None and cache.get("b") == 2
    cache.invalidate()
    assert len(cache) == 0


@pytest.mark.parametrize("document_type", list(DocumentType))
def test_fallback_set_covers_every_type_with_an_all_supplier_template(document_type):
    templates = fallback_templates(document_type)
    assert templates
    assert any("ALL" in t.suppliers and t.is_active for t in templates)
    assert all(t.source == "builtin" for t in templates)


def test_remote_templates_are_cached():
    remote = [make_template(id="remote-po")]
    client = FakeCatalogClient(templates=remote)
    catalog = TemplateCatalog(client, cache=TTLCache(clock=FakeClock()), sleep=no_sleep)
    template_filter = TemplateFilter(category=DocumentType.PURCHASE_ORDER)

    first = asyncio.run(catalog.get_templates(template_filter))
    second = asyncio.run(catalog.get_templates(template_filter))

    assert [t.id for t in first] == ["remote-po"]
    assert [t.id for t in second] == ["remote-po"]
    assert client.list_calls == 1


def test_cache_miss_after_ttl_refetches():
    clock = FakeClock()
    client = FakeCatalogClient(templates=[make_template()])
    catalog = TemplateCatalog(client, cache=TTLCache(ttl_seconds=300, clock=clock), sleep=no_sleep)
    template_filter = TemplateFilter(category=DocumentType.PURCHASE_ORDER)

    asyncio.run(catalog.get_templates(template_filter))
    clock.advance(301)
    asyncio.run(catalog.get_templates(template_filter))
    assert client.list_calls == 2


def test_retries_then_succeeds_with_progressive_backoff():
    sleeps = []

    async def record_sleep(seconds):
        sleeps.append(seconds)

    client = FakeCatalogClient(templates=[make_template(id="remote")], failures=2)
    catalog = TemplateCatalog(client, max_retries=3, backoff_seconds=0.5, sleep=record_sleep)

    templates = asyncio.run(catalog.get_templates(TemplateFilter(category=DocumentType.PURCHASE_ORDER)))

    assert [t.id for t in templates] == ["remote"]
    assert client.list_calls == 3
    assert sleeps == [0.5, 1.0]


def test_exhausted_retries_fall_back_without_caching():
    client = FakeCatalogClient(templates=[make_template()], failures=10)
    catalog = TemplateCatalog(client, max_retries=3, sleep=no_sleep)
    template_filter = TemplateFilter(category=DocumentType.PURCHASE_ORDER)

    templates = asyncio.run(catalog.get_templates(template_filter))

    assert templates == fallback_templates(DocumentType.PURCHASE_ORDER)
    assert client.list_calls == 3
    assert len(catalog.cache) == 0


def test_empty_remote_category_falls_back():
    client = FakeCatalogClient(templates=[make_template(category=DocumentType.PROFORMA_INVOICE)])
    catalog = TemplateCatalog(client, sleep=no_sleep)

    templates = asyncio.run(catalog.get_templates(TemplateFilter(category=DocumentType.BANK_PAYMENT)))

    assert templates
    assert all(t.source == "builtin" and t.category == DocumentType.BANK_PAYMENT for t in templates)


def test_inactive_remote_templates_are_filtered():
    client = FakeCatalogClient(templates=[
        make_template(id="off", is_active=False),
        make_template(id="on"),
    ])
    catalog = TemplateCatalog(client, sleep=no_sleep)
    templates = asyncio.run(catalog.get_templates(TemplateFilter(category=DocumentType.PURCHASE_ORDER)))
    assert [t.id for t in templates] == ["on"]


def test_catalog_client_parses_wire_format_and_drops_unknown_categories():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/ai/prompts"
        assert request.url.params["category"] == "purchase_order"
        return httpx.Response(200, json={"data": [
            {
                "_id": 42,
                "name": "PTP Purchase Order",
                "category": "purchase_order",
                "version": "2.1.0",
                "suppliers": ["PTP"],
                "aiProvider": "openai",
                "maxTokens": 3000,
                "prompt": "Extract the PTP order.",
                "isActive": True,
                "targetUsers": ["ops@example.com"],
                "performance": {"accuracy": 94, "speed": 3.2},
            },
            {"id": "x", "name": "Odd", "category": "delivery_note", "prompt": "..."},
        ]})

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://catalog")
    client = CatalogClient(http_client=http_client)

    templates = asyncio.run(client.list_templates(TemplateFilter(category=DocumentType.PURCHASE_ORDER)))

    assert len(templates) == 1
    template = templates[0]
    assert template.id == "42"
    assert template.provider_preference == "openai"
    assert template.max_output_tokens == 3000
    assert template.body_text == "Extract the PTP order."
    assert template.target_users == {"ops@example.com"}
    assert template.performance.accuracy_percent == 94
    assert template.performance.avg_latency_seconds == 3.2
    assert template.source == "catalog"


def test_catalog_client_posts_usage():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, request.url.path))
        return httpx.Response(200, json={"success": True})

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://catalog")
    client = CatalogClient(http_client=http_client)
    asyncio.run(client.record_usage("42", {"document_type": "purchase_order"}))

    assert seen == [("POST", "/api/ai/prompts/42/usage")]
