import asyncio

import pytest

from api_client import CompletionOptions
from exceptions import NoProviderAvailable, ProviderError, ProviderTimeout
from fakes import FakeProvider
from router import ProviderRouter


def make_router(*clients, chain=None):
    return ProviderRouter({c.name: c for c in clients}, chain=chain or [c.name for c in clients])


def test_unconfigured_provider_is_skipped_and_first_success_wins():
    a = FakeProvider("a", configured=False)
    b = FakeProvider("b", responses=['{"ok": true}'])
    c = FakeProvider("c")
    router = make_router(a, b, c)

    result = asyncio.run(router.complete("prompt", CompletionOptions()))

    assert result.provider == "b"
    assert result.attempts == ["b"]
    assert a.prompts == [] and len(b.prompts) == 1 and c.prompts == []


def test_resolve_rotates_to_preference_and_wraps():
    router = make_router(FakeProvider("a"), FakeProvider("b"), FakeProvider("c"))
    assert router.resolve("b") == ["b", "c", "a"]
    assert router.resolve("unknown") == ["a", "b", "c"]
    assert router.resolve(None) == ["a", "b", "c"]


def test_resolve_filters_vision_capability():
    router = make_router(FakeProvider("text-only"), FakeProvider("vision", supports_vision=True))
    assert router.resolve(require_vision=True) == ["vision"]


def test_failure_advances_chain_once_per_provider():
    a = FakeProvider("a", error=RuntimeError("HTTP 500"))
    b = FakeProvider("b", responses=['{"ok": true}'])
    router = make_router(a, b)

    result = asyncio.run(router.complete("prompt", CompletionOptions()))

    assert result.provider == "b"
    assert result.attempts == ["a", "b"]
    assert len(a.prompts) == 1
    assert router.stats["a"].failures == 1
    assert router.stats["b"].successes == 1


def test_timeout_is_distinct_and_advances():
    slow = FakeProvider("slow", delay=1.0)
    fast = FakeProvider("fast", responses=['{"ok": true}'])
    router = make_router(slow, fast)

    result = asyncio.run(router.complete("prompt", CompletionOptions(timeout=0.05)))

    assert result.provider == "fast"
    assert router.stats["slow"].timeouts == 1


def test_exhausted_chain_reraises_last_failure():
    router = make_router(
        FakeProvider("a", error=RuntimeError("boom")),
        FakeProvider("b", delay=1.0),
    )
    with pytest.raises(ProviderTimeout) as excinfo:
        asyncio.run(router.complete("prompt", CompletionOptions(timeout=0.05)))
    assert excinfo.value.code == "PROVIDER_TIMEOUT"
    assert excinfo.value.provider == "b"


def test_empty_response_is_provider_error():
    router = make_router(FakeProvider("a", responses=["   "]))
    with pytest.raises(ProviderError) as excinfo:
        asyncio.run(router.complete("prompt", CompletionOptions()))
    assert excinfo.value.code == "EXTRACTION_FAILED"


def test_no_configured_provider_raises():
    router = make_router(FakeProvider("a", configured=False), FakeProvider("b", configured=False))
    with pytest.raises(NoProviderAvailable) as excinfo:
        asyncio.run(router.complete("prompt", CompletionOptions()))
    assert excinfo.value.code == "NO_PROVIDER_AVAILABLE"


def test_scanned_document_without_vision_provider_raises():
    router = make_router(FakeProvider("text-only"))
    options = CompletionOptions(image=b"%PDF", image_mime_type="application/pdf")
    with pytest.raises(NoProviderAvailable):
        asyncio.run(router.complete("prompt", options))


def test_status_and_health_check():
    router = make_router(FakeProvider("a", configured=False), FakeProvider("b"))
    handles = router.handles()
    assert [(h.name, h.is_configured) for h in handles] == [("a", False), ("b", True)]

    health = asyncio.run(router.health_check())
    by_name = {entry["name"]: entry for entry in health}
    assert by_name["b"]["healthy"] is True
    assert by_name["a"]["healthy"] is False

    status = router.status()
    assert [entry["chainPosition"] for entry in status] == [0, 1]
