import asyncio
import json

import httpx

from api_client import ProviderClient
from schemas import DocumentType, Template


class FakeProvider(ProviderClient):
    """In-process provider returning canned responses."""

    def __init__(self, name, responses=None, configured=True, supports_vision=False, delay=0.0, error=None):
        super().__init__(name, "test-key" if configured else None, f"{name}-model")
        self.supports_vision = supports_vision
        self.responses = list(responses or ['{"items": []}'])
        self.delay = delay
        self.error = error
        self.prompts = []
        self.options = []

    async def _complete(self, prompt, options):
        self.prompts.append(prompt)
        self.options.append(options)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


class FakeCatalogClient:
    def __init__(self, templates=None, failures=0):
        self.templates = list(templates or [])
        self.failures = failures
        self.list_calls = 0
        self.usage = []

    async def list_templates(self, template_filter):
        self.list_calls += 1
        if self.failures:
            self.failures -= 1
            raise httpx.ConnectError("catalog down")
        return [t for t in self.templates if t.category == template_filter.category]

    async def record_usage(self, template_id, payload):
        self.usage.append((template_id, payload))


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


async def no_sleep(seconds):
    return None


def make_template(**overrides) -> Template:
    data = {
        "id": "tpl-1",
        "name": "Template",
        "category": DocumentType.PURCHASE_ORDER,
        "version": "1.0.0",
        "suppliers": {"ALL"},
        "body_text": "Extract the document.",
        "source": "catalog",
    }
    data.update(overrides)
    return Template(**data)


def po_response(items, **header):
    body = {"poNumber": "PO-1", "supplier": {"name": "Some Supplier"}, "items": items}
    body.update(header)
    return json.dumps({"purchase_order": body})
