import pytest
from fastapi.testclient import TestClient

import main
import processing
from catalog import TemplateCatalog
from fakes import FakeCatalogClient, FakeProvider, no_sleep, po_response
from processing import ExtractionEngine
from router import ProviderRouter
from schemas import JobStatus

ORDER_TEXT = b"PURCHASE ORDER\nPO Number: PO-42\n1 AB100 2 PCS 5.00 10.00\n  BEARING\n"


def build_engine(*providers):
    providers = providers or (FakeProvider("fake", responses=[po_response([
        {"lineNumber": 1, "productCode": "AB100", "productName": "PCS", "quantity": 2, "unitPrice": 5, "totalPrice": 10},
    ], poNumber="PO-42")]),)
    router = ProviderRouter({p.name: p for p in providers}, chain=[p.name for p in providers])
    catalog = TemplateCatalog(FakeCatalogClient(), sleep=no_sleep)
    return ExtractionEngine(catalog, router)


@pytest.fixture
def client_for():
    def make(engine):
        main.app.dependency_overrides[main.get_engine] = lambda: engine
        return TestClient(main.app)

    yield make
    main.app.dependency_overrides.clear()
    main.job_statuses.clear()


def upload(name="order.txt", data=ORDER_TEXT, content_type="text/plain"):
    return {"file": (name, data, content_type)}


def test_extract_text_upload(client_for):
    client = client_for(build_engine())

    response = client.post("/extract", files=upload(), data={"userEmail": "ops@example.com", "useNewPrompts": "false"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["poNumber"] == "PO-42"
    assert body["data"]["items"][0]["productName"] == "BEARING"
    metadata = body["extraction_metadata"]
    assert metadata["documentType"] == "purchase_order"
    assert metadata["templateId"] == "legacy_base_extraction"
    assert metadata["providerUsed"] == "fake"
    assert metadata["promptSystem"] == "legacy"


def test_extract_without_file(client_for):
    client = client_for(build_engine())

    response = client.post("/extract", data={"userEmail": "ops@example.com"})

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "NO_FILE"


def test_extract_rejects_oversized_file(client_for, monkeypatch):
    monkeypatch.setattr(processing, "MAX_FILE_SIZE", 16)
    client = client_for(build_engine())

    response = client.post("/extract", files=upload())

    assert response.status_code == 400
    assert response.json()["code"] == "FILE_TOO_LARGE"


def test_extract_rejects_unknown_document_type(client_for):
    client = client_for(build_engine())
    response = client.post("/extract", files=upload(), data={"documentType": "delivery_note"})
    assert response.status_code == 400
    assert response.json()["success"] is False


def test_extract_without_configured_provider(client_for):
    client = client_for(build_engine(FakeProvider("deepseek", configured=False)))

    response = client.post("/extract", files=upload(), data={"useNewPrompts": "false"})

    assert response.status_code >= 500
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "NO_PROVIDER_AVAILABLE"
    assert body["message"]


def test_bank_payment_endpoint_forces_type(client_for):
    provider = FakeProvider("fake", responses=['{"bank_payment": {"paymentAmount": 2866.38, "debitAmount": 673.00}}'])
    client = client_for(build_engine(provider))

    response = client.post("/extract-bank-payment", files=upload("slip.txt", b"Remittance advice"),
                           data={"useNewPrompts": "false"})

    assert response.status_code == 200
    body = response.json()
    assert body["extraction_metadata"]["documentType"] == "bank_payment"
    assert body["data"]["paymentAmount"] == 673.0
    assert body["data"]["debitAmount"] == 2866.38


def test_providers_listing(client_for):
    engine = build_engine(FakeProvider("deepseek", configured=False), FakeProvider("openai"))
    client = client_for(engine)

    body = client.get("/providers").json()

    assert body["chain"] == ["deepseek", "openai"]
    assert [(p["name"], p["configured"]) for p in body["providers"]] == [("deepseek", False), ("openai", True)]


def test_provider_health(client_for):
    client = client_for(build_engine(FakeProvider("openai")))
    body = client.get("/providers/health").json()
    assert body["healthy"] is True
    assert body["providers"][0]["name"] == "openai"


def test_prompt_system_status(client_for, monkeypatch):
    monkeypatch.setattr(main, "AB_TEST_USERS", ["tester@example.com"])
    client = client_for(build_engine())

    body = client.get("/prompt-system-status").json()

    assert body["defaultSystem"] in ("legacy", "managed")
    assert body["testUserCount"] == 1
    assert body["catalogCacheEntries"] == 0


def test_batch_requires_zip(client_for):
    client = client_for(build_engine())
    response = client.post("/batch-extract", files=upload())
    assert response.status_code == 400


def test_unknown_job(client_for):
    client = client_for(build_engine())
    assert client.get("/status/missing").status_code == 404
    assert client.get("/download/missing").status_code == 404


def test_download_before_completion_conflicts(client_for):
    client = client_for(build_engine())
    main.job_statuses["job-1"] = JobStatus(job_id="job-1", status="Processing", details="")

    assert client.get("/status/job-1").json()["status"] == "Processing"
    assert client.get("/download/job-1").status_code == 409


def test_root(client_for):
    client = client_for(build_engine())
    body = client.get("/").json()
    assert body["docs_url"] == "/docs"
