"""
Pytest configuration and shared fixtures.

Registers the ``integration`` marker (real OpenAI calls, skipped unless
``--run-integration`` is given) and provides in-memory repositories, a
temporary file store and a scripted extraction engine.
"""

import json

import pytest
from fastapi.testclient import TestClient

from reno_purchases.api import deps
from reno_purchases.api.main import app
from reno_purchases.services.events import EventPublisher
from reno_purchases.services.invoice_confirmation import InvoiceConfirmationService
from reno_purchases.services.invoice_extractor import ExtractionEngine, ExtractorConfig
from reno_purchases.services.projects import ProjectService
from reno_purchases.services.purchase_invoices import InvoiceDraftService
from reno_purchases.services.storage import InMemoryProjectRepository, LocalFileStore

# Not a decodable image; the engine is always faked or mocked in unit tests
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def pytest_addoption(parser):
    """Add custom command-line options"""
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests against the real OpenAI API"
    )


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring a real OpenAI API key"
    )


def pytest_collection_modifyitems(config, items):
    """Skip integration tests unless --run-integration is specified"""
    if config.getoption("--run-integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --run-integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


class ScriptedEngine(ExtractionEngine):
    """Returns queued responses in order and records every call."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def complete(self, image_url: str, model: str, prompt: str) -> str:
        self.calls.append({"image_url": image_url, "model": model, "prompt": prompt})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response if isinstance(response, str) else json.dumps(response)

    @property
    def models(self):
        return [call["model"] for call in self.calls]


def engine_payload(lines, sub_total, vendor="Home Depot", invoice_number="INV-100", invoice_date="2026-03-14"):
    """Engine JSON in the camelCase shape the extraction prompt asks for"""
    return {
        "vendorName": vendor,
        "invoiceNumber": invoice_number,
        "invoiceDate": invoice_date,
        "currency": "CAD",
        "totals": {"subTotal": sub_total, "tax": 0, "shipping": 0, "otherFees": 0, "grandTotal": sub_total},
        "lines": lines,
    }


def engine_line(description, quantity, unit_price, line_total=None, unit_type="piece"):
    line = {
        "sourceText": description,
        "description": description,
        "quantity": quantity,
        "unitType": unit_type,
        "unitPrice": unit_price,
        "confidence": 0.9,
        "needsReview": False,
    }
    if line_total is not None:
        line["lineTotal"] = line_total
    return line


@pytest.fixture
def repository():
    return InMemoryProjectRepository()


@pytest.fixture
def file_store(tmp_path):
    return LocalFileStore(str(tmp_path / "storage"))


@pytest.fixture
def project_service(repository, file_store):
    return ProjectService(repository=repository, file_store=file_store)


@pytest.fixture
def project(project_service):
    return project_service.create_project("Kitchen renovation", project_id="kitchen")


@pytest.fixture
def invoice_attachment(project_service, project):
    return project_service.add_attachment(
        project.id,
        PNG_BYTES,
        original_name="home-depot-receipt.png",
        mime_type="image/png",
        category="invoice",
        file_title="HD March",
    )


@pytest.fixture
def openai_config():
    return ExtractorConfig(provider="openai", api_key="test-key", model="gpt-5-nano", second_pass_model="gpt-5-mini")


@pytest.fixture
def make_draft_service(repository, file_store, openai_config):
    """Build a draft service; with no engine the configuration has no key (fallback extractor)"""

    def make(engine=None, raw_output_max_chars=200_000):
        config = openai_config if engine is not None else ExtractorConfig(api_key=None)
        return InvoiceDraftService(
            repository=repository,
            file_store=file_store,
            extractor_config=config,
            raw_output_max_chars=raw_output_max_chars,
            engine=engine,
        )

    return make


@pytest.fixture
def confirmation_service(repository):
    return InvoiceConfirmationService(repository=repository, event_publisher=EventPublisher(service_bus_sender=None))


@pytest.fixture
def client(repository, file_store):
    """TestClient wired to in-memory storage and the fallback extractor"""
    app.dependency_overrides[deps.get_repository] = lambda: repository
    app.dependency_overrides[deps.get_file_store] = lambda: file_store
    app.dependency_overrides[deps.get_extractor_config] = lambda: ExtractorConfig(api_key=None)
    app.dependency_overrides[deps.get_event_publisher] = lambda: EventPublisher(service_bus_sender=None)
    yield TestClient(app)
    app.dependency_overrides.clear()
