"""
Tests for the JSON-file project repository.

Verifies that the repository:
- Persists projects across instances
- Preserves document keys it does not model
- Never writes a mutation that fails validation
"""

import json

import pytest

from reno_purchases.core.errors import InvoiceStateError, InvoiceValidationError, NotFoundError
from reno_purchases.models.invoice import (
    InvoiceDraftUpdate,
    InvoiceExtraction,
    InvoiceReview,
    PurchaseInvoice,
    PurchaseInvoiceLine,
)
from reno_purchases.models.project import Attachment, MaterialCatalogItem, Project
from reno_purchases.services.storage import JsonProjectRepository, LocalFileStore, build_storage_key

NOW = "2026-03-14T12:00:00+00:00"


@pytest.fixture
def data_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def repo(data_dir):
    return JsonProjectRepository(str(data_dir))


def make_attachment(project_id="p1", attachment_id="att-1", category="invoice"):
    return Attachment(
        id=attachment_id,
        project_id=project_id,
        category=category,
        original_name="receipt.png",
        mime_type="image/png",
        storage_key=build_storage_key(project_id, attachment_id, "receipt.png"),
        uploaded_at=NOW,
    )


def make_invoice(invoice_id="inv-1", project_id="p1", attachment_id="att-1", lines=None):
    return PurchaseInvoice(
        id=invoice_id,
        project_id=project_id,
        attachment_id=attachment_id,
        lines=lines if lines is not None else [PurchaseInvoiceLine(id="l1", quantity=1, unit_price=5, line_total=5)],
        extraction=InvoiceExtraction(provider="fallback", model="fallback", extracted_at=NOW),
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.fixture
def seeded(repo):
    repo.create_project(Project(id="p1", name="Basement"))
    repo.add_attachment("p1", make_attachment())
    return repo


def test_create_project_writes_index_and_document(repo, data_dir):
    repo.create_project(Project(id="p1", name="Basement"))

    index = json.loads((data_dir / "projects-index.json").read_text())
    assert index == {"default_project_id": "p1", "projects": [{"id": "p1", "file": "p1.json"}]}
    assert json.loads((data_dir / "p1.json").read_text())["name"] == "Basement"
    assert repo.get_default_project_id() == "p1"


def test_duplicate_project_id_is_rejected(repo):
    repo.create_project(Project(id="p1", name="Basement"))

    with pytest.raises(InvoiceValidationError):
        repo.create_project(Project(id="p1", name="Other"))
    assert repo.list_project_ids() == ["p1"]


def test_projects_persist_across_instances(seeded, data_dir):
    seeded.create_invoice_draft_from_extraction("p1", make_invoice())

    reopened = JsonProjectRepository(str(data_dir))
    project = reopened.get_project_by_id("p1")

    assert project.find_invoice("inv-1").lines[0].line_total == 5
    assert project.find_attachment("att-1").category == "invoice"


def test_unmodelled_keys_survive_rewrites(repo, data_dir):
    repo.create_project(Project(id="p1", name="Basement"))
    document = json.loads((data_dir / "p1.json").read_text())
    document["sections"] = [{"id": "s1", "title": "Framing"}]
    (data_dir / "p1.json").write_text(json.dumps(document))

    repo.add_material_catalog_item("p1", MaterialCatalogItem(id="stud", name="2x4 stud"))

    document = json.loads((data_dir / "p1.json").read_text())
    assert document["sections"] == [{"id": "s1", "title": "Framing"}]
    assert document["material_catalog"][0]["id"] == "stud"


def test_unknown_project_is_not_found(repo):
    assert repo.get_project_by_id("missing") is None
    with pytest.raises(NotFoundError):
        repo.require_project("missing")


def test_draft_requires_invoice_attachment(seeded):
    seeded.add_attachment("p1", make_attachment(attachment_id="photo-1", category="photo"))

    with pytest.raises(InvoiceValidationError):
        seeded.create_invoice_draft_from_extraction("p1", make_invoice(attachment_id="photo-1"))
    with pytest.raises(NotFoundError):
        seeded.create_invoice_draft_from_extraction("p1", make_invoice(attachment_id="nope"))


def test_failed_validation_leaves_document_untouched(seeded, data_dir):
    seeded.create_invoice_draft_from_extraction("p1", make_invoice())
    before = (data_dir / "p1.json").read_text()
    payload = InvoiceDraftUpdate(
        vendor_name="RONA",
        invoice_number="1",
        invoice_date="2026-01-01",
        currency="CAD",
        totals={"sub_total": 5},
        lines=[PurchaseInvoiceLine(id="l1", material_id="not-in-catalog")],
        review={},
    )

    with pytest.raises(InvoiceValidationError, match="material_id"):
        seeded.update_invoice_draft("p1", "inv-1", payload, updated_at=NOW)

    assert (data_dir / "p1.json").read_text() == before


def test_duplicate_line_ids_fail_validation(seeded):
    lines = [PurchaseInvoiceLine(id="dup"), PurchaseInvoiceLine(id="dup")]

    with pytest.raises(InvoiceValidationError, match="unique per invoice"):
        seeded.create_invoice_draft_from_extraction("p1", make_invoice(lines=lines))


def no_entries(project, invoice):
    return []


def test_confirmed_invoice_cannot_be_deleted_or_confirmed_again(seeded):
    seeded.add_material_catalog_item("p1", MaterialCatalogItem(id="stud", name="Stud"))
    line = PurchaseInvoiceLine(id="l1", quantity=1, unit_price=5, line_total=5, material_id="stud")
    seeded.create_invoice_draft_from_extraction("p1", make_invoice(lines=[line]))
    seeded.confirm_invoice_draft("p1", "inv-1", review=InvoiceReview(), confirmed_at=NOW, build_ledger_entries=no_entries)

    with pytest.raises(InvoiceStateError):
        seeded.delete_invoice_draft("p1", "inv-1")
    with pytest.raises(InvoiceStateError):
        seeded.confirm_invoice_draft("p1", "inv-1", review=InvoiceReview(), confirmed_at=NOW, build_ledger_entries=no_entries)


def test_referenced_attachment_cannot_be_deleted(seeded):
    seeded.create_invoice_draft_from_extraction("p1", make_invoice())

    with pytest.raises(InvoiceStateError):
        seeded.delete_attachment("p1", "att-1")


def test_delete_draft_removes_it(seeded):
    seeded.create_invoice_draft_from_extraction("p1", make_invoice())

    project = seeded.delete_invoice_draft("p1", "inv-1")

    assert project.purchase_invoices == []
    with pytest.raises(NotFoundError):
        seeded.delete_invoice_draft("p1", "inv-1")


def test_file_store_round_trip_and_escape_guard(tmp_path):
    store = LocalFileStore(str(tmp_path / "files"))
    key = build_storage_key("p1", "att-1", "My Receipt (1).PNG")

    store.save_bytes(key, b"bytes")

    assert key == "projects/p1/project/att-1-My-Receipt-1-.PNG"
    assert store.read_bytes(key) == b"bytes"
    store.delete_bytes(key)
    store.delete_bytes(key)
    with pytest.raises(FileNotFoundError):
        store.read_bytes(key)
    with pytest.raises(ValueError):
        store.save_bytes("../outside.txt", b"x")


def test_refused_confirmation_writes_nothing(seeded, data_dir):
    seeded.create_invoice_draft_from_extraction("p1", make_invoice())
    before = (data_dir / "p1.json").read_text()

    def refuse(project, invoice):
        raise InvoiceStateError("refused")

    with pytest.raises(InvoiceStateError, match="refused"):
        seeded.confirm_invoice_draft("p1", "inv-1", review=InvoiceReview(), confirmed_at=NOW, build_ledger_entries=refuse)

    assert (data_dir / "p1.json").read_text() == before
    assert seeded.require_project("p1").purchase_invoices[0].status == "draft"
