"""
End-to-end API tests: upload an invoice photo, extract a draft, link
materials, reconcile and confirm.
"""

import json

import httpx
import respx

from conftest import PNG_BYTES, engine_line, engine_payload
from reno_purchases.api import deps
from reno_purchases.api.main import app
from reno_purchases.services.invoice_extractor import ExtractorConfig


def create_project(client, project_id="kitchen"):
    r = client.post("/projects", json={"id": project_id, "name": "Kitchen renovation"})
    assert r.status_code == 201
    return r.json()["id"]


def upload_invoice(client, project_id, category="invoice", mime_type="image/png"):
    r = client.post(
        f"/projects/{project_id}/attachments",
        files={"file": ("receipt.png", PNG_BYTES, mime_type)},
        data={"category": category, "file_title": "HD March"},
    )
    assert r.status_code == 201
    return r.json()["id"]


def add_material(client, project_id, name, **extra):
    r = client.post(f"/projects/{project_id}/materials", json={"name": name, **extra})
    assert r.status_code == 201
    return r.json()["id"]


def draft_update_body(draft, lines, sub_total):
    return {
        "vendor_name": draft["vendor_name"] or "Home Depot",
        "invoice_number": draft["invoice_number"],
        "invoice_date": draft["invoice_date"],
        "currency": draft["currency"],
        "totals": {"sub_total": sub_total, "grand_total": sub_total},
        "lines": lines,
    }


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_fallback_flow_from_upload_to_ledger(client):
    project_id = create_project(client)
    attachment_id = upload_invoice(client, project_id)

    r = client.post(f"/projects/{project_id}/invoices/extract", json={"attachment_id": attachment_id})
    assert r.status_code == 201
    draft = r.json()
    assert draft["status"] == "draft"
    assert draft["totals"]["grand_total"] == 0
    assert len(draft["lines"]) == 1

    r = client.post(f"/projects/{project_id}/invoices/{draft['id']}/confirm", json={"review": {}})
    assert r.status_code == 409
    assert "material" in r.json()["detail"]

    stud_id = add_material(client, project_id, "2x4 Stud 8ft", unit_type="piece")
    assert stud_id == "2x4-stud-8ft"
    line = {**draft["lines"][0], "quantity": 4, "unit_price": 5, "line_total": None, "material_id": stud_id}
    r = client.put(
        f"/projects/{project_id}/invoices/{draft['id']}",
        json=draft_update_body(draft, [line], sub_total=20),
    )
    assert r.status_code == 200
    assert r.json()["lines"][0]["line_total"] == 20

    r = client.post(f"/projects/{project_id}/invoices/{draft['id']}/reconciliation", json={})
    assert r.status_code == 200
    assert r.json()["approved"] is True

    r = client.post(f"/projects/{project_id}/invoices/{draft['id']}/confirm", json={"review": {}})
    assert r.status_code == 200
    assert r.json()["status"] == "confirmed"

    r = client.get(f"/projects/{project_id}/ledger", params={"invoice_id": draft["id"]})
    assert r.status_code == 200
    ledger = r.json()
    assert len(ledger) == 1
    assert ledger[0]["material_id"] == stud_id
    assert ledger[0]["line_total"] == 20

    r = client.delete(f"/projects/{project_id}/invoices/{draft['id']}")
    assert r.status_code == 409


def test_totals_mismatch_needs_override_reason(client):
    project_id = create_project(client)
    draft = client.post(
        f"/projects/{project_id}/invoices/extract", json={"attachment_id": upload_invoice(client, project_id)}
    ).json()
    stud_id = add_material(client, project_id, "Stud")
    line = {"quantity": 2, "unit_price": 10, "material_id": stud_id}
    client.put(f"/projects/{project_id}/invoices/{draft['id']}", json=draft_update_body(draft, [line], sub_total=25))
    url = f"/projects/{project_id}/invoices/{draft['id']}/confirm"

    assert client.post(url, json={"review": {}}).status_code == 409
    r = client.post(url, json={"review": {"totals_mismatch_override": True, "override_reason": ""}})
    assert r.status_code == 409
    assert "reason" in r.json()["detail"]

    r = client.post(url, json={"review": {"totals_mismatch_override": True, "override_reason": "Delivery fee"}})
    assert r.status_code == 200
    assert r.json()["review"]["override_reason"] == "Delivery fee"
    assert len(client.get(f"/projects/{project_id}/ledger").json()) == 1


def test_non_finite_totals_are_422_and_never_posted(client):
    project_id = create_project(client)
    draft = client.post(
        f"/projects/{project_id}/invoices/extract", json={"attachment_id": upload_invoice(client, project_id)}
    ).json()
    stud_id = add_material(client, project_id, "Stud")
    body = draft_update_body(draft, [{"quantity": 2, "unit_price": 10, "material_id": stud_id}], sub_total=float("nan"))

    # Python's json module writes NaN as a bare token, which the API must refuse
    r = client.put(
        f"/projects/{project_id}/invoices/{draft['id']}",
        content=json.dumps(body),
        headers={"Content-Type": "application/json"},
    )
    assert r.status_code == 422
    assert r.json()["detail"][0]["loc"][:3] == ["body", "totals", "sub_total"]

    r = client.post(f"/projects/{project_id}/invoices/{draft['id']}/confirm", json={"review": {}})
    assert r.status_code == 409
    assert client.get(f"/projects/{project_id}/ledger").json() == []


def test_material_ids_get_numeric_suffix_on_collision(client):
    project_id = create_project(client)

    assert add_material(client, project_id, "Drywall") == "drywall"
    assert add_material(client, project_id, "drywall!") == "drywall-2"
    assert add_material(client, project_id, "Drywall") == "drywall-3"


def test_unknown_ids_are_404(client):
    project_id = create_project(client)

    assert client.get("/projects/nope/invoices").status_code == 404
    r = client.post(f"/projects/{project_id}/invoices/extract", json={"attachment_id": "missing"})
    assert r.status_code == 404
    assert r.json()["detail"] == "Unknown attachmentId: missing"
    assert client.delete(f"/projects/{project_id}/invoices/missing").status_code == 404


def test_non_invoice_attachment_is_422(client):
    project_id = create_project(client)
    attachment_id = upload_invoice(client, project_id, category="photo")

    r = client.post(f"/projects/{project_id}/invoices/extract", json={"attachment_id": attachment_id})

    assert r.status_code == 422


def test_invalid_request_body_is_422(client):
    project_id = create_project(client)

    r = client.post(f"/projects/{project_id}/invoices/extract", json={})

    assert r.status_code == 422
    assert r.json()["detail"][0]["loc"] == ["body", "attachment_id"]


def test_delete_draft_returns_204(client):
    project_id = create_project(client)
    draft = client.post(
        f"/projects/{project_id}/invoices/extract", json={"attachment_id": upload_invoice(client, project_id)}
    ).json()

    r = client.delete(f"/projects/{project_id}/invoices/{draft['id']}")

    assert r.status_code == 204
    assert client.get(f"/projects/{project_id}/invoices").json() == []


def test_attachment_download_returns_stored_bytes(client):
    project_id = create_project(client)
    attachment_id = upload_invoice(client, project_id)

    r = client.get(f"/projects/{project_id}/attachments/{attachment_id}/download")

    assert r.status_code == 200
    assert r.content == PNG_BYTES
    assert r.headers["content-type"] == "image/png"


@respx.mock
def test_openai_extraction_and_second_pass_over_http(client):
    app.dependency_overrides[deps.get_extractor_config] = lambda: ExtractorConfig(api_key="sk-test")
    summary = engine_payload([engine_line("Materials", 1, 50)], sub_total=100)
    itemized = engine_payload(
        [engine_line("Stud", 2, 10), engine_line("Drywall", 3, 20), engine_line("Screws", 1, 20)], sub_total=100
    )
    route = respx.post("https://api.openai.com/v1/responses").mock(side_effect=[
        httpx.Response(200, json={"output_text": json.dumps(summary)}),
        httpx.Response(200, json={"output_text": json.dumps(itemized)}),
        httpx.Response(200, json={"output_text": json.dumps(itemized)}),
    ])
    project_id = create_project(client)
    attachment_id = upload_invoice(client, project_id)

    r = client.post(f"/projects/{project_id}/invoices/extract", json={"attachment_id": attachment_id})
    assert r.status_code == 201
    draft = r.json()
    assert draft["extraction"]["pass_used"] == "pass2"
    assert len(draft["lines"]) == 3
    assert route.call_count == 2

    r = client.post(f"/projects/{project_id}/invoices/{draft['id']}/second-pass")
    assert r.status_code == 200
    assert r.json()["extraction"]["model"] == "gpt-5-mini"
    assert route.call_count == 3


@respx.mock
def test_engine_failure_is_502_and_creates_nothing(client):
    app.dependency_overrides[deps.get_extractor_config] = lambda: ExtractorConfig(api_key="sk-test")
    respx.post("https://api.openai.com/v1/responses").mock(return_value=httpx.Response(500, text="server error"))
    project_id = create_project(client)
    attachment_id = upload_invoice(client, project_id)

    r = client.post(f"/projects/{project_id}/invoices/extract", json={"attachment_id": attachment_id})

    assert r.status_code == 502
    assert "500" in r.json()["detail"]
    assert client.get(f"/projects/{project_id}/invoices").json() == []
