"""
Referential checks run on every project write.

Catches anything a mutation might leave dangling: invoices pointing at
removed attachments, lines or ledger rows pointing at unknown catalog
materials, ledger rows pointing at unknown invoice lines.
"""

from ...core.errors import InvoiceValidationError
from ...models.project import Project


def ensure(condition: bool, message: str) -> None:
    if not condition:
        raise InvoiceValidationError(f"Invalid project data: {message}")


def validate_project(project: Project) -> Project:
    material_ids = set()
    for material in project.material_catalog:
        ensure(bool(material.id), "MaterialCatalog.id must be a non-empty string.")
        ensure(material.id not in material_ids, f"MaterialCatalog.id must be unique: {material.id}.")
        material_ids.add(material.id)

    attachment_ids = {attachment.id for attachment in project.attachments}

    invoice_ids = set()
    line_ids_by_invoice: dict[str, set[str]] = {}
    for invoice in project.purchase_invoices:
        ensure(invoice.id not in invoice_ids, f"PurchaseInvoice.id must be unique: {invoice.id}.")
        invoice_ids.add(invoice.id)
        ensure(invoice.project_id == project.id, "PurchaseInvoice.project_id must match project.id.")
        ensure(
            invoice.attachment_id in attachment_ids,
            "PurchaseInvoice.attachment_id must reference an existing attachment.",
        )
        ensure(
            invoice.status == "draft" or invoice.confirmed_at is not None,
            "Confirmed PurchaseInvoice must have confirmed_at.",
        )

        line_ids = set()
        for line in invoice.lines:
            ensure(line.id not in line_ids, f"PurchaseInvoiceLine.id must be unique per invoice: {line.id}.")
            line_ids.add(line.id)
            ensure(
                line.material_id is None or line.material_id in material_ids,
                "PurchaseInvoiceLine.material_id must reference a valid material catalog entry when provided.",
            )
        line_ids_by_invoice[invoice.id] = line_ids

    ledger_ids = set()
    for entry in project.purchase_ledger:
        ensure(entry.id not in ledger_ids, f"PurchaseLedgerEntry.id must be unique: {entry.id}.")
        ledger_ids.add(entry.id)
        ensure(entry.project_id == project.id, "PurchaseLedgerEntry.project_id must match project.id.")
        ensure(
            entry.invoice_id in invoice_ids,
            "PurchaseLedgerEntry.invoice_id must reference an existing invoice.",
        )
        ensure(
            entry.invoice_line_id in line_ids_by_invoice.get(entry.invoice_id, set()),
            "PurchaseLedgerEntry.invoice_line_id must reference an existing line in its invoice.",
        )
        ensure(
            entry.material_id in material_ids,
            "PurchaseLedgerEntry.material_id must reference a valid material catalog entry.",
        )

    return project
