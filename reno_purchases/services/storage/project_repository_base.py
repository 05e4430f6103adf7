"""
Abstract base class for project repositories.

A repository stores one document per project (attachments, material catalog,
purchase invoices, purchase ledger). Implementations only provide reading and
writing of whole documents; the invoice mutators below are shared and always
run read -> mutate -> validate -> write while holding the project's lock, so a
failed mutation never reaches storage.

Implementations:
- In-memory storage (for testing/demo)
- JSON files on disk (single-instance deployments)
"""

from abc import ABC, abstractmethod
from typing import Callable, Optional

from ...core.errors import InvoiceStateError, InvoiceValidationError, NotFoundError
from ...core.locks import KeyedLock
from ...models.invoice import (
    InvoiceDraftUpdate,
    InvoiceReview,
    PurchaseInvoice,
    PurchaseLedgerEntry,
)
from ...models.project import Attachment, MaterialCatalogItem, Project
from .validation import validate_project


class ProjectRepositoryBase(ABC):

    def __init__(self):
        self._project_locks = KeyedLock()

    # ---- storage primitives ----

    @abstractmethod
    def _read_project(self, project_id: str) -> Optional[Project]:
        """
        Load a project document.

        Args:
            project_id: Project identifier

        Returns:
            A fresh Project instance (callers may mutate it), or None if not found
        """
        pass

    @abstractmethod
    def _write_project(self, project: Project) -> None:
        """Persist a validated project document (replaces the stored one)"""
        pass

    @abstractmethod
    def _register_project(self, project: Project) -> None:
        """Store a brand-new project document"""
        pass

    @abstractmethod
    def list_project_ids(self) -> list[str]:
        """List ids of all stored projects"""
        pass

    # ---- reads ----

    def get_project_by_id(self, project_id: str) -> Optional[Project]:
        return self._read_project(project_id)

    def require_project(self, project_id: str) -> Project:
        project = self._read_project(project_id)
        if project is None:
            raise NotFoundError(f"Unknown projectId: {project_id}")
        return project

    # ---- mutation ----

    def _mutate_project(self, project_id: str, mutate: Callable[[Project], Project]) -> Project:
        with self._project_locks.hold(project_id):
            project = self.require_project(project_id)
            updated = validate_project(mutate(project))
            self._write_project(updated)
            return updated

    def create_project(self, project: Project) -> Project:
        with self._project_locks.hold(project.id):
            if self._read_project(project.id) is not None:
                raise InvoiceValidationError(f"Project id already exists: {project.id}")
            validate_project(project)
            self._register_project(project)
            return project

    def add_attachment(self, project_id: str, attachment: Attachment) -> Project:
        def mutate(project: Project) -> Project:
            if attachment.project_id != project_id:
                raise InvoiceValidationError("Attachment.project_id must match target project.")
            if project.find_attachment(attachment.id):
                raise InvoiceValidationError(f"Attachment id already exists: {attachment.id}")
            project.attachments = [attachment, *project.attachments]
            return project

        return self._mutate_project(project_id, mutate)

    def delete_attachment(self, project_id: str, attachment_id: str) -> Project:
        def mutate(project: Project) -> Project:
            if any(invoice.attachment_id == attachment_id for invoice in project.purchase_invoices):
                raise InvoiceStateError(
                    f"Attachment is referenced by one or more purchase invoices: {attachment_id}"
                )
            project.attachments = [a for a in project.attachments if a.id != attachment_id]
            return project

        return self._mutate_project(project_id, mutate)

    def add_material_catalog_item(self, project_id: str, material: MaterialCatalogItem) -> Project:
        def mutate(project: Project) -> Project:
            if material.id in project.material_ids():
                raise InvoiceValidationError(f"Material catalog id already exists: {material.id}")
            project.material_catalog = [material, *project.material_catalog]
            return project

        return self._mutate_project(project_id, mutate)

    def create_invoice_draft_from_extraction(self, project_id: str, invoice: PurchaseInvoice) -> Project:
        def mutate(project: Project) -> Project:
            if invoice.project_id != project_id:
                raise InvoiceValidationError("Invoice.project_id must match target project.")
            attachment = project.find_attachment(invoice.attachment_id)
            if attachment is None:
                raise NotFoundError(f"Unknown attachmentId: {invoice.attachment_id}")
            if attachment.category != "invoice":
                raise InvoiceValidationError("Attachment category must be invoice.")
            if project.find_invoice(invoice.id):
                raise InvoiceValidationError(f"Invoice id already exists: {invoice.id}")
            project.purchase_invoices = [invoice, *project.purchase_invoices]
            return project

        return self._mutate_project(project_id, mutate)

    def update_invoice_draft(
        self,
        project_id: str,
        invoice_id: str,
        payload: InvoiceDraftUpdate,
        updated_at: str,
    ) -> Project:
        def mutate(project: Project) -> Project:
            invoice = project.find_invoice(invoice_id)
            if invoice is None:
                raise NotFoundError(f"Unknown invoiceId: {invoice_id}")
            if invoice.status != "draft":
                raise InvoiceStateError("Only draft invoices can be edited.")
            invoice.vendor_name = payload.vendor_name
            invoice.invoice_number = payload.invoice_number
            invoice.invoice_date = payload.invoice_date
            invoice.currency = payload.currency
            invoice.totals = payload.totals
            invoice.lines = payload.lines
            invoice.review = payload.review
            if payload.extraction is not None:
                invoice.extraction = payload.extraction
            invoice.updated_at = updated_at
            return project

        return self._mutate_project(project_id, mutate)

    def confirm_invoice_draft(
        self,
        project_id: str,
        invoice_id: str,
        review: InvoiceReview,
        confirmed_at: str,
        build_ledger_entries: Callable[[Project, PurchaseInvoice], list[PurchaseLedgerEntry]],
    ) -> Project:
        """
        Mark a draft confirmed and append its ledger entries in one write.

        ``build_ledger_entries`` receives the project and invoice as read under
        the project lock. It may raise to refuse the confirmation, in which
        case nothing is written.

        Raises:
            NotFoundError: unknown invoice
            InvoiceStateError: invoice is not a draft
            InvoiceValidationError: ledger entries do not belong to this invoice
        """
        def mutate(project: Project) -> Project:
            invoice = project.find_invoice(invoice_id)
            if invoice is None:
                raise NotFoundError(f"Unknown invoiceId: {invoice_id}")
            if invoice.status != "draft":
                raise InvoiceStateError("Only draft invoices can be confirmed.")
            ledger_entries = build_ledger_entries(project, invoice)
            line_ids = {line.id for line in invoice.lines}
            for entry in ledger_entries:
                if entry.project_id != project_id:
                    raise InvoiceValidationError("Ledger entry project_id must match target project.")
                if entry.invoice_id != invoice_id:
                    raise InvoiceValidationError("Ledger entry invoice_id must match target invoice.")
                if entry.invoice_line_id not in line_ids:
                    raise InvoiceValidationError(
                        f"Ledger entry references unknown invoice_line_id: {entry.invoice_line_id}"
                    )
            invoice.review = review
            invoice.status = "confirmed"
            invoice.confirmed_at = confirmed_at
            invoice.updated_at = confirmed_at
            project.purchase_ledger = [*ledger_entries, *project.purchase_ledger]
            return project

        return self._mutate_project(project_id, mutate)

    def delete_invoice_draft(self, project_id: str, invoice_id: str) -> Project:
        def mutate(project: Project) -> Project:
            invoice = project.find_invoice(invoice_id)
            if invoice is None:
                raise NotFoundError(f"Unknown invoiceId: {invoice_id}")
            if invoice.status != "draft":
                raise InvoiceStateError("Only draft invoices can be deleted.")
            project.purchase_invoices = [i for i in project.purchase_invoices if i.id != invoice_id]
            return project

        return self._mutate_project(project_id, mutate)
