"""
Confirmation and posting of draft purchase invoices.

A confirmed invoice is frozen and produces one ledger entry per line.
"""

import uuid
from datetime import datetime, UTC
from typing import Optional

from loguru import logger

from ..core.locks import KeyedLock
from ..models.invoice import InvoiceReview, PurchaseInvoice, PurchaseInvoiceLine, PurchaseLedgerEntry
from ..models.project import Project
from .events import EventPublisher, InvoiceConfirmedEvent
from .purchase_invoices import find_invoice_or_raise
from .reconciliation_rules import ConfirmationDecision, InvoiceConfirmationRules
from .storage import ProjectRepositoryBase

# Shared across service instances so every request path serializes on the same invoice
_invoice_locks = KeyedLock()


def build_ledger_entry(invoice: PurchaseInvoice, line: PurchaseInvoiceLine, posted_at: str) -> PurchaseLedgerEntry:
    return PurchaseLedgerEntry(
        id=str(uuid.uuid4()),
        project_id=invoice.project_id,
        invoice_id=invoice.id,
        invoice_line_id=line.id,
        posted_at=posted_at,
        material_id=line.material_id,
        quantity=line.quantity,
        unit_type=line.unit_type,
        unit_price=line.unit_price,
        line_total=line.line_total,
        vendor_name=invoice.vendor_name,
        invoice_date=invoice.invoice_date,
        currency=invoice.currency,
        entry_type="purchase",
        note=line.notes,
    )


class InvoiceConfirmationService:
    def __init__(
        self,
        repository: ProjectRepositoryBase,
        rules: Optional[InvoiceConfirmationRules] = None,
        event_publisher: Optional[EventPublisher] = None,
        locks: Optional[KeyedLock] = None,
    ):
        self.repository = repository
        self.rules = rules or InvoiceConfirmationRules()
        self.event_publisher = event_publisher or EventPublisher(service_bus_sender=None)
        self.locks = locks or _invoice_locks

    def preview(
        self,
        project_id: str,
        invoice_id: str,
        review: Optional[InvoiceReview] = None,
    ) -> ConfirmationDecision:
        """Evaluate the confirmation rules without posting (review defaults to the stored one)"""
        project = self.repository.require_project(project_id)
        invoice = find_invoice_or_raise(project, invoice_id)
        return self.rules.evaluate(invoice, review or invoice.review, project.material_ids())

    def confirm(self, project_id: str, invoice_id: str, review: InvoiceReview) -> PurchaseInvoice:
        """
        Validate a draft against the reconciliation rules and post it.

        Args:
            project_id: Owning project
            invoice_id: Draft to confirm
            review: Override flag and reason submitted by the user (persisted as given)

        Returns:
            The confirmed invoice

        Raises:
            NotFoundError: unknown project or invoice
            InvoiceStateError: invoice already confirmed
            InvoiceValidationError: invoice has no lines
            OverrideReasonRequiredError, TotalsMismatchError, MissingMaterialError:
                reconciliation failed; nothing was written
        """
        posted_at = datetime.now(UTC).isoformat()
        decisions: list[ConfirmationDecision] = []

        def build_entries(project: Project, invoice: PurchaseInvoice) -> list[PurchaseLedgerEntry]:
            # Runs on the invoice as stored at write time, inside the project lock
            decisions.append(self.rules.enforce(invoice, review, project.material_ids()))
            return [build_ledger_entry(invoice, line, posted_at) for line in invoice.lines]

        with self.locks.hold(f"{project_id}:{invoice_id}"):
            updated = self.repository.confirm_invoice_draft(
                project_id,
                invoice_id,
                review=review,
                confirmed_at=posted_at,
                build_ledger_entries=build_entries,
            )

        decision = decisions[-1]
        confirmed = find_invoice_or_raise(updated, invoice_id)
        logger.info(
            "Invoice confirmed",
            project_id=project_id,
            invoice_id=invoice_id,
            ledger_entries=len(confirmed.lines),
            totals_mismatch=decision.metadata["totals_mismatch"],
            override=review.totals_mismatch_override,
        )
        self._publish(confirmed, len(confirmed.lines))
        return confirmed

    def _publish(self, invoice: PurchaseInvoice, entry_count: int) -> None:
        event = InvoiceConfirmedEvent(
            invoice_id=invoice.id,
            project_id=invoice.project_id,
            vendor=invoice.vendor_name,
            invoice_number=invoice.invoice_number,
            ledger_entry_count=entry_count,
            grand_total=invoice.totals.grand_total,
            currency=invoice.currency,
            totals_mismatch_override=invoice.review.totals_mismatch_override,
        )
        try:
            self.event_publisher.publish_invoice_confirmed(event)
        except Exception as e:
            # The invoice is already posted; downstream delivery is best effort
            logger.warning("Failed to publish invoice confirmed event", invoice_id=invoice.id, error=str(e))

    def list_ledger(self, project_id: str, invoice_id: Optional[str] = None) -> list[PurchaseLedgerEntry]:
        """Ledger entries of a project (optionally one invoice), newest first"""
        project = self.repository.require_project(project_id)
        entries = project.purchase_ledger
        if invoice_id:
            entries = [entry for entry in entries if entry.invoice_id == invoice_id]
        return sorted(entries, key=lambda entry: entry.posted_at, reverse=True)
