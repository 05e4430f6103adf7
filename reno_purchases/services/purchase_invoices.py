"""
Draft lifecycle for purchase invoices.

Turns an uploaded invoice attachment into an editable draft (via the
extractor), lets the user edit, re-extract or delete it while it is a draft,
and lists a project's invoices. Confirmation lives in invoice_confirmation.py.
"""

import json
import math
import uuid
from datetime import datetime, UTC
from typing import Any, Optional

from fastapi.concurrency import run_in_threadpool
from loguru import logger

from ..core.errors import InvoiceStateError, InvoiceValidationError, NotFoundError
from ..models.invoice import (
    InvoiceDraftUpdate,
    InvoiceExtraction,
    InvoiceLineInput,
    InvoiceReview,
    PurchaseInvoice,
    PurchaseInvoiceLine,
    UpdateInvoiceRequest,
)
from ..models.project import Attachment, Project
from .invoice_extractor import (
    ExtractionEngine,
    ExtractorConfig,
    InvoiceExtractionInput,
    InvoiceExtractor,
    build_invoice_extractor,
)
from .invoice_types import ExtractedInvoice, ExtractedInvoiceLine
from .normalizer import DEFAULT_CURRENCY
from .storage import LocalFileStore, ProjectRepositoryBase


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def new_id() -> str:
    return str(uuid.uuid4())


def cap_raw_output(raw_output: Any, max_chars: int) -> Any:
    """
    Keep raw engine output as-is unless its JSON form exceeds ``max_chars``.

    Oversized payloads are replaced by a truncated preview so a single
    runaway response cannot bloat the project document.
    """
    serialized = json.dumps(raw_output, default=str)
    if len(serialized) <= max_chars:
        return raw_output
    return {
        "truncated": True,
        "size_chars": len(serialized),
        "preview": serialized[:max_chars],
    }


def to_invoice_line(line: ExtractedInvoiceLine) -> PurchaseInvoiceLine:
    return PurchaseInvoiceLine(id=new_id(), material_id=None, **line.model_dump())


def find_attachment_or_raise(project: Project, attachment_id: str) -> Attachment:
    attachment = project.find_attachment(attachment_id)
    if attachment is None:
        raise NotFoundError(f"Unknown attachmentId: {attachment_id}")
    return attachment


def find_invoice_or_raise(project: Project, invoice_id: str) -> PurchaseInvoice:
    invoice = project.find_invoice(invoice_id)
    if invoice is None:
        raise NotFoundError(f"Unknown invoiceId: {invoice_id}")
    return invoice


class InvoiceDraftService:
    """
    Creates and maintains draft purchase invoices for a project.

    Args:
        repository: Project repository (JSON files or in-memory)
        file_store: Where attachment bytes are read from
        extractor_config: Provider/model/key configuration for extraction
        raw_output_max_chars: Cap for the serialized raw engine output kept on a draft
        engine: Optional extraction engine override (tests inject a fake)
    """

    def __init__(
        self,
        repository: ProjectRepositoryBase,
        file_store: LocalFileStore,
        extractor_config: ExtractorConfig,
        raw_output_max_chars: int = 200_000,
        engine: Optional[ExtractionEngine] = None,
    ):
        self.repository = repository
        self.file_store = file_store
        self.extractor_config = extractor_config
        self.raw_output_max_chars = raw_output_max_chars
        self.engine = engine

    def build_extractor(self, provider: Optional[str] = None) -> InvoiceExtractor:
        config = self.extractor_config
        if provider and provider.strip():
            config = config.model_copy(update={"provider": provider.strip().lower()})
        return build_invoice_extractor(config, engine=self.engine)

    def _read_attachment_bytes(self, attachment: Attachment) -> bytes:
        try:
            return self.file_store.read_bytes(attachment.storage_key)
        except FileNotFoundError:
            raise NotFoundError(f"Attachment file is missing from storage: {attachment.id}")

    def _draft_fields(self, extracted: ExtractedInvoice, attachment: Attachment) -> dict:
        """Draft header/lines from an extraction, with fallbacks for blank fields"""
        fallback_number = (attachment.file_title or "").strip() or attachment.original_name
        return {
            "vendor_name": extracted.vendor_name,
            "invoice_number": extracted.invoice_number or fallback_number,
            "invoice_date": extracted.invoice_date or datetime.now(UTC).date().isoformat(),
            "currency": extracted.currency or DEFAULT_CURRENCY,
            "totals": extracted.totals,
            "lines": [to_invoice_line(line) for line in extracted.lines],
        }

    def _extraction_record(self, extractor: InvoiceExtractor, extracted: ExtractedInvoice) -> InvoiceExtraction:
        return InvoiceExtraction(
            provider=extractor.provider_name,
            model=extracted.model_used,
            extracted_at=utc_now_iso(),
            pass_used=extracted.pass_used,
            raw_output=cap_raw_output(extracted.raw_output, self.raw_output_max_chars),
        )

    async def create_from_extraction(
        self,
        project_id: str,
        attachment_id: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> PurchaseInvoice:
        """
        Extract an invoice attachment and store the result as a new draft.

        Raises:
            NotFoundError: unknown project or attachment, or attachment bytes missing
            InvoiceValidationError: attachment is not an invoice, or unsupported file type
            ExtractionError: the extraction engine failed (nothing is stored)
        """
        project = await run_in_threadpool(self.repository.require_project, project_id)
        attachment = find_attachment_or_raise(project, attachment_id)
        if attachment.category != "invoice":
            raise InvoiceValidationError("Attachment category must be invoice.")

        file_bytes = await run_in_threadpool(self._read_attachment_bytes, attachment)
        extractor = self.build_extractor(provider)
        extracted = await extractor.extract(
            InvoiceExtractionInput(
                file_bytes=file_bytes,
                mime_type=attachment.mime_type,
                file_name=attachment.original_name,
                model=(model or "").strip() or None,
            )
        )

        now = utc_now_iso()
        invoice = PurchaseInvoice(
            id=new_id(),
            project_id=project_id,
            attachment_id=attachment.id,
            status="draft",
            extraction=self._extraction_record(extractor, extracted),
            review=InvoiceReview(),
            created_at=now,
            updated_at=now,
            **self._draft_fields(extracted, attachment),
        )
        await run_in_threadpool(self.repository.create_invoice_draft_from_extraction, project_id, invoice)

        logger.info(
            "Invoice draft created",
            project_id=project_id,
            invoice_id=invoice.id,
            attachment_id=attachment.id,
            provider=invoice.extraction.provider,
            model=invoice.extraction.model,
            pass_used=invoice.extraction.pass_used,
            line_count=len(invoice.lines),
        )
        return invoice

    async def force_second_pass(self, project_id: str, invoice_id: str) -> PurchaseInvoice:
        """
        Re-extract a draft with the thorough model only and replace its content.

        The review is reset; material links on the old lines are dropped with them.
        """
        project = await run_in_threadpool(self.repository.require_project, project_id)
        invoice = find_invoice_or_raise(project, invoice_id)
        if invoice.status != "draft":
            raise InvoiceStateError("Only draft invoices can be re-extracted.")
        attachment = find_attachment_or_raise(project, invoice.attachment_id)

        file_bytes = await run_in_threadpool(self._read_attachment_bytes, attachment)
        extractor = self.build_extractor()
        extracted = await extractor.extract(
            InvoiceExtractionInput(
                file_bytes=file_bytes,
                mime_type=attachment.mime_type,
                file_name=attachment.original_name,
                force_second_pass=True,
            )
        )

        payload = InvoiceDraftUpdate(
            review=InvoiceReview(),
            extraction=self._extraction_record(extractor, extracted),
            **self._draft_fields(extracted, attachment),
        )
        # The repository re-checks draft status, so a confirm that landed during
        # the engine call wins and this raises InvoiceStateError.
        updated = await run_in_threadpool(
            self.repository.update_invoice_draft, project_id, invoice_id, payload, updated_at=utc_now_iso()
        )

        logger.info(
            "Invoice draft re-extracted",
            project_id=project_id,
            invoice_id=invoice_id,
            model=payload.extraction.model,
            line_count=len(payload.lines),
        )
        return find_invoice_or_raise(updated, invoice_id)

    def _build_lines(self, lines: list[InvoiceLineInput], material_ids: set[str]) -> list[PurchaseInvoiceLine]:
        built = []
        seen_ids = set()
        for position, line in enumerate(lines, start=1):
            material_id = (line.material_id or "").strip() or None
            if material_id and material_id not in material_ids:
                raise InvoiceValidationError(f"Unknown materialId on line {position}: {material_id}")

            line_id = (line.id or "").strip() or new_id()
            if line_id in seen_ids:
                raise InvoiceValidationError(f"Duplicate line id: {line_id}")
            seen_ids.add(line_id)

            fields = line.model_dump(exclude={"id", "material_id", "line_total"})
            line_total = line.line_total if line.line_total is not None else line.quantity * line.unit_price
            if not math.isfinite(line_total):
                raise InvoiceValidationError(f"Line total out of range on line {position}")
            built.append(PurchaseInvoiceLine(id=line_id, material_id=material_id, line_total=line_total, **fields))
        return built

    def update(self, project_id: str, invoice_id: str, request: UpdateInvoiceRequest) -> PurchaseInvoice:
        """
        Replace a draft's header, totals and lines with the user's edits.

        The review is kept as-is when the request omits it.
        """
        project = self.repository.require_project(project_id)
        invoice = find_invoice_or_raise(project, invoice_id)
        if invoice.status != "draft":
            raise InvoiceStateError("Only draft invoices can be edited.")

        payload = InvoiceDraftUpdate(
            vendor_name=request.vendor_name.strip(),
            invoice_number=request.invoice_number.strip(),
            invoice_date=request.invoice_date.strip(),
            currency=request.currency.strip().upper() or DEFAULT_CURRENCY,
            totals=request.totals,
            lines=self._build_lines(request.lines, project.material_ids()),
            review=request.review or invoice.review,
        )
        updated = self.repository.update_invoice_draft(project_id, invoice_id, payload, updated_at=utc_now_iso())

        logger.info(
            "Invoice draft updated",
            project_id=project_id,
            invoice_id=invoice_id,
            line_count=len(payload.lines),
        )
        return find_invoice_or_raise(updated, invoice_id)

    def delete(self, project_id: str, invoice_id: str) -> None:
        self.repository.delete_invoice_draft(project_id, invoice_id)
        logger.info("Invoice draft deleted", project_id=project_id, invoice_id=invoice_id)

    def get_invoice(self, project_id: str, invoice_id: str) -> PurchaseInvoice:
        return find_invoice_or_raise(self.repository.require_project(project_id), invoice_id)

    def list_invoices(self, project_id: str) -> list[PurchaseInvoice]:
        """All invoices of a project, newest first"""
        project = self.repository.require_project(project_id)
        return sorted(project.purchase_invoices, key=lambda invoice: invoice.created_at, reverse=True)
