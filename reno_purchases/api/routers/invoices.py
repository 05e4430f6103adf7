from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from loguru import logger

from ...models.invoice import (
    ConfirmInvoiceRequest,
    ExtractInvoiceRequest,
    PurchaseInvoice,
    PurchaseLedgerEntry,
    ReconciliationRequest,
    UpdateInvoiceRequest,
)
from ...services.invoice_confirmation import InvoiceConfirmationService
from ...services.purchase_invoices import InvoiceDraftService
from ...services.reconciliation_rules import ConfirmationDecision
from ..deps import get_confirmation_service, get_draft_service

router = APIRouter(prefix="/projects/{project_id}", tags=["invoices"])


@router.get("/invoices", response_model=list[PurchaseInvoice])
def list_invoices(project_id: str, drafts: InvoiceDraftService = Depends(get_draft_service)):
    return drafts.list_invoices(project_id)


@router.post("/invoices/extract", response_model=PurchaseInvoice, status_code=status.HTTP_201_CREATED)
async def extract_invoice(
    project_id: str,
    req: ExtractInvoiceRequest,
    drafts: InvoiceDraftService = Depends(get_draft_service),
):
    """
    Create a draft invoice from an uploaded invoice attachment.

    Example request:
    {
        "attachment_id": "3f0c...",
        "model": "gpt-5-nano"
    }

    Runs the fast model first and escalates to the thorough model when the
    first pass collapsed the invoice into a single summary line. Without an
    API key a placeholder draft is created for manual entry.
    """
    logger.info(
        "Invoice extraction requested",
        project_id=project_id,
        attachment_id=req.attachment_id,
        provider=req.provider,
        model=req.model,
    )
    return await drafts.create_from_extraction(
        project_id, req.attachment_id, provider=req.provider, model=req.model
    )


@router.get("/invoices/{invoice_id}", response_model=PurchaseInvoice)
def get_invoice(project_id: str, invoice_id: str, drafts: InvoiceDraftService = Depends(get_draft_service)):
    return drafts.get_invoice(project_id, invoice_id)


@router.post("/invoices/{invoice_id}/second-pass", response_model=PurchaseInvoice)
async def second_pass(project_id: str, invoice_id: str, drafts: InvoiceDraftService = Depends(get_draft_service)):
    """Re-extract a draft with the thorough model; line edits and review are discarded"""
    return await drafts.force_second_pass(project_id, invoice_id)


@router.put("/invoices/{invoice_id}", response_model=PurchaseInvoice)
def update_invoice(
    project_id: str,
    invoice_id: str,
    req: UpdateInvoiceRequest,
    drafts: InvoiceDraftService = Depends(get_draft_service),
):
    return drafts.update(project_id, invoice_id, req)


@router.delete("/invoices/{invoice_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_invoice(project_id: str, invoice_id: str, drafts: InvoiceDraftService = Depends(get_draft_service)):
    drafts.delete(project_id, invoice_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/invoices/{invoice_id}/reconciliation", response_model=ConfirmationDecision)
def reconciliation_preview(
    project_id: str,
    invoice_id: str,
    req: Optional[ReconciliationRequest] = None,
    confirmations: InvoiceConfirmationService = Depends(get_confirmation_service),
):
    """
    Check an invoice against the confirmation rules without posting it.

    Example response:
    {
        "approved": false,
        "reason": "Cannot confirm: Every line must be linked to a material catalog entry ...",
        "checks": {
            "has_lines": true,
            "override_reason_provided": true,
            "totals_reconciled": true,
            "materials_linked": false
        },
        "metadata": {"line_subtotal": 80.0, "sub_total": 80.0, ...}
    }
    """
    review = req.review if req else None
    return confirmations.preview(project_id, invoice_id, review)


@router.post("/invoices/{invoice_id}/confirm", response_model=PurchaseInvoice)
def confirm_invoice(
    project_id: str,
    invoice_id: str,
    req: ConfirmInvoiceRequest,
    confirmations: InvoiceConfirmationService = Depends(get_confirmation_service),
):
    return confirmations.confirm(project_id, invoice_id, req.review)


@router.get("/ledger", response_model=list[PurchaseLedgerEntry])
def list_ledger(
    project_id: str,
    invoice_id: Optional[str] = None,
    confirmations: InvoiceConfirmationService = Depends(get_confirmation_service),
):
    return confirmations.list_ledger(project_id, invoice_id)
