from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..services.invoice_types import InvoiceTotals, PassLabel, UnitType

InvoiceStatus = Literal["draft", "confirmed"]


class PurchaseInvoiceLine(BaseModel):
    id: str
    source_text: str = ""
    description: str = ""
    quantity: float = 0.0
    unit_type: UnitType = "other"
    unit_price: float = 0.0
    line_total: float = 0.0
    material_id: str | None = None
    confidence: float = Field(default=0.0, ge=0, le=1)
    needs_review: bool = True
    notes: str = ""


class InvoiceExtraction(BaseModel):
    provider: str
    model: str
    extracted_at: str
    pass_used: PassLabel = "pass1"
    raw_output: Any = None


class InvoiceReview(BaseModel):
    totals_mismatch_override: bool = False
    override_reason: str = ""


class PurchaseInvoice(BaseModel):
    id: str
    project_id: str
    attachment_id: str
    status: InvoiceStatus = "draft"
    vendor_name: str = ""
    invoice_number: str = ""
    invoice_date: str = ""
    currency: str = "CAD"
    totals: InvoiceTotals = Field(default_factory=InvoiceTotals)
    lines: list[PurchaseInvoiceLine] = Field(default_factory=list)
    extraction: InvoiceExtraction
    review: InvoiceReview = Field(default_factory=InvoiceReview)
    created_at: str
    updated_at: str
    confirmed_at: str | None = None


class PurchaseLedgerEntry(BaseModel):
    id: str
    project_id: str
    invoice_id: str
    invoice_line_id: str
    posted_at: str
    material_id: str
    quantity: float
    unit_type: UnitType
    unit_price: float
    line_total: float
    vendor_name: str
    invoice_date: str
    currency: str
    entry_type: Literal["purchase"] = "purchase"
    note: str = ""


# ---- request bodies ----

class ExtractInvoiceRequest(BaseModel):
    attachment_id: str
    provider: str | None = Field(default=None)
    model: str | None = Field(default=None)


class InvoiceLineInput(BaseModel):
    """Line as edited by the user; id and line_total are filled in when missing"""
    model_config = ConfigDict(allow_inf_nan=False)

    id: str | None = None
    source_text: str = ""
    description: str = ""
    quantity: float = Field(default=0.0, ge=0)
    unit_type: UnitType = "other"
    unit_price: float = Field(default=0.0, ge=0)
    line_total: float | None = None
    material_id: str | None = None
    confidence: float = Field(default=0.0, ge=0, le=1)
    needs_review: bool = True
    notes: str = ""


class UpdateInvoiceRequest(BaseModel):
    vendor_name: str
    invoice_number: str
    invoice_date: str
    currency: str
    totals: InvoiceTotals
    lines: list[InvoiceLineInput]
    review: InvoiceReview | None = None


class ConfirmInvoiceRequest(BaseModel):
    review: InvoiceReview = Field(default_factory=InvoiceReview)


class ReconciliationRequest(BaseModel):
    review: InvoiceReview | None = None


class InvoiceDraftUpdate(BaseModel):
    """Full replacement of a draft's editable fields, as applied by the repository"""
    vendor_name: str
    invoice_number: str
    invoice_date: str
    currency: str
    totals: InvoiceTotals
    lines: list[PurchaseInvoiceLine]
    review: InvoiceReview
    extraction: InvoiceExtraction | None = None  # set when the draft was re-extracted
