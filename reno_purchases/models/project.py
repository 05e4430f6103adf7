from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ..services.invoice_types import UnitType
from .invoice import PurchaseInvoice, PurchaseLedgerEntry

AttachmentCategory = Literal["drawing", "invoice", "permit", "photo", "other"]
AttachmentScope = Literal["project", "section", "item", "expense"]

DEFAULT_MATERIAL_CATEGORY_ID = "uncategorized"


class Attachment(BaseModel):
    id: str
    project_id: str
    scope_type: AttachmentScope = "project"
    scope_id: str | None = None
    category: AttachmentCategory = "other"
    file_title: str | None = None
    original_name: str
    mime_type: str
    size_bytes: int = 0
    storage_key: str
    uploaded_at: str
    note: str | None = None


class MaterialCatalogItem(BaseModel):
    id: str
    name: str
    unit_type: UnitType = "other"
    estimated_price: float = 0.0
    category_id: str = DEFAULT_MATERIAL_CATEGORY_ID
    notes: str = ""


class Project(BaseModel):
    """
    Project document as stored by the repository.

    Only the parts the purchase pipeline touches are modelled; any other keys
    (sections, items, notes, ...) are carried through untouched.
    """
    model_config = ConfigDict(extra="allow")

    id: str
    name: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    material_catalog: list[MaterialCatalogItem] = Field(default_factory=list)
    purchase_invoices: list[PurchaseInvoice] = Field(default_factory=list)
    purchase_ledger: list[PurchaseLedgerEntry] = Field(default_factory=list)

    def find_invoice(self, invoice_id: str) -> PurchaseInvoice | None:
        return next((i for i in self.purchase_invoices if i.id == invoice_id), None)

    def find_attachment(self, attachment_id: str) -> Attachment | None:
        return next((a for a in self.attachments if a.id == attachment_id), None)

    def material_ids(self) -> set[str]:
        return {material.id for material in self.material_catalog}


class CreateProjectRequest(BaseModel):
    id: str | None = None
    name: str


class AddMaterialRequest(BaseModel):
    id: str | None = None
    name: str
    unit_type: UnitType = "other"
    estimated_price: float = Field(default=0.0, ge=0)
    category_id: str = DEFAULT_MATERIAL_CATEGORY_ID
    notes: str = ""
