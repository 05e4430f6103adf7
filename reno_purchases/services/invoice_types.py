from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field

UnitType = Literal[
    "linear_ft",
    "sqft",
    "sqm",
    "piece",
    "bundle",
    "box",
    "roll",
    "sheet",
    "bag",
    "gallon",
    "liter",
    "kg",
    "lb",
    "meter",
    "other",
]

UNIT_TYPES: tuple[str, ...] = get_args(UnitType)

PassLabel = Literal["pass1", "pass2"]


class InvoiceTotals(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    sub_total: float = 0.0
    tax: float = 0.0
    shipping: float = 0.0
    other_fees: float = 0.0
    grand_total: float = 0.0


class ExtractedInvoiceLine(BaseModel):
    source_text: str = ""
    description: str = ""
    quantity: float = 0.0
    unit_type: UnitType = "other"
    unit_price: float = 0.0
    line_total: float = 0.0
    confidence: float = 0.0
    needs_review: bool = True
    notes: str = ""


class NormalizedInvoice(BaseModel):
    """Engine output after normalization, before pass/model bookkeeping."""
    vendor_name: str = ""
    invoice_number: str = ""
    invoice_date: str = ""  # ISO date read from the document, "" when absent
    currency: str = "CAD"
    totals: InvoiceTotals = Field(default_factory=InvoiceTotals)
    lines: list[ExtractedInvoiceLine] = Field(default_factory=list)
    raw_output: Any = None  # unvalidated engine payload, audit only


class ExtractedInvoice(NormalizedInvoice):
    pass_used: PassLabel = "pass1"
    model_used: str = ""

    @property
    def line_sum(self) -> float:
        return sum(line.line_total for line in self.lines)
