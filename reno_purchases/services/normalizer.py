"""
Normalization of extraction engine output.

The engine returns loosely shaped JSON: the invoice may be nested under
``invoice``, the lines may be called ``lines``, ``lineItems`` or ``items``,
numbers may arrive as strings with currency symbols, and any field may be
missing or of the wrong type. ``normalize_extracted`` is the only function that
reads that payload; everything downstream works with ``NormalizedInvoice``.

It never raises: every field that cannot be read falls back to its default.
"""

import math
import re
from typing import Any

from .invoice_types import UNIT_TYPES, ExtractedInvoiceLine, InvoiceTotals, NormalizedInvoice

DEFAULT_CURRENCY = "CAD"

_NON_NUMERIC = re.compile(r"[^0-9.\-]")

LINE_KEYS = ("lines", "lineItems", "items")


def as_number(value: Any) -> float:
    """Finite numbers pass through; strings are stripped to digits, '.' and '-'; anything else is 0."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    if isinstance(value, str) and value.strip():
        cleaned = _NON_NUMERIC.sub("", value)
        if not cleaned:
            return 0.0
        try:
            number = float(cleaned)
        except ValueError:
            return 0.0
        return number if math.isfinite(number) else 0.0
    return 0.0


def as_string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def coerce_unit(value: Any) -> str:
    unit = as_string(value).lower()
    return unit if unit in UNIT_TYPES else "other"


def _as_record(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def _first_present(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


def normalize_line(raw_line: Any) -> ExtractedInvoiceLine:
    line = _as_record(raw_line)
    quantity = as_number(line.get("quantity"))
    unit_price = as_number(line.get("unitPrice"))
    line_total_raw = as_number(line.get("lineTotal"))
    line_total = line_total_raw if line_total_raw > 0 else quantity * unit_price
    if not math.isfinite(line_total):
        line_total = 0.0
    confidence = max(0.0, min(1.0, as_number(line.get("confidence"))))
    needs_review = line.get("needsReview")

    return ExtractedInvoiceLine(
        source_text=as_string(line.get("sourceText")),
        description=as_string(line.get("description")),
        quantity=quantity,
        unit_type=coerce_unit(line.get("unitType")),
        unit_price=unit_price,
        line_total=line_total,
        confidence=confidence,
        needs_review=needs_review if isinstance(needs_review, bool) else True,
        notes=as_string(line.get("notes")),
    )


def normalize_extracted(payload: Any) -> NormalizedInvoice:
    root = _as_record(payload)
    nested = _as_record(root.get("invoice"))

    totals = _as_record(_first_present(root.get("totals"), nested.get("totals")))
    lines_candidate = _first_present(
        *(root.get(key) for key in LINE_KEYS),
        *(nested.get(key) for key in LINE_KEYS),
    )
    raw_lines = lines_candidate if isinstance(lines_candidate, list) else []

    return NormalizedInvoice(
        vendor_name=as_string(root.get("vendorName") or nested.get("vendorName")),
        invoice_number=as_string(root.get("invoiceNumber") or nested.get("invoiceNumber")),
        invoice_date=as_string(root.get("invoiceDate") or nested.get("invoiceDate")),
        currency=as_string(root.get("currency") or nested.get("currency")) or DEFAULT_CURRENCY,
        totals=InvoiceTotals(
            sub_total=as_number(totals.get("subTotal")),
            tax=as_number(totals.get("tax")),
            shipping=as_number(totals.get("shipping")),
            other_fees=as_number(totals.get("otherFees")),
            grand_total=as_number(totals.get("grandTotal")),
        ),
        lines=[normalize_line(raw_line) for raw_line in raw_lines],
        raw_output=payload,
    )


def summarize_payload(payload: Any) -> dict:
    """Key and line-array counts of a raw payload, for extractor audit logs."""
    root = _as_record(payload)
    nested = _as_record(root.get("invoice"))
    counts = {key: len(root[key]) if isinstance(root.get(key), list) else 0 for key in LINE_KEYS}
    counts.update(
        {
            f"invoice.{key}": len(nested[key]) if isinstance(nested.get(key), list) else 0
            for key in LINE_KEYS
        }
    )
    return {"keys": sorted(str(key) for key in root), "line_counts": counts}
