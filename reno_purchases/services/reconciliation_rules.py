"""
Business rules for confirming (posting) a draft purchase invoice.

Centralizes the reconciliation checks so they can be previewed by the UI
(``evaluate``) and enforced at confirm time (``enforce``) with the same logic.
"""

import math
from typing import Any, Dict, Iterable

from loguru import logger
from pydantic import BaseModel

from ..core.errors import (
    InvoiceValidationError,
    MissingMaterialError,
    OverrideReasonRequiredError,
    TotalsMismatchError,
)
from ..models.invoice import InvoiceReview, PurchaseInvoice, PurchaseInvoiceLine

MISMATCH_TOLERANCE = 0.01


def compute_line_subtotal(lines: Iterable[PurchaseInvoiceLine]) -> float:
    """Sum of quantity x unit price (stored line totals are not trusted here)"""
    return sum(line.quantity * line.unit_price for line in lines)


def is_totals_mismatch(line_subtotal: float, sub_total: float, tolerance: float = MISMATCH_TOLERANCE) -> bool:
    if not (math.isfinite(line_subtotal) and math.isfinite(sub_total)):
        return True
    # Rounded so that a difference of exactly one cent is not tipped over by float noise
    return round(abs(line_subtotal - sub_total), 6) > tolerance


class ConfirmationDecision(BaseModel):
    """Result of a confirmation check with explanation"""
    approved: bool
    reason: str
    checks: Dict[str, bool]
    failures: Dict[str, str] = {}
    metadata: Dict[str, Any] = {}


class InvoiceConfirmationRules:
    """
    Reconciliation rules applied before an invoice is posted to the ledger.

    Checks (enforced in this order):
    1. has_lines: there is something to post
    2. override_reason_provided: an override always carries a reason
    3. totals_reconciled: line subtotal within tolerance of the declared subtotal,
       unless the mismatch is overridden
    4. materials_linked: every line points at an existing catalog material
       (all-or-nothing, no partial posting)
    """

    ERRORS = (
        ("has_lines", InvoiceValidationError),
        ("override_reason_provided", OverrideReasonRequiredError),
        ("totals_reconciled", TotalsMismatchError),
        ("materials_linked", MissingMaterialError),
    )

    def __init__(self, tolerance: float = MISMATCH_TOLERANCE):
        self.tolerance = tolerance

    def evaluate(
        self,
        invoice: PurchaseInvoice,
        review: InvoiceReview,
        material_ids: set[str],
    ) -> ConfirmationDecision:
        """
        Evaluate whether an invoice can be confirmed with the given review.

        Args:
            invoice: Draft invoice to check
            review: Review state submitted with the confirmation
            material_ids: Ids present in the project's material catalog

        Returns:
            ConfirmationDecision with approved flag, reason, and check details
        """
        checks = {}
        failures = {}

        # Check 1: something to post
        checks["has_lines"] = len(invoice.lines) > 0
        if not checks["has_lines"]:
            failures["has_lines"] = "Invoice has no lines to post."

        # Check 2: override needs a reason
        override = review.totals_mismatch_override
        checks["override_reason_provided"] = not override or bool(review.override_reason.strip())
        if not checks["override_reason_provided"]:
            failures["override_reason_provided"] = "A totals mismatch override requires an override reason."

        # Check 3: totals reconcile (or mismatch is overridden)
        line_subtotal = compute_line_subtotal(invoice.lines)
        sub_total = invoice.totals.sub_total
        mismatch = is_totals_mismatch(line_subtotal, sub_total, self.tolerance)
        checks["totals_reconciled"] = not mismatch or override
        if not checks["totals_reconciled"]:
            failures["totals_reconciled"] = (
                f"Line subtotal {line_subtotal:.2f} does not match invoice subtotal {sub_total:.2f} "
                f"(difference {line_subtotal - sub_total:+.2f}). Correct the lines or totals, "
                "or confirm with a totals mismatch override and a reason."
            )

        # Check 4: every line linked to the catalog
        missing = []
        unknown = []
        for position, line in enumerate(invoice.lines, start=1):
            material_id = (line.material_id or "").strip()
            if not material_id:
                missing.append(position)
            elif material_id not in material_ids:
                unknown.append(position)
        checks["materials_linked"] = not missing and not unknown
        if not checks["materials_linked"]:
            parts = []
            if missing:
                parts.append("lines without a material: " + ", ".join(str(p) for p in missing))
            if unknown:
                parts.append("lines with an unknown material: " + ", ".join(str(p) for p in unknown))
            failures["materials_linked"] = (
                "Every line must be linked to a material catalog entry before confirming ("
                + "; ".join(parts) + ")."
            )

        approved = all(checks.values())
        if approved:
            reason = f"Ready to post {len(invoice.lines)} line(s)"
            if mismatch:
                reason += f" with totals override: {review.override_reason.strip()}"
        else:
            reason = "Cannot confirm: " + " ".join(
                failures[name] for name, _ in self.ERRORS if name in failures
            )

        logger.debug(
            "Invoice confirmation check",
            invoice_id=invoice.id,
            approved=approved,
            checks=checks,
        )

        return ConfirmationDecision(
            approved=approved,
            reason=reason,
            checks=checks,
            failures=failures,
            metadata={
                "line_subtotal": line_subtotal,
                "sub_total": sub_total,
                "totals_mismatch": mismatch,
                "tolerance": self.tolerance,
                "line_count": len(invoice.lines),
            },
        )

    def enforce(
        self,
        invoice: PurchaseInvoice,
        review: InvoiceReview,
        material_ids: set[str],
    ) -> ConfirmationDecision:
        """Evaluate and raise the error of the first failing check"""
        decision = self.evaluate(invoice, review, material_ids)
        for name, error_class in self.ERRORS:
            if not decision.checks[name]:
                raise error_class(decision.failures[name])
        return decision
