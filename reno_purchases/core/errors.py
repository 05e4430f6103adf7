"""
Exceptions raised by the purchase invoice pipeline.

Each class carries the HTTP status the API layer answers with, so routers
never have to translate them one by one.
"""


class PurchasePipelineError(Exception):
    status_code: int = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(PurchasePipelineError):
    status_code = 404


class InvoiceValidationError(PurchasePipelineError):
    status_code = 422


class InvoiceStateError(PurchasePipelineError):
    """Operation not allowed for the invoice's current status (e.g. confirmed)."""
    status_code = 409


class ExtractionError(PurchasePipelineError):
    """Extraction call failed; nothing was created or changed."""
    status_code = 502


class ExtractionEngineError(ExtractionError):
    """Non-success response from the extraction engine."""

    def __init__(self, status: int, body: str):
        self.status = status
        self.body = body[:400]
        super().__init__(f"OpenAI extraction failed ({status}): {self.body}")


class ReconciliationError(PurchasePipelineError):
    status_code = 409


class TotalsMismatchError(ReconciliationError):
    pass


class OverrideReasonRequiredError(ReconciliationError):
    pass


class MissingMaterialError(ReconciliationError):
    pass
