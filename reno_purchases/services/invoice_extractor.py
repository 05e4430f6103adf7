"""
Invoice extraction with a vision-capable LLM.

One or two passes per call:

- pass1 runs the fast model with a strict-JSON prompt;
- pass2 runs the thorough model with a prompt that forbids summarizing, either
  because pass1 collapsed the invoice into a single summary line (see
  ``should_run_second_pass``) or because the caller forced it.

Without an API key the ``FallbackInvoiceExtractor`` is used so drafts can
still be created and filled in by hand.
"""

import base64
import json
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel

from ..core.config import Settings
from ..core.errors import ExtractionEngineError, ExtractionError, InvoiceValidationError
from ..core.logging import INVOICE_EXTRACTOR_CHANNEL
from .invoice_types import ExtractedInvoice, ExtractedInvoiceLine, InvoiceTotals, PassLabel
from .normalizer import normalize_extracted, summarize_payload

COVERAGE_THRESHOLD = 0.7

SYSTEM_PROMPT = (
    "You are a high-precision invoice extraction engine. "
    "Return strict JSON only (no markdown, no extra text)."
)

SCHEMA_HINT = {
    "vendorName": "string",
    "invoiceNumber": "string",
    "invoiceDate": "YYYY-MM-DD string",
    "currency": "ISO string like CAD",
    "totals": {
        "subTotal": "number",
        "tax": "number",
        "shipping": "number",
        "otherFees": "number",
        "grandTotal": "number",
    },
    "lines": [
        {
            "sourceText": "string",
            "description": "string",
            "quantity": "number",
            "unitType": "linear_ft|sqft|sqm|piece|bundle|box|roll|sheet|bag|gallon|liter|kg|lb|meter|other",
            "unitPrice": "number",
            "lineTotal": "number",
            "confidence": "number 0..1",
            "needsReview": "boolean",
            "notes": "string",
        }
    ],
}

COMMON_INSTRUCTIONS = [
    "Return every visible line item, including zero-tax lines and discount-like lines if they are product/service lines.",
    "Do not collapse multiple SKU lines into one summary line.",
    "If quantity or unit price is uncertain, infer from nearby text and set needsReview=true.",
    "Make best effort to include all purchasable lines.",
    "Return only JSON matching this shape:",
]

FIRST_PASS_PROMPT = " ".join([
    "Extract vendor, invoice number, invoice date, currency, totals, and all line items from this invoice image.",
    "Invoice date must come from the document; never infer from current date.",
    "Capture line items at receipt-line granularity.",
    "Where possible, ensure the sum of lineTotal values approximately matches subtotal;",
    "if not possible, still include all visible lines and flag uncertain ones with needsReview=true.",
])

SECOND_PASS_PROMPT = " ".join([
    "Re-extract this invoice with focus on complete line-item recovery.",
    "Do not return a summarized list; return every purchasable line item visible on the invoice.",
    "Preserve line-level quantity, unit price, and total when visible.",
    "If a value is unclear, keep the line with best estimate and set needsReview=true with a note.",
    "Invoice date must be read strictly from the document.",
])

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")

debug_logger = logger.bind(channel=INVOICE_EXTRACTOR_CHANNEL)


class ExtractorConfig(BaseModel):
    """Explicit extractor configuration (built from Settings, or directly in tests)"""
    provider: str = "openai"
    api_key: str | None = None
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-5-nano"
    second_pass_model: str = "gpt-5-mini"
    timeout: float = 120.0
    debug: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "ExtractorConfig":
        return cls(
            provider=(settings.invoice_llm_provider or "openai").strip().lower(),
            api_key=(settings.openai_api_key or "").strip() or None,
            base_url=settings.openai_base_url,
            model=(settings.invoice_llm_model or "").strip() or "gpt-5-nano",
            second_pass_model=(settings.invoice_llm_second_pass_model or "").strip() or "gpt-5-mini",
            timeout=settings.invoice_llm_timeout,
            debug=settings.invoice_debug,
        )


class InvoiceExtractionInput(BaseModel):
    file_bytes: bytes
    mime_type: str
    file_name: str
    model: str | None = None
    force_second_pass: bool = False


# ========== POLICY ==========

def compute_coverage(sub_total: float, line_sum: float) -> float:
    """Share of the declared subtotal explained by line totals (1.0 when no subtotal)."""
    return line_sum / sub_total if sub_total > 0 else 1.0


def should_run_second_pass(line_count: int, sub_total: float, line_sum: float) -> bool:
    """
    Decide whether pass1 under-itemized the invoice.

    Targets the case where the model returned a single summary line that
    explains less than 70% of the subtotal.
    """
    coverage = compute_coverage(sub_total, line_sum)
    return line_count <= 1 and sub_total > 0 and coverage < COVERAGE_THRESHOLD


def select_pass(first_pass: ExtractedInvoice, second_pass: ExtractedInvoice) -> ExtractedInvoice:
    """Keep pass2 only when it found strictly more lines."""
    if len(second_pass.lines) > len(first_pass.lines):
        return second_pass
    return first_pass


# ========== ENGINE ==========

def to_data_url(file_bytes: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(file_bytes).decode('ascii')}"


def parse_model_json(text: str) -> Any:
    """Parse the engine's text as JSON, falling back to the outermost {...} block."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        match = _JSON_BLOCK.search(text)
        if not match:
            raise ExtractionError("OpenAI response did not contain valid JSON.")
        try:
            return json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ExtractionError(f"OpenAI response did not contain valid JSON: {e}")


def collect_output_text(payload: Any) -> str:
    """Join ``output_text`` and every text block of a Responses API payload."""
    if not isinstance(payload, dict):
        return ""
    candidates = []
    output_text = payload.get("output_text")
    if isinstance(output_text, str) and output_text.strip():
        candidates.append(output_text)
    output = payload.get("output")
    if isinstance(output, list):
        for item in output:
            content = item.get("content") if isinstance(item, dict) else None
            if not isinstance(content, list):
                continue
            for block in content:
                if not isinstance(block, dict):
                    continue
                text = block.get("text")
                if text is None:
                    text = block.get("output_text")
                if isinstance(text, str) and text.strip() and text not in candidates:
                    candidates.append(text)
    return "\n".join(candidates).strip()


class ExtractionEngine(ABC):
    """Black-box vision model: image + prompt in, raw text (hopefully JSON) out."""

    @abstractmethod
    async def complete(self, image_url: str, model: str, prompt: str) -> str:
        pass


class OpenAIResponsesEngine(ExtractionEngine):
    """Calls the OpenAI Responses API with an inline base64 image."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 120.0,
        debug: bool = False,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.debug = debug

    def build_request(self, image_url: str, model: str, prompt: str) -> dict:
        return {
            "model": model,
            "input": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "input_text",
                            "text": "\n".join([prompt, *COMMON_INSTRUCTIONS, json.dumps(SCHEMA_HINT)]),
                        },
                        {"type": "input_image", "image_url": image_url},
                    ],
                },
            ],
        }

    async def complete(self, image_url: str, model: str, prompt: str) -> str:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(
                    f"{self.base_url}/responses",
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    json=self.build_request(image_url, model, prompt),
                )
        except httpx.HTTPError as e:
            raise ExtractionError(f"OpenAI request failed: {e}")

        if r.status_code < 200 or r.status_code >= 300:
            raise ExtractionEngineError(r.status_code, r.text)

        try:
            payload = r.json()
        except ValueError:
            raise ExtractionError("OpenAI response body was not JSON.")

        text = collect_output_text(payload)
        if not text:
            if self.debug:
                debug_logger.debug(f"[invoice-extractor] openai raw payload (no output_text): {r.text[:8000]}")
            raise ExtractionError("OpenAI response did not include text output.")
        return text


# ========== EXTRACTORS ==========

class InvoiceExtractor(ABC):
    provider_name: str = ""

    @abstractmethod
    async def extract(self, request: InvoiceExtractionInput) -> ExtractedInvoice:
        pass


class FallbackInvoiceExtractor(InvoiceExtractor):
    """Used when no LLM is configured: one placeholder line, everything flagged for review."""
    provider_name = "fallback"

    def __init__(self, debug: bool = False):
        self.debug = debug

    async def extract(self, request: InvoiceExtractionInput) -> ExtractedInvoice:
        if self.debug:
            debug_logger.debug(
                f"[invoice-extractor] provider=fallback mime={request.mime_type} file={request.file_name}"
            )
        return ExtractedInvoice(
            vendor_name="",
            invoice_number=request.file_name,
            invoice_date="",
            currency="CAD",
            totals=InvoiceTotals(),
            lines=[
                ExtractedInvoiceLine(
                    source_text=request.file_name,
                    needs_review=True,
                    notes="No extractor configured; manual review required.",
                )
            ],
            pass_used="pass1",
            model_used="fallback",
            raw_output={"provider": "fallback", "reason": "LLM extractor unavailable"},
        )


class OpenAIInvoiceExtractor(InvoiceExtractor):
    provider_name = "openai"

    def __init__(self, config: ExtractorConfig, engine: ExtractionEngine | None = None):
        self.config = config
        self.engine = engine or OpenAIResponsesEngine(
            api_key=config.api_key or "",
            base_url=config.base_url,
            timeout=config.timeout,
            debug=config.debug,
        )

    def _debug(self, message: str) -> None:
        if self.config.debug:
            debug_logger.debug(message)

    async def run_pass(self, image_url: str, model: str, prompt: str, pass_label: PassLabel) -> ExtractedInvoice:
        text = await self.engine.complete(image_url=image_url, model=model, prompt=prompt)
        self._debug(f"[invoice-extractor] {pass_label} openai output_text: {text[:8000]}")

        parsed = parse_model_json(text)
        if self.config.debug:
            self._debug(f"[invoice-extractor] {pass_label} openai raw parsed: {json.dumps(parsed)[:8000]}")
            summary = summarize_payload(parsed)
            self._debug(
                f"[invoice-extractor] {pass_label} parsed keys={','.join(summary['keys'])} "
                f"line_counts={json.dumps(summary['line_counts'])}"
            )

        normalized = normalize_extracted(parsed)
        self._debug(
            f"[invoice-extractor] {pass_label} normalized summary vendor=\"{normalized.vendor_name}\" "
            f"invoice=\"{normalized.invoice_number}\" date=\"{normalized.invoice_date}\" "
            f"lines={len(normalized.lines)} totals={normalized.totals.model_dump_json()}"
        )
        return ExtractedInvoice(**normalized.model_dump(), pass_used=pass_label, model_used=model)

    async def extract(self, request: InvoiceExtractionInput) -> ExtractedInvoice:
        first_pass_model = request.model or self.config.model
        self._debug(
            f"[invoice-extractor] provider=openai model={first_pass_model} "
            f"second_pass_model={self.config.second_pass_model} mime={request.mime_type} file={request.file_name}"
        )
        if not request.mime_type.startswith("image/"):
            raise InvoiceValidationError("OpenAI invoice extraction currently supports image files only.")

        image_url = to_data_url(request.file_bytes, request.mime_type)

        if request.force_second_pass:
            self._debug("[invoice-extractor] forceSecondPass=true, skipping pass1")
            return await self.run_pass(image_url, self.config.second_pass_model, SECOND_PASS_PROMPT, "pass2")

        first_pass = await self.run_pass(image_url, first_pass_model, FIRST_PASS_PROMPT, "pass1")

        sub_total = first_pass.totals.sub_total
        line_sum = first_pass.line_sum
        if not should_run_second_pass(len(first_pass.lines), sub_total, line_sum):
            return first_pass

        self._debug(
            f"[invoice-extractor] triggering second pass lines={len(first_pass.lines)} subtotal={sub_total} "
            f"line_sum={line_sum} coverage={compute_coverage(sub_total, line_sum):.3f}"
        )
        second_pass = await self.run_pass(image_url, self.config.second_pass_model, SECOND_PASS_PROMPT, "pass2")

        chosen = select_pass(first_pass, second_pass)
        self._debug(
            f"[invoice-extractor] pass comparison pass1_lines={len(first_pass.lines)} "
            f"pass2_lines={len(second_pass.lines)} selected={chosen.pass_used}"
        )
        logger.info(
            "Invoice second pass completed",
            pass1_lines=len(first_pass.lines),
            pass2_lines=len(second_pass.lines),
            selected=chosen.pass_used,
        )
        return chosen


def build_invoice_extractor(config: ExtractorConfig, engine: ExtractionEngine | None = None) -> InvoiceExtractor:
    """
    Pick the extractor for a configuration.

    Only the openai provider is supported; any other provider, or a missing
    API key, yields the fallback extractor instead of an error.
    """
    if config.debug:
        debug_logger.debug(
            f"[invoice-extractor] configured provider={config.provider} key_present={bool(config.api_key)} "
            f"model={config.model} second_pass_model={config.second_pass_model}"
        )
    if config.provider == "openai" and config.api_key:
        return OpenAIInvoiceExtractor(config, engine=engine)

    logger.warning(
        "Invoice LLM extractor not configured - using fallback extractor. "
        "Set OPENAI_API_KEY to enable extraction.",
        provider=config.provider,
    )
    return FallbackInvoiceExtractor(debug=config.debug)
