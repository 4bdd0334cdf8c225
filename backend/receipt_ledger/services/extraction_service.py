"""Receipt extraction service.

This service turns a stored receipt image into a
``ReceiptProcessResult``. It builds a prompt from the caller's
categories, sends the image plus prompt to a vision-capable model,
pulls the first JSON object out of whatever text comes back and
normalises every expense so that downstream code can rely on the field
shapes (integer amounts, ISO dates, bounded confidence).

The model itself is an injectable ``VisionModel``: anything that takes
a base64 image, its MIME type and a prompt and returns raw text. The
default implementation talks to OpenAI's chat completions API. Tests
pass a fake so prompt building, JSON extraction and normalisation run
without network access.

Failures abort the whole call. Missing credentials raise
``ConfigError``, an unknown ``file_id`` raises ``NotFoundError``,
transport/model errors and timeouts raise ``ProcessingError`` and
unparsable output raises ``ParseError``. No partial result is ever
returned. Diagnostic logging of raw model output can be enabled by
setting ``EXTRACTION_DEBUG=1``.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from typing import Any, Iterable, Optional, Protocol

from openai import OpenAI

from receipt_ledger.core.config import settings
from receipt_ledger.core.errors import ConfigError, ProcessingError, ReceiptError
from receipt_ledger.core.observability import sentry_breadcrumb
from receipt_ledger.models.schemas import Category, ExtractedExpense, ReceiptProcessResult
from receipt_ledger.services.storage_service import ReceiptStore
from receipt_ledger.utils.helpers import clamp_confidence, clean_text, normalize_date, to_minor_units, today_iso
from receipt_ledger.utils.image_processing import prepare_for_model
from receipt_ledger.utils.json_extraction import extract_json_object
from receipt_ledger.utils.prompts import build_extraction_prompt


logger = logging.getLogger(__name__)

UNCATEGORIZED = "Uncategorized"
DEFAULT_CONFIDENCE = 0.5


class VisionModel(Protocol):
    """Given an image and a prompt, return the model's raw text answer."""

    def complete(self, image_b64: str, mime_type: str, prompt: str) -> str: ...


class OpenAIVisionModel:
    """``VisionModel`` backed by OpenAI chat completions."""

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.model = model or settings.OPENAI_MODEL
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        # Retries are left to the caller: a failed extraction is re-run as a whole
        self._client = OpenAI(
            api_key=api_key,
            timeout=timeout or settings.EXTRACTION_TIMEOUT_SECONDS,
            max_retries=0,
        )

    def complete(self, image_b64: str, mime_type: str, prompt: str) -> str:
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{mime_type};base64,{image_b64}"},
                        },
                    ],
                }
            ],
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ProcessingError("No response from the extraction model")
        return content


def _match_category(category_id: Optional[str], category_name: str, categories: list[Category]) -> Optional[str]:
    """Keep ``category_id`` only if it is one of ``categories``.

    An unknown id falls back to a case-insensitive name match; if that also
    fails the expense is left uncategorised.
    """
    if not categories:
        return category_id
    known_ids = {c.id for c in categories}
    if category_id and category_id in known_ids:
        return category_id
    wanted = category_name.casefold()
    for cat in categories:
        if cat.name.casefold() == wanted:
            return cat.id
    return None


def normalize_result(
    data: dict[str, Any],
    raw_response: Optional[str] = None,
    categories: Iterable[Category] = (),
) -> ReceiptProcessResult:
    """Fill defaults and coerce types on a parsed model answer."""
    categories = list(categories)
    merchant = clean_text(data.get("merchant")) or None
    receipt_date = normalize_date(data.get("date") or data.get("receiptDate"))
    fallback_date = receipt_date or today_iso()

    raw_expenses = data.get("expenses")
    if not isinstance(raw_expenses, list):
        raw_expenses = []

    expenses: list[ExtractedExpense] = []
    for item in raw_expenses:
        if not isinstance(item, dict):
            continue
        amount = to_minor_units(item.get("amount"))
        category_name = clean_text(item.get("categoryName")) or UNCATEGORIZED
        category_id = _match_category(clean_text(item.get("categoryId")) or None, category_name, categories)
        expenses.append(
            ExtractedExpense(
                amount=amount if amount is not None else 0,
                merchant=clean_text(item.get("merchant")) or merchant or "",
                date=normalize_date(item.get("date")) or fallback_date,
                category_id=category_id,
                category_name=category_name,
                note=clean_text(item.get("note")),
                confidence=clamp_confidence(item.get("confidence"), DEFAULT_CONFIDENCE),
            )
        )

    total = to_minor_units(data.get("totalAmount"))
    if total is None:
        total = sum(e.amount for e in expenses)

    return ReceiptProcessResult(
        expenses=expenses,
        total_amount=total,
        receipt_date=receipt_date,
        merchant=merchant,
        confidence=clamp_confidence(data.get("confidence"), DEFAULT_CONFIDENCE),
        raw_response=raw_response,
    )


class ExtractionService:
    """Service responsible for extracting structured expenses from receipts."""

    def __init__(
        self,
        store: ReceiptStore,
        model: Optional[VisionModel] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.store = store
        self._model = model
        self.timeout = timeout or settings.EXTRACTION_TIMEOUT_SECONDS
        self.debug = bool(settings.EXTRACTION_DEBUG)

    @property
    def available(self) -> bool:
        return self._model is not None or bool(settings.OPENAI_API_KEY)

    def _resolve_model(self) -> VisionModel:
        if self._model is not None:
            return self._model
        if not settings.OPENAI_API_KEY:
            raise ConfigError("OpenAI API key not configured. Set the OPENAI_API_KEY environment variable.")
        self._model = OpenAIVisionModel(api_key=settings.OPENAI_API_KEY)
        return self._model

    async def process(self, file_id: str, categories: Iterable[Category]) -> ReceiptProcessResult:
        """Extract expenses from the stored receipt ``file_id``."""
        model = self._resolve_model()
        # Store access may be a network round trip (MinIO); keep it off the event loop
        stored = await asyncio.to_thread(self.store.locate, file_id)
        data = await asyncio.to_thread(self.store.read, stored)
        logger.info("[extraction] processing file_id=%s bytes=%d", file_id, len(data))
        return await self.process_image(data, stored.mime_type, categories, model=model)

    async def process_image(
        self,
        image: bytes,
        mime_type: str,
        categories: Iterable[Category],
        model: Optional[VisionModel] = None,
    ) -> ReceiptProcessResult:
        model = model or self._resolve_model()
        categories = list(categories)
        if settings.RECEIPT_PREPROCESS_IMAGES:
            image, mime_type = await asyncio.to_thread(
                prepare_for_model, image, mime_type, settings.RECEIPT_MAX_IMAGE_EDGE
            )
        b64 = base64.b64encode(image).decode("utf-8")
        prompt = build_extraction_prompt(categories)
        if self.debug:
            logger.info("[extraction] categories=%d mime=%s timeout=%.0fs", len(categories), mime_type, self.timeout)

        # The call cannot be cancelled once issued; on timeout the worker thread is abandoned
        try:
            raw = await asyncio.wait_for(
                asyncio.to_thread(model.complete, b64, mime_type, prompt),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as exc:
            sentry_breadcrumb(category="extraction", message="extraction.timeout", level="warning")
            raise ProcessingError(f"Receipt processing timed out after {self.timeout:.0f}s") from exc
        except ReceiptError:
            raise
        except Exception as exc:
            sentry_breadcrumb(category="extraction", message="extraction.remote_failed", level="warning", data={"error": type(exc).__name__})
            raise ProcessingError(f"Receipt processing failed: {exc}") from exc

        if self.debug:
            logger.info("[extraction] raw response: %s", raw)
        data = extract_json_object(raw)
        result = normalize_result(data, raw_response=raw, categories=categories)
        logger.info("[extraction] extracted %d expense(s) total=%d", len(result.expenses), result.total_amount)
        return result
