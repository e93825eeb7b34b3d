"""Structured invoice extraction with Ollama."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import ollama
from pydantic import ValidationError

from services.extractor.documents import load_document
from shared import settings
from shared.schemas import InvoiceExtraction, extraction_json_schema

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert at extracting structured data from invoices.
Extract all relevant information from the provided invoice document.
Be precise and thorough in extracting customer name, vendor details, invoice numbers, dates, and line items.

Critically assess if the document is actually an invoice. Provide a confidence score
between 0 and 1 about how certain you are about your extraction and assessment.
A genuine invoice typically contains: an invoice number, vendor information, customer details,
itemized charges, total amount, and date information.

Dates must be formatted as YYYY-MM-DD. Return ONLY the JSON object."""


class ExtractionError(Exception):
    """The extraction call failed or returned unusable output."""


@dataclass
class ExtractionResult:
    extraction: InvoiceExtraction
    tokens_used: int

    @property
    def tokens_cost(self) -> float:
        return self.tokens_used * settings.token_cost_per_token


def build_user_prompt(content_type: str, name: Optional[str], text: str) -> str:
    prompt = (
        f"Please analyze this document and extract all structured information if it is an invoice.\n"
        f"The file {name or 'attachment'} is provided in {content_type} format. "
        f"If it's not an invoice, explain why."
    )
    if text:
        prompt += f"\n\nDocument text:\n{text}"
    return prompt


class OllamaInvoiceExtractor:
    """One structured-output chat call per document."""

    def __init__(self, client: Optional[ollama.AsyncClient] = None, model: Optional[str] = None):
        self.client = client or ollama.AsyncClient(host=settings.ollama_base_url)
        self.model = model or settings.ollama_extraction_model

    async def extract(self, url: str, content_type: str, name: Optional[str] = None,
                      owner: Optional[str] = None) -> ExtractionResult:
        document = await asyncio.to_thread(load_document, url, content_type, owner)

        user_message = {
            "role": "user",
            "content": build_user_prompt(content_type, name, document.text),
        }
        if document.images:
            user_message["images"] = document.images

        try:
            response = await self.client.chat(
                model=self.model,
                messages=[{"role": "system", "content": SYSTEM_PROMPT}, user_message],
                format=extraction_json_schema(),
                options={"temperature": 0}
            )
        except Exception as e:
            raise ExtractionError(f"Extraction call failed: {e}") from e

        content = response["message"]["content"] or ""
        logger.info(f"Ollama extraction response for {name or url[:40]}: {content[:200]}...")

        try:
            extraction = InvoiceExtraction.model_validate_json(content)
        except ValidationError as e:
            raise ExtractionError(f"Malformed extraction output: {e}") from e

        tokens_used = (response.get("prompt_eval_count") or 0) + (response.get("eval_count") or 0)
        return ExtractionResult(extraction=extraction, tokens_used=tokens_used)
