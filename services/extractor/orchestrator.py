"""Extraction orchestrator - per-file extraction and invoice classification.

Each attachment is extracted on its own and ends up as exactly one tagged
outcome. A failing file never stops its siblings.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

from services.extractor.documents import DocumentError
from services.extractor.llm import ExtractionError, ExtractionResult, OllamaInvoiceExtractor
from shared.events import ProgressEmitter
from shared.schemas import InvoiceData, InvoiceExtraction, InvoiceValidationError, validate_invoice_data

logger = logging.getLogger(__name__)

# Applies to batch processing and to the single-file preview alike
INVOICE_CONFIDENCE_THRESHOLD = 0.75

EXTRACTION_ERROR_REASONING = "Error occurred during extraction"


@dataclass(frozen=True)
class Attachment:
    url: str
    content_type: str
    name: Optional[str] = None
    size: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attachment":
        """Build from a chat message attachment (camelCase keys)."""
        return cls(
            url=data["url"],
            content_type=data.get("contentType") or data.get("content_type") or "",
            name=data.get("name"),
            size=data.get("size")
        )

    @property
    def label(self) -> str:
        return self.name or self.url[:60]


@dataclass(frozen=True)
class Accepted:
    attachment: Attachment
    data: InvoiceData
    confidence: float
    reasoning: str
    tokens_used: int = 0


@dataclass(frozen=True)
class RejectedNotInvoice:
    attachment: Attachment
    reasoning: str
    confidence: Optional[float] = None


@dataclass(frozen=True)
class RejectedDuplicate:
    attachment: Attachment
    existing_invoice_id: str


ExtractionOutcome = Union[Accepted, RejectedNotInvoice, RejectedDuplicate]


def is_accepted_invoice(extraction: InvoiceExtraction) -> bool:
    return extraction.is_invoice and extraction.confidence > INVOICE_CONFIDENCE_THRESHOLD


def classify(attachment: Attachment, result: ExtractionResult) -> ExtractionOutcome:
    """Turn a raw extraction into an accepted or rejected outcome."""
    extraction = result.extraction

    if not is_accepted_invoice(extraction):
        reasoning = extraction.reasoning or (
            f"The document was not recognized as an invoice "
            f"(confidence {extraction.confidence:.2f})."
        )
        logger.info(f"Rejected {attachment.label}: {reasoning}")
        return RejectedNotInvoice(attachment, reasoning, extraction.confidence)

    try:
        data = validate_invoice_data(extraction.data)
    except InvoiceValidationError as e:
        logger.warning(f"Extracted data for {attachment.label} is not a valid invoice: {e}")
        return RejectedNotInvoice(attachment, EXTRACTION_ERROR_REASONING, extraction.confidence)

    return Accepted(
        attachment=attachment,
        data=data,
        confidence=extraction.confidence,
        reasoning=extraction.reasoning,
        tokens_used=result.tokens_used
    )


class ExtractionOrchestrator:
    """Runs the extractor over a batch of attachments, one file at a time."""

    def __init__(self, extractor: Optional[OllamaInvoiceExtractor] = None):
        self.extractor = extractor or OllamaInvoiceExtractor()

    async def extract_one(self, attachment: Attachment, owner: Optional[str] = None) -> ExtractionOutcome:
        """Extract and classify one file. ``owner`` limits loading to that user's uploads."""
        try:
            result = await self.extractor.extract(
                attachment.url, attachment.content_type, attachment.name, owner=owner
            )
        except (ExtractionError, DocumentError) as e:
            logger.error(f"Error extracting {attachment.label}: {e}")
            return RejectedNotInvoice(attachment, EXTRACTION_ERROR_REASONING)
        except Exception as e:
            logger.error(f"Unexpected error extracting {attachment.label}: {e}", exc_info=True)
            return RejectedNotInvoice(attachment, EXTRACTION_ERROR_REASONING)
        return classify(attachment, result)

    async def extract_batch(self, attachments: List[Attachment], emitter: ProgressEmitter,
                            owner: Optional[str] = None) -> List[ExtractionOutcome]:
        emitter.processing_start()

        outcomes = []
        for attachment in attachments:
            outcomes.append(await self.extract_one(attachment, owner=owner))

        accepted = sum(1 for o in outcomes if isinstance(o, Accepted))
        emitter.extraction_complete(
            f"Invoice data extracted from {accepted} of {len(outcomes)} file(s).",
            accepted=accepted,
            total=len(outcomes)
        )
        return outcomes
