"""Persistence coordinator - duplicate check and save for accepted invoices."""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from services.extractor.orchestrator import (
    Accepted, Attachment, ExtractionOutcome, RejectedDuplicate, RejectedNotInvoice
)
from services.reconciler.duplicates import DuplicateDetector
from services.storage.gateway import InvoiceStore, StorageError
from shared import settings
from shared.events import ProgressEmitter
from shared.schemas import InvoiceData

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SavedInvoice:
    attachment: Attachment
    invoice_id: str
    data: InvoiceData
    tokens_used: int = 0


@dataclass
class PersistenceSummary:
    saved: List[SavedInvoice] = field(default_factory=list)
    duplicates: List[RejectedDuplicate] = field(default_factory=list)
    rejected: List[RejectedNotInvoice] = field(default_factory=list)

    def describe(self) -> str:
        return (
            f"Saved {len(self.saved)} invoice(s), "
            f"skipped {len(self.duplicates)} duplicate(s), "
            f"rejected {len(self.rejected)} file(s)."
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "saved": [
                {
                    "id": s.invoice_id,
                    "fileName": s.attachment.name,
                    "vendorName": s.data.vendor_name,
                    "invoiceNumber": s.data.invoice_number,
                    "amount": float(s.data.amount),
                    "currency": s.data.currency,
                }
                for s in self.saved
            ],
            "duplicates": [
                {"fileName": d.attachment.name, "existingInvoiceId": d.existing_invoice_id}
                for d in self.duplicates
            ],
            "rejected": [
                {"fileName": r.attachment.name, "reasoning": r.reasoning}
                for r in self.rejected
            ],
        }


def _stored_file_path(attachment: Attachment) -> Optional[str]:
    # Inline data URLs are not worth keeping as a reference
    if attachment.url.startswith("data:"):
        return None
    return attachment.url


class PersistenceCoordinator:
    """Routes extraction outcomes into saved / duplicate / rejected buckets."""

    def __init__(self, db: Session, store: Optional[InvoiceStore] = None,
                 detector: Optional[DuplicateDetector] = None):
        self.store = store or InvoiceStore(db)
        self.detector = detector or DuplicateDetector(db, self.store)

    def _save(self, outcome: Accepted) -> SavedInvoice:
        attachment = outcome.attachment
        invoice = self.store.create_invoice_with_line_items(
            outcome.data,
            file_path=_stored_file_path(attachment),
            file_type=attachment.content_type or None,
            file_size=attachment.size,
            tokens_used=outcome.tokens_used,
            tokens_cost=outcome.tokens_used * settings.token_cost_per_token
        )
        logger.info(
            f"Saved invoice {invoice.id} ({outcome.data.vendor_name} #{outcome.data.invoice_number}) "
            f"with {len(outcome.data.line_items)} line item(s)"
        )
        return SavedInvoice(attachment, invoice.id, outcome.data, outcome.tokens_used)

    def persist(self, outcomes: List[ExtractionOutcome], emitter: ProgressEmitter) -> PersistenceSummary:
        """Save every accepted, non-duplicate outcome in order.

        Raises StorageError on the first storage failure; the remaining
        outcomes are not processed.
        """
        summary = PersistenceSummary(
            rejected=[o for o in outcomes if isinstance(o, RejectedNotInvoice)],
            duplicates=[o for o in outcomes if isinstance(o, RejectedDuplicate)]
        )
        accepted = [o for o in outcomes if isinstance(o, Accepted)]

        emitter.saving_start()
        try:
            for outcome in accepted:
                data = outcome.data
                existing = self.detector.find(data.vendor_name, data.invoice_number, data.amount)
                if existing:
                    summary.duplicates.append(RejectedDuplicate(outcome.attachment, existing.id))
                    continue
                summary.saved.append(self._save(outcome))
        except StorageError as e:
            logger.error(f"Error saving invoice data: {e}")
            emitter.error("Error saving invoice data.")
            raise

        if summary.duplicates:
            emitter.warning(
                f"Possible duplicate invoice detected ({len(summary.duplicates)}).",
                duplicateIds=[d.existing_invoice_id for d in summary.duplicates]
            )

        emitter.saving_complete(
            summary.describe(),
            saved=len(summary.saved),
            duplicates=len(summary.duplicates),
            rejected=len(summary.rejected)
        )
        return summary
