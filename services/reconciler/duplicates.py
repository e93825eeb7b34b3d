"""Duplicate detection - exact match of vendor, invoice number and amount."""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from services.storage.gateway import InvoiceStore
from shared.models import Invoice

logger = logging.getLogger(__name__)


class DuplicateDetector:
    """Looks up an already stored invoice with the same identifying triple.

    Strings compare case-sensitively and amounts compare exactly; there is
    no fuzzy matching.
    """

    def __init__(self, db: Session, store: Optional[InvoiceStore] = None):
        self.store = store or InvoiceStore(db)

    def find(self, vendor_name: str, invoice_number: str, amount: Decimal) -> Optional[Invoice]:
        existing = self.store.find_duplicate(vendor_name, invoice_number, Decimal(str(amount)))
        if existing:
            logger.info(
                f"Duplicate of invoice {existing.id}: {vendor_name} #{invoice_number} ({amount})"
            )
        return existing
