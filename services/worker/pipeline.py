"""Invoice pipeline - extraction followed by persistence for one batch of files."""
import asyncio
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from services.extractor.orchestrator import Attachment, ExtractionOrchestrator
from services.reconciler.coordinator import PersistenceCoordinator, PersistenceSummary
from shared.context import CallerContext
from shared.events import ProgressEmitter

logger = logging.getLogger(__name__)


async def process_invoice_batch(
    attachments: List[Attachment],
    db: Session,
    emitter: ProgressEmitter,
    caller: CallerContext,
    orchestrator: Optional[ExtractionOrchestrator] = None
) -> PersistenceSummary:
    """Extract every attachment, then save the accepted invoices.

    StorageError propagates to the caller after an ``error`` event.
    """
    orchestrator = orchestrator or ExtractionOrchestrator()
    logger.info(f"Processing {len(attachments)} attachment(s) for user {caller.user_id}")

    outcomes = await orchestrator.extract_batch(attachments, emitter, owner=caller.user_id)
    # Storage is synchronous SQLAlchemy; keep it off the event loop
    summary = await asyncio.to_thread(PersistenceCoordinator(db).persist, outcomes, emitter)

    logger.info(f"Batch for user {caller.user_id}: {summary.describe()}")
    return summary
