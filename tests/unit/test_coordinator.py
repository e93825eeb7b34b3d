"""Unit tests for the persistence coordinator."""
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from services.extractor.orchestrator import Accepted, Attachment, RejectedNotInvoice
from services.reconciler.coordinator import PersistenceCoordinator
from services.storage.gateway import InvoiceStore, StorageError
from shared import settings
from shared.models import Invoice


def accepted(data, name="a.pdf", tokens=150):
    return Accepted(
        attachment=Attachment(url=f"s3://invoice-uploads/{name}", content_type="application/pdf", name=name, size=1024),
        data=data,
        confidence=0.9,
        reasoning="Looks like an invoice.",
        tokens_used=tokens
    )


class TestPersistenceCoordinator:

    def test_saves_invoice_with_line_items(self, db_session, emitter, sink, make_invoice_data):
        summary = PersistenceCoordinator(db_session).persist([accepted(make_invoice_data())], emitter)

        assert len(summary.saved) == 1
        invoice = InvoiceStore(db_session).get_invoice(summary.saved[0].invoice_id)
        assert invoice.amount == Decimal("150.00")
        assert invoice.file_path == "s3://invoice-uploads/a.pdf"
        assert invoice.file_size == 1024
        assert invoice.tokens_used == 150
        assert invoice.tokens_cost == pytest.approx(150 * settings.token_cost_per_token)
        assert len(InvoiceStore(db_session).list_line_items(invoice.id)) == 2
        assert sink.types == ["savingStart", "savingComplete"]

    def test_amount_is_saved_unchanged(self, db_session, emitter, make_invoice_data):
        # Total deliberately differs from the line item sum
        data = make_invoice_data(amount=Decimal("163.42"))

        summary = PersistenceCoordinator(db_session).persist([accepted(data)], emitter)

        assert InvoiceStore(db_session).get_invoice(summary.saved[0].invoice_id).amount == Decimal("163.42")

    def test_duplicates_are_not_saved(self, db_session, emitter, sink, sample_invoice, make_invoice_data):
        summary = PersistenceCoordinator(db_session).persist([accepted(make_invoice_data())], emitter)

        assert summary.saved == []
        assert summary.duplicates[0].existing_invoice_id == sample_invoice.id
        assert db_session.query(Invoice).count() == 1
        assert sink.types == ["savingStart", "warning", "savingComplete"]
        assert sink.events[1]["duplicateIds"] == [sample_invoice.id]

    def test_rejections_pass_through(self, db_session, emitter, sink):
        rejected = RejectedNotInvoice(Attachment("s3://b/menu.pdf", "application/pdf", "menu.pdf"), "A menu.")

        summary = PersistenceCoordinator(db_session).persist([rejected], emitter)

        assert summary.rejected == [rejected]
        assert summary.saved == [] and summary.duplicates == []
        assert sink.events[-1]["rejected"] == 1
        assert "rejected 1 file(s)" in sink.events[-1]["content"]

    def test_data_urls_are_not_kept_as_file_path(self, db_session, emitter, make_invoice_data):
        outcome = Accepted(Attachment("data:application/pdf;base64,JVBER", "application/pdf"),
                           make_invoice_data(), 0.9, "", 10)

        summary = PersistenceCoordinator(db_session).persist([outcome], emitter)

        assert InvoiceStore(db_session).get_invoice(summary.saved[0].invoice_id).file_path is None

    def test_storage_failure_aborts_batch(self, emitter, sink, make_invoice_data):
        store = MagicMock()
        store.create_invoice_with_line_items.side_effect = StorageError("Failed to create invoice")
        detector = MagicMock()
        detector.find.return_value = None
        coordinator = PersistenceCoordinator(None, store=store, detector=detector)

        with pytest.raises(StorageError):
            coordinator.persist([
                accepted(make_invoice_data(), "a.pdf"),
                accepted(make_invoice_data(invoice_number="INV-2"), "b.pdf"),
            ], emitter)

        assert store.create_invoice_with_line_items.call_count == 1
        assert sink.types == ["savingStart", "error"]
