"""Integration tests for the full pipeline."""
import asyncio
import base64
import io

from PIL import Image

from services.extractor.llm import OllamaInvoiceExtractor
from services.extractor.orchestrator import Attachment, ExtractionOrchestrator, EXTRACTION_ERROR_REASONING
from services.storage.gateway import InvoiceStore
from services.worker.pipeline import process_invoice_batch
from shared.models import Invoice, LineItem


def text_attachment(name):
    url = "data:text/plain;base64," + base64.b64encode(f"Contents of {name}".encode()).decode()
    return Attachment(url=url, content_type="text/plain", name=name)


def run_pipeline(client, attachments, db_session, emitter, caller):
    orchestrator = ExtractionOrchestrator(OllamaInvoiceExtractor(client=client))
    return asyncio.run(process_invoice_batch(attachments, db_session, emitter, caller, orchestrator=orchestrator))


class TestPipeline:
    """Test end-to-end pipeline."""

    def test_saved_rejected_and_duplicate_in_one_batch(self, db_session, emitter, sink, caller,
                                                       fake_ollama, envelope):
        client = fake_ollama(extractions={
            "a.txt": envelope(confidence=0.9),
            "b.txt": envelope(confidence=0.5, reasoning="Looks like a receipt, not an invoice."),
            "c.txt": envelope(confidence=0.95),
        })

        summary = run_pipeline(
            client, [text_attachment("a.txt"), text_attachment("b.txt"), text_attachment("c.txt")],
            db_session, emitter, caller
        )

        assert [s.attachment.name for s in summary.saved] == ["a.txt"]
        assert [r.attachment.name for r in summary.rejected] == ["b.txt"]
        assert summary.rejected[0].reasoning == "Looks like a receipt, not an invoice."
        assert [d.attachment.name for d in summary.duplicates] == ["c.txt"]
        assert summary.duplicates[0].existing_invoice_id == summary.saved[0].invoice_id

        assert db_session.query(Invoice).count() == 1
        invoice = InvoiceStore(db_session).get_invoice(summary.saved[0].invoice_id)
        assert float(invoice.amount) == 150.0
        assert invoice.tokens_used == 150
        assert db_session.query(LineItem).count() == 2

        assert sink.types == [
            "processingStart", "extractionComplete", "savingStart", "warning", "savingComplete"
        ]
        assert sink.events[-1]["saved"] == 1
        assert sink.events[-1]["duplicates"] == 1
        assert sink.events[-1]["rejected"] == 1

    def test_extraction_failure_does_not_stop_the_batch(self, db_session, emitter, caller,
                                                        fake_ollama, envelope):
        client = fake_ollama(extractions={
            "broken.txt": TimeoutError("model timed out"),
            "good.txt": envelope(invoiceNumber="INV-77"),
        })

        summary = run_pipeline(
            client, [text_attachment("broken.txt"), text_attachment("good.txt")], db_session, emitter, caller
        )

        assert summary.rejected[0].attachment.name == "broken.txt"
        assert summary.rejected[0].reasoning == EXTRACTION_ERROR_REASONING
        assert [s.data.invoice_number for s in summary.saved] == ["INV-77"]

    def test_deleting_a_saved_invoice_leaves_no_line_items(self, db_session, emitter, caller,
                                                          fake_ollama, envelope):
        client = fake_ollama(extractions={"a.txt": envelope()})
        summary = run_pipeline(client, [text_attachment("a.txt")], db_session, emitter, caller)

        InvoiceStore(db_session).delete_invoice(summary.saved[0].invoice_id)

        assert db_session.query(LineItem).count() == 0

    def test_oversized_image_does_not_stop_the_batch(self, db_session, emitter, caller, monkeypatch,
                                                     fake_ollama, envelope):
        buffer = io.BytesIO()
        Image.new("RGB", (40, 40)).save(buffer, format="PNG")
        huge = Attachment(
            url="data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode(),
            content_type="image/png",
            name="huge.png"
        )
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 100)
        client = fake_ollama(extractions={"good.txt": envelope()})

        summary = run_pipeline(client, [huge, text_attachment("good.txt")], db_session, emitter, caller)

        assert [r.attachment.name for r in summary.rejected] == ["huge.png"]
        assert summary.rejected[0].reasoning == EXTRACTION_ERROR_REASONING
        assert [s.attachment.name for s in summary.saved] == ["good.txt"]

    def test_attachments_outside_the_upload_area_are_not_read(self, db_session, emitter, caller, tmp_path,
                                                             fake_ollama, envelope):
        secret = tmp_path / "secret.env"
        secret.write_text("DB_PASSWORD=hunter2")
        client = fake_ollama(extractions={"secret.env": envelope()})

        summary = run_pipeline(
            client, [Attachment(url=str(secret), content_type="text/plain", name="secret.env")],
            db_session, emitter, caller
        )

        assert summary.rejected[0].reasoning == EXTRACTION_ERROR_REASONING
        assert not any(call.get("format") for call in client.calls)
