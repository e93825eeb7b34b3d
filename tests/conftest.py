"""Pytest configuration and fixtures."""
import os

# Must be set before shared.config builds the engine
os.environ["DATABASE_URL"] = os.getenv("TEST_DATABASE_URL", "sqlite://")

import json
from datetime import date
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from services.storage.gateway import InvoiceStore
from shared.config import Base, SessionLocal, engine, init_db, settings
from shared.context import CallerContext
from shared.events import ListSink, ProgressEmitter
from shared.schemas import InvoiceData, LineItemData


@pytest.fixture(scope="session")
def db_engine():
    """Create test database schema."""
    init_db(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Test database session; every table is emptied afterwards."""
    session = SessionLocal()
    yield session
    session.rollback()
    session.close()
    with db_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture
def make_invoice_data():
    """Factory for valid invoice data."""
    def _make(**overrides):
        values = {
            "customer_name": "Globex Corporation",
            "vendor_name": "ACME Supplies",
            "invoice_number": "INV-2025-123",
            "invoice_date": date(2025, 10, 21),
            "due_date": date(2025, 11, 20),
            "amount": Decimal("150.00"),
            "currency": "USD",
            "line_items": [
                LineItemData(description="Widgets", quantity=2, unit_price=50.0, amount=Decimal("100.00")),
                LineItemData(description="Shipping", amount=Decimal("50.00"), metadata={"carrier": "UPS"}),
            ],
        }
        values.update(overrides)
        return InvoiceData(**values)
    return _make


@pytest.fixture
def sample_invoice(db_session, make_invoice_data):
    """A stored invoice with two line items."""
    return InvoiceStore(db_session).create_invoice_with_line_items(
        make_invoice_data(), file_path="s3://invoice-uploads/uploads/u1/invoice.pdf",
        file_type="application/pdf", file_size=2048
    )


@pytest.fixture
def sink():
    return ListSink()


@pytest.fixture
def emitter(sink):
    return ProgressEmitter(sink)


@pytest.fixture
def caller():
    return CallerContext(user_id="user-1")


def extraction_envelope(confidence=0.9, is_invoice=True, reasoning="Contains invoice number and totals.",
                        **data_overrides):
    """Model output as the extraction call returns it (camelCase JSON)."""
    data = {
        "customerName": "Globex Corporation",
        "vendorName": "ACME Supplies",
        "invoiceNumber": "INV-2025-123",
        "invoiceDate": "2025-10-21",
        "dueDate": "2025-11-20",
        "amount": 150.0,
        "currency": "USD",
        "lineItems": [
            {"description": "Widgets", "quantity": 2, "unitPrice": 50.0, "amount": 100.0},
            {"description": "Shipping", "amount": 50.0},
        ],
    }
    data.update(data_overrides)
    return {"data": data, "isInvoice": is_invoice, "confidence": confidence, "reasoning": reasoning}


@pytest.fixture
def envelope():
    return extraction_envelope


async def _aiter(items):
    for item in items:
        yield item


class FakeOllamaClient:
    """Stands in for ollama.AsyncClient.

    ``steps`` scripts the streamed chat replies (one list of chunks per model
    call); ``extractions`` maps a file name to the structured-output envelope
    (or exception) returned for it.
    """

    def __init__(self, steps=None, extractions=None, title="Invoice processing"):
        self.steps = list(steps or [])
        self.extractions = extractions or {}
        self.title = title
        self.calls = []

    async def chat(self, model, messages, **kwargs):
        self.calls.append({"model": model, "messages": messages, **kwargs})
        if kwargs.get("stream"):
            chunks = self.steps.pop(0) if self.steps else [{"message": {"role": "assistant", "content": "Done."}}]
            return _aiter(chunks)
        if kwargs.get("format"):
            prompt = messages[-1]["content"]
            for name, envelope in self.extractions.items():
                if name in prompt:
                    if isinstance(envelope, Exception):
                        raise envelope
                    return {
                        "message": {"role": "assistant", "content": json.dumps(envelope)},
                        "prompt_eval_count": 100,
                        "eval_count": 50,
                    }
            raise RuntimeError("no scripted extraction for this file")
        return {"message": {"role": "assistant", "content": self.title}}


@pytest.fixture
def fake_ollama():
    return FakeOllamaClient


@pytest.fixture
def api_client(db_session):
    """Test client for API."""
    from services.api.main import app
    return TestClient(app)


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {settings.api_key}", "X-User-Id": "user-1"}
