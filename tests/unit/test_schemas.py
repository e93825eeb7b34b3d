"""Unit tests for invoice schema validation."""
from datetime import date
from decimal import Decimal

import pytest

from shared.schemas import (
    InvoiceExtraction, InvoiceValidationError, extraction_json_schema, validate_invoice_data
)


def valid_payload(**overrides):
    payload = {
        "customerName": "Globex Corporation",
        "vendorName": "ACME Supplies",
        "invoiceNumber": "INV-1",
        "invoiceDate": "2025-10-21",
        "amount": 99.5,
        "lineItems": [{"description": "Consulting", "amount": 99.5}],
    }
    payload.update(overrides)
    return payload


class TestValidateInvoiceData:

    def test_valid_payload(self):
        data = validate_invoice_data(valid_payload())

        assert data.invoice_date == date(2025, 10, 21)
        assert data.amount == Decimal("99.5")
        assert data.currency == "USD"
        assert data.due_date is None
        assert data.line_items[0].quantity is None

    def test_blank_currency_defaults_to_usd(self):
        assert validate_invoice_data(valid_payload(currency=None)).currency == "USD"
        assert validate_invoice_data(valid_payload(currency="EUR")).currency == "EUR"

    def test_missing_fields_are_reported(self):
        payload = valid_payload()
        del payload["vendorName"]
        del payload["invoiceNumber"]

        with pytest.raises(InvoiceValidationError) as exc_info:
            validate_invoice_data(payload)

        errors = {e.field: e.reason for e in exc_info.value.errors}
        assert errors == {"vendorName": "missing", "invoiceNumber": "missing"}

    def test_wrong_type(self):
        with pytest.raises(InvoiceValidationError) as exc_info:
            validate_invoice_data(valid_payload(invoiceDate="not a date"))

        assert exc_info.value.errors[0].field == "invoiceDate"
        assert exc_info.value.errors[0].reason == "wrong type"

    def test_negative_tax_rate_is_out_of_range(self):
        payload = valid_payload(lineItems=[{"description": "Consulting", "amount": 10, "taxRate": -0.2}])

        with pytest.raises(InvoiceValidationError) as exc_info:
            validate_invoice_data(payload)

        assert exc_info.value.errors[0].field == "lineItems.0.taxRate"
        assert exc_info.value.errors[0].reason == "out of range"

    def test_non_mapping_payload(self):
        with pytest.raises(InvoiceValidationError):
            validate_invoice_data(["not", "an", "invoice"])


class TestInvoiceExtraction:

    def test_envelope_keeps_data_unvalidated(self):
        extraction = InvoiceExtraction.model_validate(
            {"data": {"whatever": 1}, "isInvoice": False, "confidence": 0.2, "reasoning": None}
        )

        assert extraction.data == {"whatever": 1}
        assert extraction.reasoning == ""

    def test_confidence_must_be_within_bounds(self):
        with pytest.raises(ValueError):
            InvoiceExtraction.model_validate({"data": {}, "isInvoice": True, "confidence": 1.5})

    def test_json_schema_uses_camel_case(self):
        schema = extraction_json_schema()

        assert set(schema["required"]) == {"data", "isInvoice", "confidence", "reasoning"}
        invoice_schema = schema["$defs"]["InvoiceData"]
        assert "vendorName" in invoice_schema["properties"]
        assert "lineItems" in invoice_schema["properties"]
