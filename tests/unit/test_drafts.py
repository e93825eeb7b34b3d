"""Unit tests for editor drafts."""
import pytest

from services.ui.drafts import ITEM_KEY, InvoiceDraft, sort_invoices

INVOICE = {
    "id": "inv-1",
    "createdAt": "2025-10-21T10:00:00+00:00",
    "customerName": "Globex Corporation",
    "vendorName": "ACME Supplies",
    "invoiceNumber": "INV-1",
    "invoiceDate": "2025-10-21",
    "dueDate": None,
    "amount": 150.0,
    "currency": "USD",
    "lineItems": [
        {"id": "li-1", "invoiceId": "inv-1", "description": "Widgets", "quantity": 2, "unitPrice": 50.0, "amount": 100.0},
        {"id": "li-2", "invoiceId": "inv-1", "description": "Shipping", "quantity": None, "unitPrice": None, "amount": 50.0},
    ],
}


class TestInvoiceDraft:

    def test_edits_do_not_touch_the_source_row(self):
        draft = InvoiceDraft.from_invoice(INVOICE)

        draft.set_field("vendorName", "ACME Corp")
        draft.set_line_item_field(0, "amount", 120.0)

        assert INVOICE["vendorName"] == "ACME Supplies"
        assert INVOICE["lineItems"][0]["amount"] == 100.0

    @pytest.mark.parametrize("field", ["amount", "quantity", "unitPrice"])
    def test_total_fields_recalculate_amount(self, field):
        draft = InvoiceDraft.from_invoice(INVOICE)
        draft.line_items[0]["amount"] = 80.0

        draft.set_line_item_field(0, field, draft.line_items[0][field])

        assert draft.amount == 130.0

    def test_description_edit_keeps_amount(self):
        draft = InvoiceDraft.from_invoice(dict(INVOICE, amount=163.42))

        draft.set_line_item_field(1, "description", "Express shipping")

        assert draft.amount == 163.42

    def test_add_and_remove_line_items(self):
        draft = InvoiceDraft.from_invoice(INVOICE)

        item = draft.add_line_item()
        assert {k: v for k, v in item.items() if k != ITEM_KEY} == {
            "description": "", "quantity": 1, "unitPrice": 0.0, "amount": 0.0
        }
        draft.set_line_item_field(2, "amount", 25.5)
        assert draft.amount == 175.5

        draft.remove_line_item(0)
        assert draft.amount == 75.5
        assert [i["description"] for i in draft.line_items] == ["Shipping", ""]

    def test_unknown_field(self):
        with pytest.raises(KeyError):
            InvoiceDraft.from_invoice(INVOICE).set_field("createdAt", "now")

    def test_payload_is_complete(self):
        draft = InvoiceDraft.from_invoice(INVOICE)
        draft.set_field("currency", "EUR")

        payload = draft.to_payload()

        assert payload["id"] == "inv-1"
        assert payload["currency"] == "EUR"
        assert set(payload) == {
            "id", "customerName", "vendorName", "invoiceNumber", "invoiceDate", "dueDate",
            "amount", "currency", "lineItems",
        }
        assert [i["id"] for i in payload["lineItems"]] == ["li-1", "li-2"]
        assert "invoiceId" not in payload["lineItems"][0]


def test_sort_invoices():
    rows = [
        {"id": "a", "vendorName": "beta", "amount": 10.0},
        {"id": "b", "vendorName": "Alpha", "amount": None},
        {"id": "c", "vendorName": "gamma", "amount": 5.0},
    ]

    assert [r["id"] for r in sort_invoices(rows, "vendorName", descending=False)] == ["b", "a", "c"]
    assert [r["id"] for r in sort_invoices(rows, "amount", descending=True)] == ["a", "c", "b"]


def test_line_items_keep_their_key_when_others_are_removed():
    draft = InvoiceDraft.from_invoice(INVOICE)
    added = draft.add_line_item()

    draft.remove_line_item(0)

    assert [item[ITEM_KEY] for item in draft.line_items] == ["li-2", added[ITEM_KEY]]
    assert all(ITEM_KEY not in item for item in draft.to_payload()["lineItems"])
