"""Invoice drafts for the editor page.

A draft is a private copy of one invoice row. Edits only touch the draft;
the stored invoice changes when the draft is saved through the API.
"""
import copy
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

EDITABLE_FIELDS = (
    "customerName",
    "vendorName",
    "invoiceNumber",
    "invoiceDate",
    "dueDate",
    "amount",
    "currency",
)

# Changing any of these on a line item recomputes the invoice total
TOTAL_FIELDS = ("amount", "quantity", "unitPrice")

LINE_ITEM_FIELDS = ("id", "description", "quantity", "unitPrice", "amount", "productCode", "taxRate", "metadata")

SORTABLE_COLUMNS = ("createdAt", "vendorName", "customerName", "invoiceNumber", "invoiceDate", "dueDate", "amount")


# Draft-only key that identifies a line item across edits; never sent to the API
ITEM_KEY = "_key"


def new_line_item() -> Dict[str, Any]:
    return {ITEM_KEY: uuid.uuid4().hex, "description": "", "quantity": 1, "unitPrice": 0.0, "amount": 0.0}


def _draft_item(item: Dict[str, Any]) -> Dict[str, Any]:
    draft_item = {k: copy.deepcopy(v) for k, v in item.items() if k in LINE_ITEM_FIELDS}
    draft_item[ITEM_KEY] = item.get("id") or uuid.uuid4().hex
    return draft_item


@dataclass
class InvoiceDraft:
    invoice_id: str
    fields: Dict[str, Any]
    line_items: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_invoice(cls, invoice: Dict[str, Any]) -> "InvoiceDraft":
        """Snapshot an invoice as returned by GET /invoices."""
        return cls(
            invoice_id=invoice["id"],
            fields={name: copy.deepcopy(invoice.get(name)) for name in EDITABLE_FIELDS},
            line_items=[_draft_item(item) for item in invoice.get("lineItems") or []]
        )

    @property
    def amount(self) -> Optional[float]:
        return self.fields.get("amount")

    def set_field(self, name: str, value: Any) -> None:
        if name not in EDITABLE_FIELDS:
            raise KeyError(f"Not an editable invoice field: {name}")
        self.fields[name] = value

    def recalculate_amount(self) -> float:
        total = round(sum(float(item.get("amount") or 0) for item in self.line_items), 2)
        self.fields["amount"] = total
        return total

    def set_line_item_field(self, index: int, name: str, value: Any) -> None:
        self.line_items[index][name] = value
        if name in TOTAL_FIELDS:
            self.recalculate_amount()

    def add_line_item(self) -> Dict[str, Any]:
        item = new_line_item()
        self.line_items.append(item)
        self.recalculate_amount()
        return item

    def remove_line_item(self, index: int) -> None:
        del self.line_items[index]
        self.recalculate_amount()

    def to_payload(self) -> Dict[str, Any]:
        """Full PUT /invoices body: every editable field plus all line items."""
        return {
            "id": self.invoice_id,
            **copy.deepcopy(self.fields),
            "lineItems": [
                {k: copy.deepcopy(v) for k, v in item.items() if k != ITEM_KEY}
                for item in self.line_items
            ],
        }


def sort_invoices(invoices: List[Dict[str, Any]], column: str = "createdAt",
                  descending: bool = True) -> List[Dict[str, Any]]:
    """Sort invoice rows by one column; rows missing the value go last."""
    present = [inv for inv in invoices if inv.get(column) is not None]
    missing = [inv for inv in invoices if inv.get(column) is None]

    def key(inv):
        value = inv[column]
        return value.lower() if isinstance(value, str) and column not in ("createdAt", "invoiceDate", "dueDate") else value

    return sorted(present, key=key, reverse=descending) + missing
