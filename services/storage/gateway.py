"""Storage gateway - invoice, line item and chat persistence.

Every public operation commits its own statement(s). SQLAlchemy failures are
rolled back, logged and re-raised as StorageError so callers never see
driver details.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Generic, Iterable, List, Optional, TypeVar

from sqlalchemy import asc, desc, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shared.models import Invoice, LineItem, Chat, Message, generate_id, INVOICE_STATUSES
from shared.schemas import InvoiceData, LineItemData

logger = logging.getLogger(__name__)

T = TypeVar("T")

PROVENANCE_FIELDS = ("file_path", "file_type", "file_size", "tokens_used", "tokens_cost", "status")


class StorageError(Exception):
    """A database operation failed."""


@dataclass(frozen=True)
class Change(Generic[T]):
    """New value for one updatable invoice attribute."""

    value: T


@dataclass
class InvoiceUpdate:
    """Partial invoice update. Attributes left as None keep their stored value;
    ``Change(None)`` clears a nullable attribute."""

    customer_name: Optional[Change[str]] = None
    vendor_name: Optional[Change[str]] = None
    invoice_number: Optional[Change[str]] = None
    invoice_date: Optional[Change[date]] = None
    due_date: Optional[Change[Optional[date]]] = None
    amount: Optional[Change[Decimal]] = None
    currency: Optional[Change[str]] = None
    status: Optional[Change[str]] = None
    notes: Optional[Change[Optional[str]]] = None

    def changes(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name).value
            for f in fields(self)
            if getattr(self, f.name) is not None
        }


def _sortable_columns() -> Dict[str, Any]:
    """Invoice columns keyed by attribute name and by stored column name."""
    columns = {}
    for attr in inspect(Invoice).column_attrs:
        column = getattr(Invoice, attr.key)
        columns[attr.key] = column
        columns[attr.columns[0].name] = column
    return columns


class InvoiceStore:
    """CRUD operations for invoices and their line items."""

    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def _guard(self, action: str):
        try:
            yield
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while trying to {action}: {e}")
            raise StorageError(f"Failed to {action}") from e

    def _invoice_row(self, data: InvoiceData, invoice_id: Optional[str], provenance: Dict[str, Any]) -> Invoice:
        unknown = set(provenance) - set(PROVENANCE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown invoice fields: {', '.join(sorted(unknown))}")
        if provenance.get("status", "processed") not in INVOICE_STATUSES:
            raise ValueError(f"Invalid invoice status: {provenance['status']}")

        return Invoice(
            id=invoice_id or generate_id(),
            customer_name=data.customer_name,
            vendor_name=data.vendor_name,
            invoice_number=data.invoice_number,
            invoice_date=data.invoice_date,
            due_date=data.due_date,
            amount=data.amount,
            currency=data.currency,
            notes=data.notes,
            **provenance
        )

    @staticmethod
    def _line_item_row(invoice_id: str, item: LineItemData, position: int) -> LineItem:
        return LineItem(
            id=getattr(item, "id", None) or generate_id(),
            invoice_id=invoice_id,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            amount=item.amount,
            product_code=item.product_code,
            tax_rate=item.tax_rate,
            meta=item.metadata,
            position=position
        )

    def create_invoice(self, data: InvoiceData, invoice_id: Optional[str] = None, **provenance) -> Invoice:
        """Insert the invoice row only; ``data.line_items`` is ignored."""
        invoice = self._invoice_row(data, invoice_id, provenance)
        with self._guard("create invoice"):
            self.db.add(invoice)
            self.db.commit()
            self.db.refresh(invoice)
        return invoice

    def create_invoice_with_line_items(self, data: InvoiceData, invoice_id: Optional[str] = None,
                                       **provenance) -> Invoice:
        """Insert the invoice and all of its line items in one transaction."""
        invoice = self._invoice_row(data, invoice_id, provenance)
        invoice.line_items = [
            self._line_item_row(invoice.id, item, position)
            for position, item in enumerate(data.line_items)
        ]
        with self._guard("create invoice with line items"):
            self.db.add(invoice)
            self.db.commit()
            self.db.refresh(invoice)
        return invoice

    def get_invoice(self, invoice_id: str) -> Optional[Invoice]:
        with self._guard("load invoice"):
            return self.db.get(Invoice, invoice_id)

    def update_invoice(self, invoice_id: str, update: InvoiceUpdate) -> Optional[Invoice]:
        """Apply a partial update. Returns None when the invoice does not exist."""
        changes = update.changes()
        if "status" in changes and changes["status"] not in INVOICE_STATUSES:
            raise ValueError(f"Invalid invoice status: {changes['status']}")

        with self._guard("update invoice"):
            invoice = self.db.get(Invoice, invoice_id)
            if invoice is None:
                return None
            for name, value in changes.items():
                setattr(invoice, name, value)
            self.db.commit()
            self.db.refresh(invoice)
        return invoice

    def delete_invoice(self, invoice_id: str) -> bool:
        """Delete an invoice; its line items go with it (ON DELETE CASCADE)."""
        with self._guard("delete invoice"):
            invoice = self.db.get(Invoice, invoice_id)
            if invoice is None:
                return False
            self.db.delete(invoice)
            self.db.commit()
        return True

    def list_invoices(self, limit: Optional[int] = 100, offset: int = 0,
                      order_by: str = "created_at", direction: str = "desc") -> List[Invoice]:
        """Page through invoices sorted by any column (newest first by default).

        ``limit=None`` returns every row.
        """
        column = _sortable_columns().get(order_by)
        if column is None:
            raise ValueError(f"Invalid order column: {order_by}")
        if direction not in ("asc", "desc"):
            raise ValueError(f"Invalid order direction: {direction}")

        order = asc if direction == "asc" else desc
        query = self.db.query(Invoice).order_by(order(column), order(Invoice.id)).offset(offset)
        if limit is not None:
            query = query.limit(limit)

        with self._guard("list invoices"):
            return query.all()

    def find_duplicate(self, vendor_name: str, invoice_number: str, amount: Decimal) -> Optional[Invoice]:
        """First stored invoice with exactly this vendor, number and amount."""
        with self._guard("look up duplicate invoice"):
            return self.db.query(Invoice).filter(
                Invoice.vendor_name == vendor_name,
                Invoice.invoice_number == invoice_number,
                Invoice.amount == amount
            ).order_by(Invoice.created_at.asc()).first()

    def save_line_items(self, invoice_id: str, items: Iterable[LineItemData]) -> List[LineItem]:
        """Bulk insert line items for an invoice, appended after existing ones."""
        with self._guard("save line items"):
            start = self.db.query(LineItem).filter(LineItem.invoice_id == invoice_id).count()
            rows = [
                self._line_item_row(invoice_id, item, start + offset)
                for offset, item in enumerate(items)
            ]
            if not rows:
                return []
            self.db.add_all(rows)
            self.db.commit()
            for row in rows:
                self.db.refresh(row)
        return rows

    def delete_line_items(self, invoice_id: str) -> int:
        with self._guard("delete line items"):
            deleted = self.db.query(LineItem).filter(
                LineItem.invoice_id == invoice_id
            ).delete(synchronize_session=False)
            self.db.commit()
        return deleted

    def list_line_items(self, invoice_id: str) -> List[LineItem]:
        with self._guard("list line items"):
            return self.db.query(LineItem).filter(
                LineItem.invoice_id == invoice_id
            ).order_by(LineItem.position.asc()).all()

    def replace_line_items(self, invoice_id: str, items: Iterable[LineItemData]) -> List[LineItem]:
        """Delete every line item of the invoice, then insert ``items``."""
        self.delete_line_items(invoice_id)
        return self.save_line_items(invoice_id, items)


class ChatStore:
    """Chats and the messages exchanged in them."""

    def __init__(self, db: Session):
        self.db = db

    def get_chat(self, chat_id: str) -> Optional[Chat]:
        try:
            return self.db.get(Chat, chat_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error loading chat {chat_id}: {e}")
            raise StorageError("Failed to load chat") from e

    def save_chat(self, chat_id: str, user_id: str, title: str) -> Chat:
        chat = Chat(id=chat_id, user_id=user_id, title=title)
        try:
            self.db.add(chat)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error saving chat {chat_id}: {e}")
            raise StorageError("Failed to save chat") from e
        return chat

    def save_messages(self, chat_id: str, messages: List[Dict[str, Any]]) -> List[Message]:
        rows = [
            Message(
                id=message.get("id") or generate_id(),
                chat_id=chat_id,
                role=message["role"],
                content=message["content"]
            )
            for message in messages
        ]
        try:
            self.db.add_all(rows)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error saving messages for chat {chat_id}: {e}")
            raise StorageError("Failed to save messages") from e
        return rows

    def delete_chat(self, chat_id: str) -> bool:
        try:
            chat = self.db.get(Chat, chat_id)
            if chat is None:
                return False
            self.db.delete(chat)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error deleting chat {chat_id}: {e}")
            raise StorageError("Failed to delete chat") from e
        return True


def _number(value) -> Optional[float]:
    return float(value) if value is not None else None


def serialize_line_item(item: LineItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "invoiceId": item.invoice_id,
        "description": item.description,
        "quantity": item.quantity,
        "unitPrice": item.unit_price,
        "amount": _number(item.amount),
        "productCode": item.product_code,
        "taxRate": item.tax_rate,
        "metadata": item.meta,
        "createdAt": item.created_at.isoformat() if item.created_at else None,
    }


def serialize_invoice(invoice: Invoice, line_items: Optional[List[LineItem]] = None) -> Dict[str, Any]:
    """JSON-ready camelCase view of an invoice, with its line items."""
    if line_items is None:
        line_items = invoice.line_items
    return {
        "id": invoice.id,
        "createdAt": invoice.created_at.isoformat() if invoice.created_at else None,
        "customerName": invoice.customer_name,
        "vendorName": invoice.vendor_name,
        "invoiceNumber": invoice.invoice_number,
        "invoiceDate": invoice.invoice_date.isoformat() if invoice.invoice_date else None,
        "dueDate": invoice.due_date.isoformat() if invoice.due_date else None,
        "amount": _number(invoice.amount),
        "currency": invoice.currency,
        "status": invoice.status,
        "filePath": invoice.file_path,
        "fileType": invoice.file_type,
        "fileSize": invoice.file_size,
        "tokensUsed": invoice.tokens_used,
        "tokensCost": invoice.tokens_cost,
        "notes": invoice.notes,
        "lineItems": [serialize_line_item(item) for item in line_items],
    }
