"""SQLAlchemy models for invoices, line items and chats."""
import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, Integer, Numeric, Text, Float, LargeBinary, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.types import TypeDecorator

from shared.config import Base

INVOICE_STATUSES = ("processed", "pending", "error")


def generate_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EpochDateTime(TypeDecorator):
    """Timezone-aware datetime stored as integer epoch milliseconds."""

    impl = BigInteger
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


class EpochDate(TypeDecorator):
    """Calendar date stored as epoch seconds of its UTC midnight."""

    impl = Integer
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, datetime):
            value = value.date()
        midnight = datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
        return int(midnight.timestamp())

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return datetime.fromtimestamp(value, tz=timezone.utc).date()


class JSONBlob(TypeDecorator):
    """JSON document kept as an opaque UTF-8 blob."""

    impl = LargeBinary
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(value, default=str).encode("utf-8")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return json.loads(bytes(value).decode("utf-8"))


class Invoice(Base):
    __tablename__ = "Invoice"

    id = Column(Text, primary_key=True, default=generate_id)
    created_at = Column("createdAt", EpochDateTime, nullable=False, default=utcnow)
    customer_name = Column("customerName", Text, nullable=False)
    vendor_name = Column("vendorName", Text, nullable=False)
    invoice_number = Column("invoiceNumber", Text, nullable=False)
    invoice_date = Column("invoiceDate", EpochDate, nullable=False)
    due_date = Column("dueDate", EpochDate)
    amount = Column(Numeric(asdecimal=True), nullable=False)
    currency = Column(Text, default="USD")
    status = Column(Text, nullable=False, default="processed")
    file_path = Column("filePath", Text)
    file_type = Column("fileType", Text)
    file_size = Column("fileSize", Integer)
    tokens_used = Column("tokensUsed", Integer)
    tokens_cost = Column("tokensCost", Float)
    notes = Column(Text)

    line_items = relationship(
        "LineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="LineItem.position",
    )


class LineItem(Base):
    __tablename__ = "LineItem"

    id = Column(Text, primary_key=True, default=generate_id)
    invoice_id = Column("invoiceId", Text, ForeignKey("Invoice.id", ondelete="CASCADE"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    quantity = Column(Float)
    unit_price = Column("unitPrice", Float)
    amount = Column(Numeric(asdecimal=True), nullable=False)
    product_code = Column("productCode", Text)
    tax_rate = Column("taxRate", Float)
    meta = Column("metadata", JSONBlob)
    position = Column(Integer, nullable=False, default=0)
    created_at = Column("createdAt", EpochDateTime, nullable=False, default=utcnow)

    invoice = relationship("Invoice", back_populates="line_items")


class Chat(Base):
    __tablename__ = "Chat"

    id = Column(Text, primary_key=True, default=generate_id)
    created_at = Column("createdAt", EpochDateTime, nullable=False, default=utcnow)
    user_id = Column("userId", Text, nullable=False, index=True)
    title = Column(Text, nullable=False)

    messages = relationship(
        "Message",
        back_populates="chat",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Message(Base):
    __tablename__ = "Message"

    id = Column(Text, primary_key=True, default=generate_id)
    chat_id = Column("chatId", Text, ForeignKey("Chat.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(Text, nullable=False)
    content = Column(JSON, nullable=False)
    created_at = Column("createdAt", EpochDateTime, nullable=False, default=utcnow)

    chat = relationship("Chat", back_populates="messages")
