"""Shared utilities and configuration."""
from shared.config import settings, get_db, init_db, s3_client, ensure_s3_bucket, SessionLocal
from shared.models import Invoice, LineItem, Chat, Message

__all__ = [
    "settings",
    "get_db",
    "init_db",
    "SessionLocal",
    "s3_client",
    "ensure_s3_bucket",
    "Invoice",
    "LineItem",
    "Chat",
    "Message",
]
