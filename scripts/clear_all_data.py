#!/usr/bin/env python3
"""Clear all invoices, line items and chats from the database."""
from shared import SessionLocal, Invoice, LineItem, Chat, Message


def clear_all_data():
    """Delete every row, children before parents."""
    db = SessionLocal()
    try:
        print("🗑️  Clearing all data...")

        print("  • Deleting line items...")
        deleted_items = db.query(LineItem).delete()

        print("  • Deleting invoices...")
        deleted_invoices = db.query(Invoice).delete()

        print("  • Deleting messages...")
        db.query(Message).delete()

        print("  • Deleting chats...")
        deleted_chats = db.query(Chat).delete()

        db.commit()
        print(f"✅ Removed {deleted_invoices} invoices, {deleted_items} line items and {deleted_chats} chats")
        return True
    except Exception as e:
        db.rollback()
        print(f"❌ Error clearing data: {e}")
        return False
    finally:
        db.close()


if __name__ == "__main__":
    confirm = input("⚠️  This will delete ALL invoices, line items and chats. Continue? (yes/no): ")
    if confirm.lower() == "yes":
        clear_all_data()
    else:
        print("❌ Cancelled.")
