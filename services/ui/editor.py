"""Streamlit invoice editor - sortable table with draft editing of one invoice."""
import os
from datetime import date
from typing import Any, Dict, List, Optional

import pandas as pd
import requests
import streamlit as st

from services.ui.drafts import ITEM_KEY, SORTABLE_COLUMNS, InvoiceDraft, sort_invoices
from shared import settings

API_BASE_URL = os.getenv("API_BASE_URL", settings.api_base_url)
API_KEY = os.getenv("API_KEY", settings.api_key)
USER_ID = os.getenv("EDITOR_USER_ID", "editor")

st.set_page_config(page_title="Invoices", layout="wide")


def api_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {API_KEY}", "X-User-Id": USER_ID}


def fetch_invoices() -> List[Dict[str, Any]]:
    response = requests.get(f"{API_BASE_URL}/invoices", headers=api_headers(), timeout=30)
    response.raise_for_status()
    return response.json()


def save_draft(draft: InvoiceDraft) -> Dict[str, Any]:
    response = requests.put(
        f"{API_BASE_URL}/invoices",
        json=draft.to_payload(),
        headers=api_headers(),
        timeout=30
    )
    response.raise_for_status()
    return response.json()


def _parse_date(value: Optional[str]) -> Optional[date]:
    return date.fromisoformat(value) if value else None


def format_amount(invoice: Dict[str, Any]) -> str:
    amount = invoice.get("amount") or 0
    return f"{invoice.get('currency') or 'USD'} {amount:.2f}"


def render_line_items(invoice: Dict[str, Any]):
    items = invoice.get("lineItems") or []
    if not items:
        st.caption("No line items")
        return
    df = pd.DataFrame([
        {
            "Description": item.get("description"),
            "Quantity": item.get("quantity"),
            "Unit Price": item.get("unitPrice"),
            "Amount": item.get("amount"),
        }
        for item in items
    ])
    st.dataframe(df, use_container_width=True, hide_index=True)


def _text_field(draft: InvoiceDraft, name: str, label: str, key: str):
    shown = draft.fields.get(name) or ""
    value = st.text_input(label, shown, key=key)
    if value != shown:
        draft.set_field(name, value)


def _line_item_number(column, draft: InvoiceDraft, index: int, name: str, label: str, key: str):
    # None shows as 0; only a value the user actually changed is written back
    shown = float(draft.line_items[index].get(name) or 0)
    value = column.number_input(label, value=shown, key=key)
    if value != shown:
        draft.set_line_item_field(index, name, value)


def render_draft(draft: InvoiceDraft):
    key = f"draft-{draft.invoice_id}"
    col1, col2, col3 = st.columns(3)
    with col1:
        _text_field(draft, "vendorName", "Vendor", f"{key}-vendor")
        _text_field(draft, "customerName", "Customer", f"{key}-customer")
    with col2:
        _text_field(draft, "invoiceNumber", "Invoice #", f"{key}-number")
        _text_field(draft, "currency", "Currency", f"{key}-currency")
    with col3:
        invoice_date = st.date_input("Invoice date", _parse_date(draft.fields.get("invoiceDate")), key=f"{key}-date")
        draft.set_field("invoiceDate", invoice_date.isoformat() if invoice_date else None)
        due_date = st.date_input("Due date", _parse_date(draft.fields.get("dueDate")), key=f"{key}-due")
        draft.set_field("dueDate", due_date.isoformat() if due_date else None)

    st.markdown("**Line items**")
    for index, item in enumerate(list(draft.line_items)):
        # Widget keys follow the item, not its position, so removals don't shift state
        item_key = f"{key}-{item[ITEM_KEY]}"
        c1, c2, c3, c4, c5 = st.columns([4, 1, 1, 1, 1])
        shown = item.get("description") or ""
        description = c1.text_input("Description", shown, key=f"{item_key}-desc")
        if description != shown:
            draft.set_line_item_field(index, "description", description)
        _line_item_number(c2, draft, index, "quantity", "Qty", f"{item_key}-qty")
        _line_item_number(c3, draft, index, "unitPrice", "Unit price", f"{item_key}-price")
        _line_item_number(c4, draft, index, "amount", "Amount", f"{item_key}-amount")
        if c5.button("Remove", key=f"{item_key}-remove"):
            draft.remove_line_item(index)
            st.rerun()

    if st.button("Add line item", key=f"{key}-add"):
        draft.add_line_item()
        st.rerun()

    st.metric("Total", f"{draft.fields.get('currency') or 'USD'} {(draft.amount or 0):.2f}")

    save_col, cancel_col = st.columns(2)
    if save_col.button("Save", key=f"{key}-save", type="primary"):
        try:
            save_draft(draft)
            st.session_state.draft = None
            st.success("Invoice updated")
            st.rerun()
        except requests.RequestException as e:
            st.error(f"Failed to update invoice: {e}")
    if cancel_col.button("Cancel", key=f"{key}-cancel"):
        st.session_state.draft = None
        st.rerun()


def main():
    st.title("Invoices")

    if "draft" not in st.session_state:
        st.session_state.draft = None

    try:
        invoices = fetch_invoices()
    except requests.RequestException as e:
        st.error(f"Failed to fetch invoices: {e}")
        return

    if not invoices:
        st.info("No invoices yet. Upload one in the chat to get started.")
        return

    sort_col, dir_col = st.columns([3, 1])
    column = sort_col.selectbox("Sort by", SORTABLE_COLUMNS, index=0)
    descending = dir_col.radio("Direction", ["Descending", "Ascending"], horizontal=True) == "Descending"

    draft: Optional[InvoiceDraft] = st.session_state.draft
    for invoice in sort_invoices(invoices, column, descending):
        label = (
            f"{invoice.get('vendorName')} · #{invoice.get('invoiceNumber')} · "
            f"{invoice.get('invoiceDate')} · {format_amount(invoice)}"
        )
        with st.expander(label, expanded=draft is not None and draft.invoice_id == invoice["id"]):
            if draft is not None and draft.invoice_id == invoice["id"]:
                render_draft(draft)
                continue

            st.write(f"**Customer:** {invoice.get('customerName')}  \n**Due:** {invoice.get('dueDate') or '-'}")
            render_line_items(invoice)
            if st.button("Edit", key=f"edit-{invoice['id']}", disabled=draft is not None):
                st.session_state.draft = InvoiceDraft.from_invoice(invoice)
                st.rerun()


if __name__ == "__main__":
    main()
