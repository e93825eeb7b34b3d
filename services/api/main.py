"""FastAPI service - invoice API, chat streaming and file uploads."""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Depends, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from services.api.auth import get_caller
from services.api.chat import router as chat_router
from services.api.files import router as files_router
from services.storage.gateway import Change, InvoiceStore, InvoiceUpdate, StorageError, serialize_invoice
from shared import get_db, init_db, settings
from shared.context import CallerContext
from shared.schemas import CamelModel, LineItemData

logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="Invoice Chat API", version="1.0.0")

app.include_router(chat_router)
app.include_router(files_router)


class LineItemInput(LineItemData):
    id: Optional[str] = None


class InvoiceUpdateRequest(CamelModel):
    """Body of PUT /invoices. Only the fields present in the JSON are changed."""

    id: Optional[str] = None
    customer_name: Optional[str] = None
    vendor_name: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    notes: Optional[str] = None
    line_items: Optional[List[LineItemInput]] = None


# Columns that cannot be cleared with an explicit null
REQUIRED_FIELDS = ("customer_name", "vendor_name", "invoice_number", "invoice_date", "amount", "status")


def to_invoice_update(body: InvoiceUpdateRequest) -> InvoiceUpdate:
    supplied = body.model_fields_set - {"id", "line_items"}
    cleared = [name for name in supplied if name in REQUIRED_FIELDS and getattr(body, name) is None]
    if cleared:
        raise HTTPException(status_code=400, detail=f"Fields cannot be null: {', '.join(sorted(cleared))}")
    return InvoiceUpdate(**{name: Change(getattr(body, name)) for name in supplied})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_encoder(exc.errors())}
    )


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info("Database tables ready")


@app.get("/invoices")
def list_invoices(
    order_by: str = Query("created_at", alias="orderBy"),
    direction: str = Query("desc"),
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller)
) -> List[Dict[str, Any]]:
    """All invoices with their line items, newest first by default."""
    store = InvoiceStore(db)
    try:
        invoices = store.list_invoices(limit=None, order_by=order_by, direction=direction)
        return [serialize_invoice(invoice) for invoice in invoices]
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError:
        raise HTTPException(status_code=500, detail="Failed to fetch invoices")


@app.get("/invoices/{invoice_id}")
def get_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller)
):
    try:
        invoice = InvoiceStore(db).get_invoice(invoice_id)
        if not invoice:
            raise HTTPException(status_code=404, detail="Invoice not found")
        return serialize_invoice(invoice)
    except StorageError:
        raise HTTPException(status_code=500, detail="Failed to fetch invoice")


@app.put("/invoices")
def update_invoice(
    body: InvoiceUpdateRequest,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller)
):
    """Partial update; a supplied ``lineItems`` array replaces all line items."""
    if not body.id:
        raise HTTPException(status_code=400, detail="Invoice ID is required")

    update = to_invoice_update(body)
    store = InvoiceStore(db)
    try:
        invoice = store.update_invoice(body.id, update)
        if invoice is None:
            raise HTTPException(status_code=404, detail="Invoice not found")
        if "line_items" in body.model_fields_set:
            store.replace_line_items(body.id, body.line_items or [])
        logger.info(f"User {caller.user_id} updated invoice {body.id}")
        return serialize_invoice(invoice, store.list_line_items(body.id))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except StorageError:
        raise HTTPException(status_code=500, detail="Failed to update invoice")


@app.delete("/invoices/{invoice_id}")
def delete_invoice(
    invoice_id: str,
    db: Session = Depends(get_db),
    caller: CallerContext = Depends(get_caller)
):
    try:
        deleted = InvoiceStore(db).delete_invoice(invoice_id)
    except StorageError:
        raise HTTPException(status_code=500, detail="Failed to delete invoice")
    if not deleted:
        raise HTTPException(status_code=404, detail="Invoice not found")
    logger.info(f"User {caller.user_id} deleted invoice {invoice_id}")
    return {"message": "Invoice deleted", "id": invoice_id}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
