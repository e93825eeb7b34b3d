"""Invoice data schemas and validation.

Used by the LLM extractor (structured output schema), the persistence
coordinator (typed values to store) and the API (request bodies).
JSON field names are camelCase, Python attributes snake_case.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, NamedTuple, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_CURRENCY = "USD"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LineItemData(CamelModel):
    description: str = Field(..., description="Description of the product or service provided")
    quantity: Optional[float] = Field(None, description="Quantity of the product or service")
    unit_price: Optional[float] = Field(None, description="Price per unit of the product or service")
    amount: Decimal = Field(..., description="Total amount for this line item")
    product_code: Optional[str] = Field(None, description="Product code or SKU")
    tax_rate: Optional[float] = Field(None, ge=0, description="Tax rate applied to this line item")
    metadata: Optional[Dict[str, Any]] = Field(None, description="Additional information about the line item")


class InvoiceData(CamelModel):
    customer_name: str = Field(..., description="Name of the customer or client being billed")
    vendor_name: str = Field(..., description="Name of the company issuing the invoice")
    invoice_number: str = Field(..., description="Unique identifier or reference number for the invoice")
    invoice_date: date = Field(..., description="Date when the invoice was issued (YYYY-MM-DD)")
    due_date: Optional[date] = Field(None, description="Date when the payment is due (YYYY-MM-DD)")
    amount: Decimal = Field(..., description="Total amount of the invoice including all line items and taxes")
    currency: str = Field(DEFAULT_CURRENCY, description="Currency code for the invoice amounts")
    line_items: List[LineItemData] = Field(default_factory=list, description="Products or services being billed")
    notes: Optional[str] = Field(None, description="Additional notes or payment instructions")

    @field_validator("currency", mode="before")
    @classmethod
    def default_currency(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return DEFAULT_CURRENCY
        return value


class InvoiceExtraction(CamelModel):
    """Envelope returned by the extraction model.

    ``data`` stays a plain dict here: it is only validated once the
    document has been classified as an invoice.
    """

    data: Dict[str, Any] = Field(default_factory=dict)
    is_invoice: bool
    confidence: float = Field(..., ge=0, le=1)
    reasoning: str = ""

    @field_validator("reasoning", mode="before")
    @classmethod
    def empty_reasoning(cls, value):
        return value or ""


class _StructuredExtraction(CamelModel):
    data: InvoiceData
    is_invoice: bool = Field(..., description="Whether the document is a valid invoice or not")
    confidence: float = Field(
        ..., ge=0, le=1,
        description="Confidence between 0 and 1 in the extraction and the invoice assessment"
    )
    reasoning: str = Field(..., description="Brief explanation of why the document is or is not an invoice")


def extraction_json_schema() -> Dict[str, Any]:
    """JSON schema handed to the model as its structured output format."""
    return _StructuredExtraction.model_json_schema(by_alias=True)


class FieldError(NamedTuple):
    field: str
    reason: str  # "missing", "wrong type" or "out of range"
    message: str


class InvoiceValidationError(ValueError):
    """Raised when a payload does not have the shape of an invoice."""

    def __init__(self, errors: List[FieldError]):
        self.errors = errors
        summary = "; ".join(f"{e.field}: {e.reason}" for e in errors)
        super().__init__(f"Invalid invoice data ({summary})")


_RANGE_ERRORS = {"greater_than", "greater_than_equal", "less_than", "less_than_equal"}


def field_errors(exc: ValidationError) -> List[FieldError]:
    """Flatten a pydantic error into (field, reason, message) entries."""
    errors = []
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "__root__"
        if err["type"] == "missing":
            reason = "missing"
        elif err["type"] in _RANGE_ERRORS:
            reason = "out of range"
        else:
            reason = "wrong type"
        errors.append(FieldError(field, reason, err["msg"]))
    return errors


def validate_invoice_data(payload: Any) -> InvoiceData:
    """Validate an arbitrary structured object as invoice data."""
    try:
        return InvoiceData.model_validate(payload)
    except ValidationError as e:
        raise InvoiceValidationError(field_errors(e)) from e
