"""Tools the chat model can call, and the context they run in."""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from services.extractor.orchestrator import (
    EXTRACTION_ERROR_REASONING, Accepted, Attachment, ExtractionOrchestrator, RejectedNotInvoice
)
from services.reconciler.duplicates import DuplicateDetector
from services.worker.pipeline import process_invoice_batch
from shared import settings
from shared.context import CallerContext
from shared.events import ProgressEmitter

logger = logging.getLogger(__name__)

PROCESS_INVOICE_DATA = "processInvoiceData"
EXTRACT_INVOICE_DATA = "extractInvoiceData"

TOOL_DEFINITIONS = [
    {
        "type": "function",
        "function": {
            "name": PROCESS_INVOICE_DATA,
            "description": "Process and save invoice data from attached files to the database.",
            "parameters": {"type": "object", "properties": {}, "required": []},
        },
    },
    {
        "type": "function",
        "function": {
            "name": EXTRACT_INVOICE_DATA,
            "description": (
                "Extract information from an invoice image or PDF such as customer name, vendor name, "
                "invoice number, invoice date, due date, amount, and line items. This tool does NOT save "
                "to the database, it only extracts the data for preview and verification."
            ),
            "parameters": {
                "type": "object",
                "properties": {
                    "name": {
                        "type": "string",
                        "description": "Name of one of the files attached to the latest message, as listed there",
                    },
                },
                "required": ["name"],
            },
        },
    },
]


@dataclass
class ToolContext:
    db: Session
    emitter: ProgressEmitter
    caller: CallerContext
    messages: List[Dict[str, Any]]
    orchestrator: ExtractionOrchestrator


def latest_user_message(messages: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    for message in reversed(messages):
        if message.get("role") == "user":
            return message
    return None


def message_attachments(message: Dict[str, Any]) -> List[Attachment]:
    raw = message.get("attachments") or message.get("experimental_attachments") or []
    return [Attachment.from_dict(a) for a in raw if a.get("url")]


def attachment_label(attachment: Attachment, index: int) -> str:
    """Name the model sees for an attachment; unnamed files are numbered from 1."""
    return attachment.name or f"file-{index + 1}"


def resolve_attachment(messages: List[Dict[str, Any]], arguments: Dict[str, Any]) -> Optional[Attachment]:
    """Find the file a tool call refers to among the latest user message's attachments.

    Only those attachments can be loaded; a url or name that is not among
    them resolves to None.
    """
    message = latest_user_message(messages)
    attachments = message_attachments(message) if message else []
    url = arguments.get("url")
    name = arguments.get("name")
    for index, attachment in enumerate(attachments):
        if url and attachment.url == url:
            return attachment
        if not url and name and attachment_label(attachment, index) == name:
            return attachment
    return None


def _no_files() -> Dict[str, Any]:
    return {
        "success": False,
        "error": "No valid files found",
        "message": "No files were found in the latest message.",
    }


async def process_invoice_data(ctx: ToolContext, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Extract and save every file attached to the latest user message."""
    message = latest_user_message(ctx.messages)
    attachments = message_attachments(message) if message else []
    if not attachments:
        return _no_files()

    summary = await process_invoice_batch(
        attachments, ctx.db, ctx.emitter, ctx.caller, orchestrator=ctx.orchestrator
    )
    return {
        "success": True,
        "message": summary.describe(),
        **summary.to_dict(),
    }


async def extract_invoice_data(ctx: ToolContext, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Preview one attached file: extract, classify and duplicate-check without saving."""
    attachment = resolve_attachment(ctx.messages, arguments)
    if attachment is None:
        return {
            "success": False,
            "error": "File not found",
            "message": "Name one of the files attached to the latest message.",
        }

    ctx.emitter.processing_start()
    outcome = await ctx.orchestrator.extract_one(attachment, owner=ctx.caller.user_id)

    if isinstance(outcome, RejectedNotInvoice):
        if outcome.reasoning == EXTRACTION_ERROR_REASONING:
            ctx.emitter.error("Error extracting invoice data.")
            return {
                "success": False,
                "error": "Extraction error",
                "message": "An error occurred while extracting data from the invoice. "
                           "Please try again or upload a clearer image.",
            }
        ctx.emitter.error("The uploaded document does not appear to be an invoice.")
        return {
            "success": False,
            "error": "Not an invoice",
            "message": "The document does not appear to be an invoice. Please upload a valid invoice document.",
            "reasoning": outcome.reasoning,
        }
    if not isinstance(outcome, Accepted):
        raise TypeError(f"Unexpected extraction outcome {type(outcome).__name__}")

    data = outcome.data
    existing = await asyncio.to_thread(
        DuplicateDetector(ctx.db).find, data.vendor_name, data.invoice_number, data.amount
    )
    if existing:
        ctx.emitter.warning("Possible duplicate invoice detected.", duplicateId=existing.id)
        return {
            "success": False,
            "error": "Duplicate invoice",
            "message": "This invoice appears to be a duplicate. We found an existing invoice with the same "
                       "vendor name, invoice number, and amount.",
            "duplicateId": existing.id,
        }

    ctx.emitter.extraction_complete("Invoice data extracted successfully.")
    return {
        "success": True,
        "extractedData": data.model_dump(mode="json", by_alias=True),
        "confidence": outcome.confidence,
        "isInvoice": True,
        "reasoning": outcome.reasoning,
        "tokensUsed": outcome.tokens_used,
        "tokensCost": outcome.tokens_used * settings.token_cost_per_token,
        "message": "Invoice data extracted successfully. Please review before saving.",
        "fileName": attachment.name,
    }


ToolHandler = Callable[[ToolContext, Dict[str, Any]], Awaitable[Dict[str, Any]]]

TOOL_HANDLERS: Dict[str, ToolHandler] = {
    PROCESS_INVOICE_DATA: process_invoice_data,
    EXTRACT_INVOICE_DATA: extract_invoice_data,
}


def parse_arguments(arguments: Any) -> Dict[str, Any]:
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments or "{}")
        except json.JSONDecodeError:
            return {}
    return dict(arguments or {})


async def run_tool(name: str, arguments: Any, ctx: ToolContext) -> Dict[str, Any]:
    handler = TOOL_HANDLERS.get(name)
    if handler is None:
        logger.warning(f"Model called unknown tool {name}")
        return {"success": False, "error": "Unknown tool", "message": f"There is no tool named {name}."}
    logger.info(f"Tool call {name} for user {ctx.caller.user_id}")
    return await handler(ctx, parse_arguments(arguments))
