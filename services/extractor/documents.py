"""Attachment loading - resolves a location to bytes and prepares model input."""
import base64
import binascii
import io
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from urllib.parse import unquote, urlparse

import pdfplumber
import pytesseract
from botocore.exceptions import BotoCoreError, ClientError
from pdf2image import convert_from_bytes
from PIL import Image, UnidentifiedImageError

from shared import s3_client, settings

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
IMAGE_CONTENT_TYPES = ("image/jpeg", "image/png")

# Below this many characters a PDF is treated as scanned and OCR'd
MIN_DIGITAL_TEXT_LENGTH = 100
OCR_DPI = 200

# Key prefix that POST /files/upload writes under, followed by the user id
UPLOAD_PREFIX = "uploads/"


class DocumentError(Exception):
    """An attachment could not be fetched or read."""


@dataclass
class PreparedDocument:
    """What the extraction model gets to see of one attachment."""

    text: str = ""
    images: List[bytes] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.text.strip() and not self.images


def _read_data_url(url: str) -> bytes:
    header, _, payload = url.partition(",")
    if header.endswith(";base64"):
        return base64.b64decode(payload, validate=True)
    return unquote(payload).encode("utf-8")


def upload_prefix(owner: Optional[str] = None) -> str:
    return f"{UPLOAD_PREFIX}{owner}/" if owner else UPLOAD_PREFIX


def is_upload_location(url: str, owner: Optional[str] = None) -> bool:
    """True for inline data or an object under the (caller's) upload prefix in our bucket."""
    if url.startswith("data:"):
        return True
    parsed = urlparse(url)
    return (
        parsed.scheme == "s3"
        and parsed.netloc == settings.s3_bucket
        and parsed.path.lstrip("/").startswith(upload_prefix(owner))
    )


def fetch_bytes(url: str, owner: Optional[str] = None) -> bytes:
    """Read an attachment from a data: URL or from the upload area of the S3 bucket.

    With ``owner`` set only that user's uploads are readable.
    """
    if not is_upload_location(url, owner):
        raise DocumentError(f"Attachment location not allowed: {url[:80]}")
    try:
        if url.startswith("data:"):
            return _read_data_url(url)
        parsed = urlparse(url)
        response = s3_client.get_object(Bucket=parsed.netloc, Key=parsed.path.lstrip("/"))
        return response["Body"].read()
    except (binascii.Error, BotoCoreError, ClientError) as e:
        raise DocumentError(f"Could not read attachment {url[:80]}: {e}") from e


def ocr_pdf(pdf_bytes: bytes) -> str:
    images = convert_from_bytes(pdf_bytes, dpi=OCR_DPI)
    return "\n".join(pytesseract.image_to_string(img) for img in images)


def extract_pdf_text(pdf_bytes: bytes) -> str:
    """Extract text from PDF - tries digital first, then OCR."""
    try:
        text_parts = []
        with pdfplumber.open(io.BytesIO(pdf_bytes)) as pdf:
            for page_num, page in enumerate(pdf.pages, 1):
                page_text = page.extract_text()
                if page_text:
                    text_parts.append(f"--- Page {page_num} ---\n{page_text}")
        full_text = "\n".join(text_parts)
    except Exception as e:
        logger.error(f"Error extracting text from PDF: {e}")
        full_text = ""

    if len(full_text.strip()) < MIN_DIGITAL_TEXT_LENGTH:
        logger.info("Digital extraction yielded little text, trying OCR...")
        try:
            full_text = ocr_pdf(pdf_bytes)
        except Exception as e:
            raise DocumentError(f"OCR failed: {e}") from e

    return full_text


def normalize_image(image_bytes: bytes) -> bytes:
    """Re-encode an image as PNG so the vision model gets one known format."""
    try:
        image = Image.open(io.BytesIO(image_bytes))
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
        return buffer.getvalue()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError) as e:
        raise DocumentError(f"Unreadable image: {e}") from e


def prepare_document(data: bytes, content_type: str) -> PreparedDocument:
    if content_type == PDF_CONTENT_TYPE:
        return PreparedDocument(text=extract_pdf_text(data))
    if content_type in IMAGE_CONTENT_TYPES:
        return PreparedDocument(images=[normalize_image(data)])
    if isinstance(content_type, str) and content_type.startswith("text/"):
        return PreparedDocument(text=data.decode("utf-8", errors="replace"))
    raise DocumentError(f"Unsupported content type: {content_type}")


def load_document(url: str, content_type: str, owner: Optional[str] = None) -> PreparedDocument:
    document = prepare_document(fetch_bytes(url, owner), content_type)
    if document.is_empty:
        raise DocumentError("No readable content in attachment")
    return document
