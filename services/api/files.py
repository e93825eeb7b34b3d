"""File upload - stores chat attachments in S3."""
import logging
import uuid

from botocore.exceptions import BotoCoreError, ClientError
from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from services.api.auth import get_caller
from services.extractor.documents import upload_prefix
from shared import settings, s3_client, ensure_s3_bucket
from shared.context import CallerContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])

ALLOWED_CONTENT_TYPES = ("application/pdf", "image/jpeg", "image/png")


@router.post("/upload")
async def upload_file(
    file: UploadFile = File(...),
    caller: CallerContext = Depends(get_caller)
):
    """Store one attachment and return an s3:// location the chat can reference."""
    content_type = file.content_type or "application/octet-stream"
    if content_type not in ALLOWED_CONTENT_TYPES:
        raise HTTPException(status_code=400, detail="File type should be PDF, JPEG or PNG")

    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=400, detail="File is empty")
    if len(raw) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"File size should be less than {settings.max_upload_bytes // (1024 * 1024)}MB"
        )

    name = file.filename or "upload"
    key = f"{upload_prefix(caller.user_id)}{uuid.uuid4()}/{name}"
    try:
        ensure_s3_bucket()
        s3_client.put_object(Bucket=settings.s3_bucket, Key=key, Body=raw, ContentType=content_type)
    except (BotoCoreError, ClientError) as e:
        logger.error(f"Upload of {name} failed: {e}")
        raise HTTPException(status_code=500, detail="Upload failed")

    logger.info(f"Stored {name} ({len(raw)} bytes) at s3://{settings.s3_bucket}/{key}")
    return {
        "url": f"s3://{settings.s3_bucket}/{key}",
        "name": name,
        "contentType": content_type,
        "size": len(raw),
    }
