from fastapi import APIRouter, Depends, Request
import asyncio
import logging
from pydantic import ValidationError

from orderscan.core.errors import InvalidUploadError, OrderScanError
from orderscan.schemas import (
    CacheStatsResponse,
    ClassifyRequest,
    ClassifyResponse,
    ExtractRequest,
    OrderExtraction,
)
from orderscan.services.file_handoff import FileHandoff, UploadedDocument

router = APIRouter()
logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/pdf"


def get_handoff(request: Request) -> FileHandoff:
    return request.app.state.file_handoff


def get_vision_client(request: Request):
    return request.app.state.vision_client


async def _read_upload(request: Request) -> UploadedDocument:
    """Accept either a multipart upload or a JSON body with base64 data."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise InvalidUploadError(error="file is required", action="Attach a PDF or image file.")
        mime_type = form.get("mimeType") or upload.content_type or DEFAULT_MIME_TYPE
        data = await upload.read()
        return UploadedDocument.from_bytes(data, mime_type, upload.filename)

    try:
        body = await request.json()
    except ValueError:
        raise InvalidUploadError(error="Request body must be multipart form data or JSON")
    if not isinstance(body, dict):
        raise InvalidUploadError(error="Request body must be a JSON object")
    try:
        req = ClassifyRequest.model_validate(body)
    except ValidationError as e:
        raise InvalidUploadError(error=_describe_invalid_field(e))
    return UploadedDocument.from_base64(req.file_base64, req.mime_type)


def _describe_invalid_field(exc: ValidationError) -> str:
    first = exc.errors()[0]
    field = first["loc"][0] if first.get("loc") else "body"
    if first["type"] in ("missing", "string_too_short"):
        return f"{field} is required"
    return f"{field} must be a string"


@router.post("/classify", response_model=ClassifyResponse, response_model_by_alias=True)
async def classify_document(
    request: Request,
    handoff: FileHandoff = Depends(get_handoff),
    vision=Depends(get_vision_client),
):
    """Classify an uploaded document and cache it for the extract step."""
    handoff.maintenance.start()
    document = await _read_upload(request)
    logger.info(f"Classify request: mimeType={document.mime_type}, ~{document.size_bytes} bytes")

    handoff.prepare(document)
    try:
        classification = await asyncio.to_thread(vision.classify, document)
    except OrderScanError:
        raise
    except Exception as e:
        logger.exception("Document classification failed unexpectedly")
        raise OrderScanError(error="Failed to check document type") from e

    token = handoff.stash(document)
    return ClassifyResponse(file_id=token, **classification.model_dump())


@router.post("/extract", response_model=OrderExtraction, response_model_by_alias=True)
async def extract_order(
    req: ExtractRequest,
    handoff: FileHandoff = Depends(get_handoff),
    vision=Depends(get_vision_client),
):
    """Extract order fields from a cached upload (fileId) or from inline base64."""
    entry = None
    if req.file_id:
        entry = handoff.redeem(req.file_id)
        document = UploadedDocument(entry.payload, entry.mime_type)
    else:
        document = UploadedDocument.from_base64(req.file_base64, req.mime_type)
        handoff.cache.ensure_fits(document.size_bytes)

    try:
        return await asyncio.to_thread(vision.extract_order, document)
    except OrderScanError:
        raise
    except Exception as e:
        logger.exception("Order extraction failed unexpectedly")
        raise OrderScanError(error="Failed to extract order data") from e
    finally:
        if entry is not None:
            handoff.release(entry)


@router.get("/cache-stats", response_model=CacheStatsResponse, response_model_by_alias=True)
def cache_stats(handoff: FileHandoff = Depends(get_handoff)):
    return CacheStatsResponse(**handoff.cache.stats())
