"""
CalorieSnap Backend: Upload Route Handlers
===========================================

What:  Upload target issuing, raw/multipart image upload, serving and
       deleting stored images.
Who:   Called by the frontend upload widget (Uppy) and by <img> tags.

Request Flow (local storage):
    1. POST /api/objects/upload      → {"uploadURL": ".../api/upload-image", "method": "PUT"}
    2. PUT  /api/upload-image (raw)  → text/plain image URL
    3. POST /api/analyze-meal        → analysis (see routes/analysis.py)

Request Flow (S3 storage):
    1. POST /api/objects/upload      → presigned bucket URL + objectURL
    2. PUT  <presigned URL>          (straight to the bucket)
    3. POST /api/analyze-meal with objectURL
"""

import logging
import mimetypes

from fastapi import APIRouter, Depends, File, Request, Response, UploadFile
from fastapi.responses import PlainTextResponse

from caloriesnap.exceptions import NotFoundError
from caloriesnap.schemas.meal import ErrorResponse, UploadImageResponse, UploadTargetResponse
from caloriesnap.services.file_service import FileService, get_file_service
from caloriesnap.services.storage_base import validate_key

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Uploads"])


def _content_length(request: Request):
    value = request.headers.get("content-length")
    return int(value) if value and value.isdigit() else None


@router.post(
    "/api/objects/upload",
    response_model=UploadTargetResponse,
    response_model_exclude_none=True,
    responses={500: {"description": "Upload URL could not be issued", "model": ErrorResponse}},
    summary="Get an upload destination for a meal photo",
)
async def request_upload_url(
    request: Request,
    file_service: FileService = Depends(get_file_service),
) -> UploadTargetResponse:
    """The request body, if any, is ignored."""
    target = await file_service.request_upload_target(str(request.base_url))
    return UploadTargetResponse(
        upload_url=target.url,
        method=target.method,
        object_url=target.object_url,
    )


@router.put(
    "/api/upload-image",
    response_class=PlainTextResponse,
    responses={
        200: {"description": "URL of the stored image", "content": {"text/plain": {}}},
        400: {"description": "Empty body or not an image", "model": ErrorResponse},
        413: {"description": "Image larger than the upload limit", "model": ErrorResponse},
    },
    summary="Upload raw image bytes",
)
async def put_image(
    request: Request,
    file_service: FileService = Depends(get_file_service),
) -> PlainTextResponse:
    """
    Store the raw request body as an image.

    The body is streamed and rejected as soon as it passes the size cap.
    The response is the bare image URL, which is what Uppy's XHR upload
    plugin expects.
    """
    content_length = _content_length(request)
    content = await file_service.read_limited(request.stream(), content_length)

    logger.info("Received raw image upload: %d bytes", len(content))
    stored = await file_service.store_upload(content, str(request.base_url))
    return PlainTextResponse(stored.url)


@router.post(
    "/api/upload-image",
    response_model=UploadImageResponse,
    responses={
        400: {"description": "No file, or not an image", "model": ErrorResponse},
        413: {"description": "Image larger than the upload limit", "model": ErrorResponse},
    },
    summary="Upload an image as multipart form data",
)
async def post_image(
    request: Request,
    image: UploadFile = File(..., description="Meal photo (JPEG, PNG, WEBP or GIF, max 10MB)"),
    file_service: FileService = Depends(get_file_service),
) -> UploadImageResponse:
    try:
        file_service.validate_size(image.size, None)
        content = await image.read()
        logger.info(
            "Received multipart image upload: filename=%s, size=%d bytes",
            image.filename or "unknown",
            len(content),
        )
        stored = await file_service.store_upload(content, str(request.base_url))
    finally:
        await image.close()

    return UploadImageResponse(image_url=stored.url, filename=stored.filename)


@router.get(
    "/uploads/{object_key:path}",
    responses={
        200: {"description": "Image bytes", "content": {"image/jpeg": {}}},
        404: {"description": "No image stored under this key", "model": ErrorResponse},
    },
    summary="Serve a stored image",
)
async def serve_image(
    object_key: str,
    file_service: FileService = Depends(get_file_service),
) -> Response:
    validate_key(object_key)
    content = await file_service.retrieve_bytes(object_key)
    media_type = mimetypes.guess_type(object_key)[0] or "application/octet-stream"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Cache-Control": "public, max-age=86400"},
    )


@router.delete(
    "/api/objects/{object_key:path}",
    status_code=204,
    responses={404: {"description": "No image stored under this key", "model": ErrorResponse}},
    summary="Delete a stored image",
)
async def delete_image(
    object_key: str,
    file_service: FileService = Depends(get_file_service),
) -> Response:
    validate_key(object_key)
    if not await file_service.delete_bytes(object_key):
        raise NotFoundError(resource="image", resource_id=object_key)
    return Response(status_code=204)
