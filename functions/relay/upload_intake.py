"""
functions/relay/upload_intake.py

WHAT THIS FILE IS FOR
---------------------
This module turns the inbound multipart part named `file` into an
UploadRequest, or rejects it before any network activity happens.

Rejections are raised as IntakeError subclasses. Each one carries the
ErrorKind and caller-facing HTTP status so the API layer can render
the canonical envelope without re-classifying anything.

SIZE LIMIT
----------
The limit is checked twice:
- against the part size Starlette already knows (when available)
- while reading, by reading at most `max_bytes + 1` bytes

so an oversized file is never fully buffered and never forwarded.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import structlog
from fastapi import UploadFile

from schemas.input_schema import UploadRequest
from schemas.output_schema import ErrorKind

logger = structlog.get_logger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"


class IntakeError(Exception):
    """Base class for failures resolved before the downstream call."""

    error_kind: ErrorKind = ErrorKind.LOCAL_PROCESSING_ERROR
    http_status: int = 400
    message: str = "The upload could not be processed"
    error: str = "Invalid upload"

    def __init__(self, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(self.message)
        self.details = details or {}


class NoFileProvidedError(IntakeError):
    error_kind = ErrorKind.NO_FILE_PROVIDED
    http_status = 400
    message = "No file was provided. Attach a file in the 'file' field."
    error = "No file uploaded"


class PayloadTooLargeError(IntakeError):
    error_kind = ErrorKind.PAYLOAD_TOO_LARGE
    http_status = 413
    message = "The file exceeds the maximum allowed upload size."
    error = "File too large"


async def read_upload(file: Optional[UploadFile], *, max_bytes: int) -> UploadRequest:
    """
    Capture the uploaded file into memory.

    Raises:
        NoFileProvidedError: no part named `file` was submitted.
        PayloadTooLargeError: the file is larger than `max_bytes`.
    """
    if file is None:
        logger.info("upload_missing_file")
        raise NoFileProvidedError()

    declared_size = getattr(file, "size", None)
    if declared_size is not None and declared_size > max_bytes:
        logger.info(
            "upload_rejected_too_large",
            filename=file.filename,
            size_bytes=declared_size,
            max_bytes=max_bytes,
        )
        raise PayloadTooLargeError({"maxBytes": max_bytes, "sizeBytes": declared_size})

    try:
        content = await file.read(max_bytes + 1)
    finally:
        await file.close()

    if len(content) > max_bytes:
        logger.info(
            "upload_rejected_too_large",
            filename=file.filename,
            size_bytes_at_least=len(content),
            max_bytes=max_bytes,
        )
        # size was not declared; only the bytes read so far are known
        raise PayloadTooLargeError({"maxBytes": max_bytes, "sizeBytesAtLeast": len(content)})

    upload = UploadRequest.from_bytes(
        content,
        filename=file.filename or "",
        mime_type=file.content_type or DEFAULT_MIME_TYPE,
    )

    logger.info(
        "upload_received",
        filename=upload.original_filename,
        mime_type=upload.mime_type,
        size_bytes=upload.size_bytes,
    )
    return upload
