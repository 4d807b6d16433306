"""
functions/relay/error_taxonomy.py

WHAT THIS FILE IS FOR
---------------------
This module defines the *single canonical rule* for turning any
failure into a failed CanonicalEnvelope plus the HTTP status returned
to the caller.

Failure sources:
- non-2xx DownstreamResponse from the forwarding client
- TransportFailure from the forwarding client
- IntakeError raised before the downstream call
- anything unexpected in the relay itself

MAPPING
-------
    downstream 404            -> UpstreamUnavailable        404
    downstream 520            -> UpstreamGatewayError       520
    downstream 504 / timeout  -> TimeoutError               504
    other non-2xx downstream  -> UpstreamRejected           same status
    downstream 1xx / 304      -> UpstreamRejected           502
    unreachable / dns / tls   -> DownstreamConnectionError  500
    intake                    -> NoFileProvided 400 / PayloadTooLarge 413
    local failure             -> LocalProcessingError       400 / 500

MESSAGE RULES
-------------
- `message` is fixed per kind and never echoes downstream content,
  so client UIs can render it directly.
- `details` always carries `statusCode` and `body` (raw downstream
  values, or null) for diagnostics.
- The webhook URL never appears in an envelope.

Every function here is pure: no I/O, no logging.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Tuple

from functions.relay.forwarding_client import (
    DownstreamResponse,
    TransportFailure,
    TransportFailureKind,
)
from functions.relay.upload_intake import IntakeError
from schemas.input_schema import UploadRequest
from schemas.output_schema import CanonicalEnvelope, ErrorKind

MappedError = Tuple[int, CanonicalEnvelope]

UPSTREAM_UNAVAILABLE_MESSAGE = (
    "The processing workflow is not active. Activate the webhook workflow and try again."
)
UPSTREAM_GATEWAY_MESSAGE = (
    "The processing service had a temporary connectivity issue. Please try again in a moment."
)
UPSTREAM_REJECTED_MESSAGE = "The processing service returned an error."
CONNECTION_ERROR_MESSAGE = "Failed to connect to the processing service."
LOCAL_PROCESSING_MESSAGE = "Failed to process the uploaded file."

# Statuses that cannot carry the envelope body are reported as this instead.
BODYLESS_STATUS_REPLACEMENT = 502


def timeout_message(timeout_seconds: float) -> str:
    return (
        f"Processing took longer than {timeout_seconds:g} seconds. "
        "Large files may still be processing downstream."
    )


def _details(
    status_code: Optional[int],
    body: Any,
    **extra: Any,
) -> Dict[str, Any]:
    details: Dict[str, Any] = {"statusCode": status_code, "body": body}
    details.update(extra)
    return details


def _caller_status(status: int) -> int:
    if status < 200 or status == 304:
        return BODYLESS_STATUS_REPLACEMENT
    return status


def _envelope(
    *,
    kind: ErrorKind,
    message: str,
    error: str,
    details: Dict[str, Any],
    upload: Optional[UploadRequest] = None,
) -> CanonicalEnvelope:
    return CanonicalEnvelope(
        success=False,
        message=message,
        error=error,
        error_kind=kind,
        details=details,
        filename=upload.original_filename if upload else None,
        file_type=upload.mime_type if upload else None,
    )


def map_downstream_status(
    response: DownstreamResponse,
    upload: Optional[UploadRequest] = None,
    *,
    timeout_seconds: float = 120.0,
) -> MappedError:
    """
    Classify a non-2xx webhook reply.
    """
    status = response.status_code
    if response.is_success:
        raise ValueError(f"status {status} is not an error")

    details = _details(status, response.body)

    if status == 404:
        return 404, _envelope(
            kind=ErrorKind.UPSTREAM_UNAVAILABLE,
            message=UPSTREAM_UNAVAILABLE_MESSAGE,
            error="Downstream webhook not found (404)",
            details=details,
            upload=upload,
        )

    if status == 520:
        return 520, _envelope(
            kind=ErrorKind.UPSTREAM_GATEWAY_ERROR,
            message=UPSTREAM_GATEWAY_MESSAGE,
            error="Downstream gateway error (520)",
            details=details,
            upload=upload,
        )

    if status == 504:
        return 504, _envelope(
            kind=ErrorKind.TIMEOUT_ERROR,
            message=timeout_message(timeout_seconds),
            error="Downstream gateway timeout (504)",
            details=details,
            upload=upload,
        )

    return _caller_status(status), _envelope(
        kind=ErrorKind.UPSTREAM_REJECTED,
        message=UPSTREAM_REJECTED_MESSAGE,
        error=f"Downstream returned error {status}",
        details=details,
        upload=upload,
    )


def map_transport_failure(
    failure: TransportFailure,
    upload: Optional[UploadRequest] = None,
    *,
    timeout_seconds: float = 120.0,
) -> MappedError:
    """
    Classify a failure to reach the webhook at all.
    """
    details = _details(
        None,
        None,
        transportFailure=failure.kind.value,
        reason=failure.reason,
    )

    if failure.kind is TransportFailureKind.TIMEOUT:
        return 504, _envelope(
            kind=ErrorKind.TIMEOUT_ERROR,
            message=timeout_message(timeout_seconds),
            error="Downstream request timed out",
            details=details,
            upload=upload,
        )

    return 500, _envelope(
        kind=ErrorKind.DOWNSTREAM_CONNECTION_ERROR,
        message=CONNECTION_ERROR_MESSAGE,
        error="Failed to connect to downstream webhook",
        details=details,
        upload=upload,
    )


def map_intake_error(exc: IntakeError) -> MappedError:
    """
    Render an intake rejection. The downstream was never called.
    """
    return exc.http_status, _envelope(
        kind=exc.error_kind,
        message=exc.message,
        error=exc.error,
        details=_details(None, None, **exc.details),
    )


def map_local_failure(
    *,
    http_status: int = 500,
    reason: str = "",
    upload: Optional[UploadRequest] = None,
    sub_errors: Optional[list[dict[str, Any]]] = None,
) -> MappedError:
    """
    Render a malformed request (400) or an unexpected relay failure (500).
    """
    extra: Dict[str, Any] = {}
    if reason:
        extra["reason"] = reason
    if sub_errors:
        extra["subErrors"] = sub_errors

    return http_status, _envelope(
        kind=ErrorKind.LOCAL_PROCESSING_ERROR,
        message=LOCAL_PROCESSING_MESSAGE if http_status >= 500 else "The request was malformed.",
        error="Failed to process file" if http_status >= 500 else "Invalid request",
        details=_details(None, None, **extra),
        upload=upload,
    )
