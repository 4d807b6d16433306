"""
functions/relay/forwarding_client.py

WHAT THIS FILE IS FOR
---------------------
This module sends one captured upload to the downstream webhook as a
multipart POST and reports what happened as a *tagged result*:

    ForwardResult = DownstreamResponse | TransportFailure

It exists to:
- Build the outbound multipart body (single part `file`, filename and
  content type passed through verbatim)
- Apply the total time budget (Settings.timeout_seconds)
- Classify network-level failures into distinct kinds
  (timeout / unreachable / dns / tls)
- Log the outbound call and the raw reply for operators

STATUS POLICY
-------------
Every HTTP status the webhook returns, including 4xx and 5xx, is a
normal DownstreamResponse. This client never raises on status; the
response normalizer and error taxonomy decide what success means.

WHAT THIS FILE IS NOT FOR
-------------------------
This module is NOT responsible for:
- Retry logic (one attempt per request, always)
- Deciding success or failure semantics
- Building caller-facing envelopes

CONCURRENCY
-----------
A fresh httpx.AsyncClient is opened per call and closed when the call
completes. Nothing is shared between concurrent uploads.
"""

from __future__ import annotations

import asyncio
import json
import socket
import ssl
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Union

import httpx
import structlog

from functions.utils.settings import Settings
from schemas.input_schema import UploadRequest

logger = structlog.get_logger(__name__)

BODY_LOG_SNIPPET_CHARS = 2000

_DNS_FAILURE_HINTS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)


class TransportFailureKind(str, Enum):
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    DNS = "dns"
    TLS = "tls"


@dataclass(frozen=True)
class DownstreamResponse:
    """Raw webhook reply. `body` is decoded JSON, decoded text, or None when empty."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    content: bytes = b""

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300


@dataclass(frozen=True)
class TransportFailure:
    """The webhook could not be reached or did not answer in time."""

    kind: TransportFailureKind
    reason: str = ""


ForwardResult = Union[DownstreamResponse, TransportFailure]


def decode_body(content: bytes) -> Any:
    """
    Decode a downstream payload.

    - empty / whitespace-only -> None
    - valid JSON              -> the JSON value
    - anything else           -> text (UTF-8, undecodable bytes replaced);
                                 this includes JSON nested too deeply to decode
    """
    if not content or not content.strip():
        return None
    text = content.decode("utf-8", errors="replace")
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return text


def classify_connect_error(exc: BaseException) -> TransportFailureKind:
    """
    Tell DNS and TLS failures apart from plain connection failures.

    httpx wraps the original socket / ssl error, so the exception chain
    is walked looking for it. The message is checked as a fallback for
    resolvers that surface a bare OSError.
    """
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        if isinstance(current, ssl.SSLError):
            return TransportFailureKind.TLS
        if isinstance(current, socket.gaierror):
            return TransportFailureKind.DNS
        current = current.__cause__ or current.__context__

    message = str(exc).lower()
    if "certificate" in message or "ssl" in message:
        return TransportFailureKind.TLS
    if any(hint in message for hint in _DNS_FAILURE_HINTS):
        return TransportFailureKind.DNS
    return TransportFailureKind.UNREACHABLE


class ForwardingClient:
    """
    Single-shot multipart client for the downstream webhook.

    `transport` is an optional httpx transport, used by tests to stand in
    for the webhook (httpx.MockTransport).
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not settings.webhook_url:
            raise ValueError("webhook_url is required")

        self.settings = settings
        self._url = str(settings.webhook_url)
        self._timeout = settings.timeout_seconds
        self._transport = transport

    async def forward(
        self,
        upload: UploadRequest,
        correlation_id: Optional[str] = None,
    ) -> ForwardResult:
        headers = {
            "Accept": "application/json",
            "Connection": "keep-alive",
        }
        if correlation_id:
            headers[self.settings.correlation_header] = correlation_id

        files = {"file": (upload.original_filename, upload.content, upload.mime_type)}

        logger.info(
            "relay_forward_started",
            webhook_host=self.settings.webhook_host,
            filename=upload.original_filename,
            content_type=upload.mime_type,
            size_bytes=upload.size_bytes,
            timeout_seconds=self._timeout,
        )

        try:
            resp = await asyncio.wait_for(
                self._post(files=files, headers=headers),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            return self._failure(TransportFailureKind.TIMEOUT, exc)
        except httpx.ConnectError as exc:
            return self._failure(classify_connect_error(exc), exc)
        except httpx.TransportError as exc:
            return self._failure(TransportFailureKind.UNREACHABLE, exc)

        result = DownstreamResponse(
            status_code=resp.status_code,
            headers=dict(resp.headers),
            body=decode_body(resp.content),
            content=resp.content,
        )
        self._log_response(result)
        return result

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    async def _post(self, *, files: Dict[str, Any], headers: Dict[str, str]) -> httpx.Response:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            transport=self._transport,
            follow_redirects=False,
        ) as client:
            return await client.post(self._url, files=files, headers=headers)

    def _failure(self, kind: TransportFailureKind, exc: BaseException) -> TransportFailure:
        # type name only: httpx messages can embed the webhook URL
        reason = type(exc).__name__
        logger.warning(
            "relay_transport_failure",
            webhook_host=self.settings.webhook_host,
            failure_kind=kind.value,
            reason=reason,
        )
        return TransportFailure(kind=kind, reason=reason)

    def _log_response(self, result: DownstreamResponse) -> None:
        snippet = result.content[:BODY_LOG_SNIPPET_CHARS].decode("utf-8", errors="replace")

        logger.info(
            "relay_downstream_response",
            status_code=result.status_code,
            headers=result.headers,
            content_length=len(result.content),
        )

        if not result.is_success:
            logger.warning(
                "relay_downstream_error_response",
                status_code=result.status_code,
                response_snippet=snippet,
            )
        elif self.settings.enable_debug_metadata:
            logger.info("relay_downstream_body", response_snippet=snippet)
        else:
            logger.debug("relay_downstream_body", response_snippet=snippet)
