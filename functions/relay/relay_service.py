"""
functions/relay/relay_service.py

WHAT THIS FILE IS FOR
---------------------
This module wires the relay pipeline for one captured upload:

    UploadRequest
      -> ForwardingClient.forward()
          -> DownstreamResponse 2xx      -> normalize_success()
          -> DownstreamResponse non-2xx  -> map_downstream_status()
          -> TransportFailure            -> map_transport_failure()
      -> (caller status, CanonicalEnvelope)

CALL FLOW CONTEXT
-----------------
FastAPI (api.py)
  → read_upload()                    (intake, may reject early)
  → RelayService.relay()
      → POST <webhook_url>           (single attempt, time-bounded)

Each downstream outcome is classified exactly once, here. The service
holds no per-request state, so concurrent uploads share nothing but
the read-only settings.
"""

from __future__ import annotations

from typing import Optional, Tuple

import structlog

from functions.relay.error_taxonomy import map_downstream_status, map_transport_failure
from functions.relay.forwarding_client import ForwardingClient, TransportFailure
from functions.relay.response_normalizer import normalize_success
from functions.utils.settings import Settings
from schemas.input_schema import UploadRequest
from schemas.output_schema import CanonicalEnvelope

logger = structlog.get_logger(__name__)


class RelayService:
    """
    Forward one upload and turn the outcome into the canonical envelope.
    """

    def __init__(self, settings: Settings, forwarder: Optional[ForwardingClient] = None) -> None:
        self.settings = settings
        self.forwarder = forwarder or ForwardingClient(settings)

    async def relay(
        self,
        upload: UploadRequest,
        *,
        correlation_id: Optional[str] = None,
    ) -> Tuple[int, CanonicalEnvelope]:
        result = await self.forwarder.forward(upload, correlation_id=correlation_id)
        timeout_seconds = self.settings.timeout_seconds

        if isinstance(result, TransportFailure):
            status, envelope = map_transport_failure(
                result, upload, timeout_seconds=timeout_seconds
            )
        elif result.is_success:
            status, envelope = 200, normalize_success(result, upload)
        else:
            status, envelope = map_downstream_status(
                result, upload, timeout_seconds=timeout_seconds
            )

        logger.info(
            "relay_completed",
            success=envelope.success,
            caller_status=status,
            error_kind=envelope.error_kind,
            filename=upload.original_filename,
        )
        return status, envelope
