# -------------------------------------------------------------------
# schemas/output_schema.py
#
# WHAT THIS FILE IS FOR
# --------------------
# This module defines the **canonical response envelope** returned by
# the relay for every request, successful or not, plus the closed set
# of error kinds a failed envelope may carry.
#
# NAMING CONVENTION (IMPORTANT)
# -----------------------------
# All fields in this file use **snake_case** by design.
#
# At the API boundary (in api.py), envelopes are converted to
# **camelCase JSON** using:
#     convert_keys_snake_to_camel()
#
# The `data` and `details` containers are listed in
# Settings.preserve_container_keys, so downstream payload keys inside
# them reach the caller exactly as the webhook sent them.
#
# WHAT THIS FILE IS NOT FOR
# ------------------------
# This module does NOT:
# - Decide success or failure
# - Map HTTP statuses to error kinds
# - Perform JSON key conversion
# -------------------------------------------------------------------

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict


class ErrorKind(str, Enum):
    """
    Closed set of failure kinds exposed as `errorKind`.

    Values are part of the public contract; clients switch on them.
    """

    NO_FILE_PROVIDED = "NoFileProvided"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    UPSTREAM_UNAVAILABLE = "UpstreamUnavailable"
    UPSTREAM_GATEWAY_ERROR = "UpstreamGatewayError"
    TIMEOUT_ERROR = "TimeoutError"
    UPSTREAM_REJECTED = "UpstreamRejected"
    DOWNSTREAM_CONNECTION_ERROR = "DownstreamConnectionError"
    LOCAL_PROCESSING_ERROR = "LocalProcessingError"


class CanonicalEnvelope(BaseModel):
    """
    Standard response envelope for the relay.

    NOTE:
    - Success envelopes carry `data`; failure envelopes carry
      `error`, `error_kind` and `details`.
    - Constructed once per request and never mutated.
    """

    model_config = ConfigDict(extra="forbid", frozen=True, use_enum_values=True)

    success: bool
    message: str

    # Success only: downstream payload (+ parsedOutput when extracted)
    data: Optional[Dict[str, Any]] = None

    # Copied from the upload, never from the downstream reply
    filename: Optional[str] = None
    file_type: Optional[str] = None

    # Failure only
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    details: Optional[Dict[str, Any]] = None
