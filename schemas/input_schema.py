# -------------------------------------------------------------------
# schemas/input_schema.py
#
# WHAT THIS FILE IS FOR
# --------------------
# This module defines the **captured upload** handed from the intake
# stage to the forwarding client.
#
# An UploadRequest is request-scoped: it is built once per inbound
# call, held in memory only, and discarded when the call completes.
#
# PASS-THROUGH RULE
# -----------------
# `original_filename` and `mime_type` are copied verbatim from the
# inbound multipart part. They are never renamed, normalized or
# sniffed from the content, because the downstream workflow relies
# on them to route the file.
#
# WHAT THIS FILE IS NOT FOR
# ------------------------
# This module does NOT:
# - Read the inbound request (see functions/relay/upload_intake.py)
# - Enforce the configured size limit
# - Build the outbound multipart body
# -------------------------------------------------------------------

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator


class UploadRequest(BaseModel):
    """
    A single file captured from the intake endpoint.
    """

    model_config = ConfigDict(frozen=True)

    original_filename: str
    mime_type: str
    size_bytes: int = Field(..., ge=0)
    content: bytes = Field(..., repr=False)

    @model_validator(mode="after")
    def _size_matches_content(self) -> "UploadRequest":
        if self.size_bytes != len(self.content):
            raise ValueError("size_bytes must equal len(content)")
        return self

    @classmethod
    def from_bytes(cls, content: bytes, *, filename: str, mime_type: str) -> "UploadRequest":
        return cls(
            original_filename=filename,
            mime_type=mime_type,
            size_bytes=len(content),
            content=content,
        )
