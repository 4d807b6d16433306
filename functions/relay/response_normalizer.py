"""
functions/relay/response_normalizer.py

WHAT THIS FILE IS FOR
---------------------
This module turns a successful (2xx) webhook reply into the canonical
success envelope.

It is responsible for:
- Accepting any body shape (object, empty, plain text, list...)
- Guaranteeing `data` is always a mapping
- Extracting structured JSON that workflows embed in a free-form
  `output` string (typically LLM text) into `parsedOutput`

EXTRACTION RULES
----------------
Applied only when the body is an object whose `output` is a string:

1) Fenced block: the text between a ```json fence and the next ```
   fence is parsed as JSON.
2) Bare object: otherwise, if the trimmed string starts with `{` and
   ends with `}`, the whole string is parsed as JSON.

Rule 1 wins whenever a fence is present; rule 2 is then not attempted,
even if the fenced text fails to parse. Parsing is best-effort: a
failure leaves the body untouched and never fails the request.

DESIGN CONSTRAINTS
------------------
- Pure: the input body is never mutated
- Deterministic: normalizing an already-normalized `data` again
  yields the same mapping
"""

from __future__ import annotations

import json
import re
from typing import Any, Dict, Tuple

import structlog

from functions.relay.forwarding_client import DownstreamResponse
from schemas.input_schema import UploadRequest
from schemas.output_schema import CanonicalEnvelope

logger = structlog.get_logger(__name__)

EMPTY_BODY_MESSAGE = "File processed successfully (no detailed response)"
SUCCESS_MESSAGE = "File uploaded successfully"

OUTPUT_FIELD = "output"
PARSED_OUTPUT_FIELD = "parsedOutput"

_FENCED_JSON_RE = re.compile(r"```json[ \t]*\r?\n?(.*?)```", re.DOTALL)

_NOT_FOUND = object()


def extract_parsed_output(text: str) -> Tuple[bool, Any]:
    """
    Apply the extraction rules to one `output` string.

    Returns (found, value). `found` is False when no rule matched or the
    matched text is not valid JSON.
    """
    value: Any = _NOT_FOUND

    fenced = _FENCED_JSON_RE.search(text)
    if fenced is not None:
        value = _loads_or_missing(fenced.group(1).strip(), rule="fenced")
    else:
        stripped = text.strip()
        if stripped.startswith("{") and stripped.endswith("}"):
            value = _loads_or_missing(stripped, rule="bare")

    if value is _NOT_FOUND:
        return False, None
    return True, value


def _loads_or_missing(candidate: str, *, rule: str) -> Any:
    try:
        return json.loads(candidate)
    except (ValueError, RecursionError) as exc:
        logger.debug("parsed_output_not_json", rule=rule, error=str(exc))
        return _NOT_FOUND


def _is_empty(body: Any) -> bool:
    return body is None or body == "" or body == {}


def normalize_payload(body: Any) -> Dict[str, Any]:
    """
    Flatten a 2xx body into the envelope's `data` mapping.
    """
    if _is_empty(body):
        return {"message": EMPTY_BODY_MESSAGE}

    if not isinstance(body, dict):
        # plain text, lists and scalars are exposed as `output`
        body = {OUTPUT_FIELD: body}

    data = dict(body)

    output = data.get(OUTPUT_FIELD)
    if isinstance(output, str):
        found, parsed = extract_parsed_output(output)
        if found:
            data[PARSED_OUTPUT_FIELD] = parsed
            logger.info(
                "parsed_output_extracted",
                parsed_type=type(parsed).__name__,
                keys=sorted(parsed.keys()) if isinstance(parsed, dict) else None,
            )

    return data


def normalize_success(response: DownstreamResponse, upload: UploadRequest) -> CanonicalEnvelope:
    """
    Build the success envelope for a 2xx downstream reply.
    """
    if not response.is_success:
        raise ValueError(f"normalize_success called with status {response.status_code}")

    data = normalize_payload(response.body)

    return CanonicalEnvelope(
        success=True,
        message=EMPTY_BODY_MESSAGE if _is_empty(response.body) else SUCCESS_MESSAGE,
        data=data,
        filename=upload.original_filename,
        file_type=upload.mime_type,
    )
