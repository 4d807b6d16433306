"""
functions/utils/json_naming_converter.py

WHAT THIS FILE IS FOR
---------------------
Envelope models are snake_case in Python (`file_type`, `error_kind`);
callers receive camelCase (`fileType`, `errorKind`). This module does
that conversion once, at the API boundary.

PRESERVED CONTAINERS
--------------------
The downstream payload is opaque to the relay. Its keys (including
snake_case ones such as `file_type` inside `parsedOutput`) must reach
the caller exactly as the webhook produced them.

Keys listed in `preserve_container_keys` (Settings: {"data", "details"})
are themselves converted, but their values are copied through untouched.

    {"file_type": "application/pdf", "data": {"thread_id": "t1"}}
      -> {"fileType": "application/pdf", "data": {"thread_id": "t1"}}

Pure transformation: no I/O, no logging, input never mutated.
"""

from __future__ import annotations

from typing import Any, Iterable, Optional


def snake_to_camel(s: str) -> str:
    """
    Convert snake_case string to camelCase.

    - Leaves strings without '_' unchanged
    - Preserves leading/trailing underscores
    """
    if "_" not in s:
        return s

    core = s.strip("_")
    if not core:
        return s

    leading = s[: len(s) - len(s.lstrip("_"))]
    trailing = s[len(s.rstrip("_")):]

    first, *rest = [p for p in core.split("_") if p]
    return leading + first + "".join(p[:1].upper() + p[1:] for p in rest) + trailing


def convert_keys_snake_to_camel(
    obj: Any,
    *,
    preserve_container_keys: Optional[Iterable[str]] = None,
) -> Any:
    """
    Recursively convert dict keys from snake_case to camelCase.

    Args:
        obj:
            Any JSON-like object (dict / list / primitive)
        preserve_container_keys:
            Keys (snake_case or camelCase) whose values are passed
            through verbatim after the key itself is converted.

    Returns:
        New object with converted keys
    """
    preserve = set(preserve_container_keys or [])

    if isinstance(obj, list):
        return [convert_keys_snake_to_camel(x, preserve_container_keys=preserve) for x in obj]

    if not isinstance(obj, dict):
        return obj

    out: dict[Any, Any] = {}
    for key, value in obj.items():
        if not isinstance(key, str):
            out[key] = value
            continue

        camel_key = snake_to_camel(key)
        if key in preserve or camel_key in preserve:
            out[camel_key] = value
        else:
            out[camel_key] = convert_keys_snake_to_camel(value, preserve_container_keys=preserve)

    return out
