"""
functions/presentation/progress_phases.py

Waiting-indicator text for front ends, derived from elapsed time only.

This is cosmetic. The relay never reports progress; it returns a single
final envelope. A client may call phase_text() on a timer while an
upload is in flight to show something more useful than a spinner.

It is a library helper for front ends and Python clients. Nothing on
the relay request path (api.py, functions/relay/*) imports it.
"""

from __future__ import annotations

from typing import Sequence, Tuple

# (elapsed seconds threshold, text), ascending
DEFAULT_PHASES: Tuple[Tuple[float, str], ...] = (
    (0.0, "Uploading file..."),
    (10.0, "Processing file..."),
    (30.0, "Still processing. Larger files can take a while..."),
    (100.0, "Almost at the time limit. Waiting for the final result..."),
)


def phase_text(
    elapsed_seconds: float,
    phases: Sequence[Tuple[float, str]] = DEFAULT_PHASES,
) -> str:
    """Return the text of the last phase whose threshold has been reached."""
    if not phases:
        raise ValueError("phases must not be empty")

    text = phases[0][1]
    for threshold, label in phases:
        if elapsed_seconds >= threshold:
            text = label
        else:
            break
    return text
