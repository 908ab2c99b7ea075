from __future__ import annotations

import re

_ANSI_CSI_PATTERN = re.compile(r"\x1b\[[0-?]*[ -/]*[@-~]")
_ANSI_OSC_PATTERN = re.compile(r"\x1b\][^\x07\x1b]*(?:\x07|\x1b\\)")


def sanitize(raw: str) -> str:
    """
    Strip terminal control sequences from one streamed fragment.

    Removes CSI (``ESC [ ... final``) and OSC (``ESC ] ... BEL|ST``) sequences and
    carriage returns. Newlines and printable text are kept untouched.
    """
    text = raw or ""
    # Removing one sequence can join the halves of another; repeat until stable.
    while True:
        cleaned = _ANSI_CSI_PATTERN.sub("", text)
        cleaned = _ANSI_OSC_PATTERN.sub("", cleaned)
        cleaned = cleaned.replace("\r", "")
        if cleaned == text:
            return cleaned
        text = cleaned
