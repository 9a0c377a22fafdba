"""Deterministic calendar colors.

Sources without a backend-supplied color get one derived from a hash of their
title, so the same calendar keeps its color across refreshes without any
stored state.
"""

from __future__ import annotations

DEFAULT_COLORS = (
    "#0078d4", "#038387", "#00bcf2", "#40e0d0", "#008272",
    "#107c10", "#bad80a", "#ffb900", "#ff8c00", "#d13438",
    "#e3008c", "#881798", "#8764b8", "#00188f", "#002050",
    "#5c2d91", "#ca5010", "#986f0b", "#498205", "#004b1c",
)

# Named mailbox calendar colors; "auto" means the backend did not choose one.
MAILBOX_COLORS = {
    "lightblue": "#0078d4",
    "lightgreen": "#107c10",
    "lightorange": "#ff8c00",
    "lightgray": "#737373",
    "lightyellow": "#ffb900",
    "lightteal": "#038387",
    "lightpink": "#e3008c",
    "lightbrown": "#8e562e",
    "lightred": "#d13438",
    "maxcolor": "#881798",
}


def _hash32(text: str) -> int:
    """31-multiplier string hash wrapped to a signed 32-bit integer."""
    h = 0
    for ch in text:
        h = (ord(ch) + ((h << 5) - h)) & 0xFFFFFFFF
    return h - (1 << 32) if h & 0x80000000 else h


def color_from_string(text: str) -> str:
    return DEFAULT_COLORS[abs(_hash32(text)) % len(DEFAULT_COLORS)]


def mailbox_color(name: str | None) -> str | None:
    """Map a named mailbox color to hex, or None when it is unset/"auto"."""
    if not name:
        return None
    return MAILBOX_COLORS.get(name.replace("_", "").lower())
