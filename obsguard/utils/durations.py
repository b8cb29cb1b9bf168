"""Duration strings in the ``1h30m`` / ``90s`` / ``250ms`` form.

Used by the configuration coercion layer and by the validator's
``duration=`` query parameter, so both accept exactly the same syntax.
"""

from __future__ import annotations

import re
from datetime import timedelta

_UNIT_SECONDS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_COMPONENT_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a signed sequence of number+unit components (``"-1h15m30.5s"``).

    ``"0"`` is accepted on its own. Raises ValueError on anything else,
    including a bare number with no unit or a value past the timedelta range.
    """
    s = text.strip()
    if not s:
        raise ValueError("invalid duration: empty string")

    sign = 1.0
    if s[0] in "+-":
        sign = -1.0 if s[0] == "-" else 1.0
        s = s[1:]
    if s == "0":
        return timedelta(0)

    pos = 0
    total = 0.0
    while pos < len(s):
        m = _COMPONENT_RE.match(s, pos)
        if m is None:
            raise ValueError(f"invalid duration: {text!r}")
        total += float(m.group(1)) * _UNIT_SECONDS[m.group(2)]
        pos = m.end()
    if pos == 0:
        raise ValueError(f"invalid duration: {text!r}")
    try:
        return timedelta(seconds=sign * total)
    except OverflowError as exc:
        raise ValueError(f"invalid duration: {text!r} is out of range") from exc


def format_duration(value: timedelta) -> str:
    """Render a timedelta as ``48h0m0s`` (sub-second values as ``1.5s``)."""
    total = value.total_seconds()
    if total == 0:
        return "0s"
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, rem = divmod(total, 3600)
    minutes, seconds = divmod(rem, 60)
    sec_text = f"{seconds:g}" if seconds != int(seconds) else str(int(seconds))
    if hours:
        return f"{sign}{int(hours)}h{int(minutes)}m{sec_text}s"
    if minutes:
        return f"{sign}{int(minutes)}m{sec_text}s"
    return f"{sign}{sec_text}s"
