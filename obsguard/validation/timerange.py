"""Time-window resolution for range-style requests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Mapping

from obsguard.errors import RequestValidationError
from obsguard.utils.durations import parse_duration


def parse_time_parameter(text: str) -> datetime:
    """Parse an RFC 3339 timestamp (offset required) or integer Unix seconds."""
    candidate = text.strip()
    if candidate.endswith(("Z", "z")):
        candidate = candidate[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        parsed = None
    if parsed is not None and parsed.tzinfo is not None:
        return parsed

    try:
        return datetime.fromtimestamp(int(text.strip()), tz=timezone.utc)
    except (ValueError, OverflowError, OSError) as exc:
        raise ValueError(f"invalid time format: {text}") from exc


def resolve_time_range(params: Mapping[str, str]) -> timedelta:
    """Window length from start+end, else from duration, else zero.

    Raises:
        RequestValidationError: unparseable times or duration, or end < start.
    """
    start_text = params.get("start", "")
    end_text = params.get("end", "")
    duration_text = params.get("duration", "")

    if start_text and end_text:
        try:
            start = parse_time_parameter(start_text)
        except ValueError as exc:
            raise RequestValidationError(f"invalid start time: {exc}", "invalid_time") from exc
        try:
            end = parse_time_parameter(end_text)
        except ValueError as exc:
            raise RequestValidationError(f"invalid end time: {exc}", "invalid_time") from exc
        if end < start:
            raise RequestValidationError("end time must be after start time", "invalid_time")
        return end - start

    if duration_text:
        try:
            return parse_duration(duration_text)
        except ValueError as exc:
            raise RequestValidationError(f"invalid duration: {exc}", "invalid_duration") from exc

    return timedelta(0)
