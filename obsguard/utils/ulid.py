"""ULID generation for request correlation.

``generate_ulid()`` returns a 26-character ULID used as:
  - the ``X-Request-ID`` response header set by the audit middleware
  - the ``request_id`` field bound into structlog output for the request

Uses the ``python-ulid`` library — do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Generate a new ULID string (26 chars, Crockford Base32, time-sortable)."""
    return str(ULID())
