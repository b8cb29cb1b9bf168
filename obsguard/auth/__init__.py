"""obsguard API authentication package.

Public API:
  - BearerAuthMiddleware — shared bearer token check; empty token disables auth
"""

from __future__ import annotations

from obsguard.auth.middleware import BearerAuthMiddleware

__all__ = ["BearerAuthMiddleware"]
