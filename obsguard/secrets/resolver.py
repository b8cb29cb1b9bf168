"""Resolve a configured credential that may live in the Secret Store."""

from __future__ import annotations

from typing import Optional

from obsguard.secrets.store import SecretStore
from obsguard.utils.logger import get_logger

logger = get_logger(__name__)


def resolve_secret(direct: str, ref: str, store: Optional[SecretStore]) -> str:
    """Return the store's value for ``ref`` when both are set, else ``direct``.

    Store errors (not found, expired) propagate: a configured reference that
    cannot be resolved is a startup failure, not a silent fallback.
    """
    if ref and store is not None:
        value = store.get_value(ref)
        logger.debug("Resolved credential from secret store", secret=ref)
        return value
    if ref:
        logger.warning("Secret reference configured but secret store is disabled", secret=ref)
    return direct
