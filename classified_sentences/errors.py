"""Error types raised by the sentence store."""

from __future__ import annotations


class InvalidQuery(ValueError):
    """Filter is under-specified or malformed; raised before the store is touched."""


class StoreFailure(RuntimeError):
    """The underlying SQLite store failed (connectivity, constraint, serialization)."""
