"""Exception taxonomy raised by the stockdesk domain core."""

from __future__ import annotations


class StoreError(Exception):
    """Base class for every failure surfaced by the domain store."""


class ValidationError(StoreError):
    """Raised when input is rejected before any remote call is issued."""


class NotFoundError(StoreError):
    """Raised when a referenced entity is absent from local state."""


class InsufficientStockError(StoreError):
    """Raised when a requested quantity exceeds the available stock."""


class RemoteError(StoreError):
    """Raised when a gateway or storage call fails or times out."""


class CompensationFailedError(StoreError):
    """Raised when rolling back a partially applied operation failed.

    Local and remote state may have drifted apart; callers should treat the
    store as untrusted until a full refetch succeeds.
    """
