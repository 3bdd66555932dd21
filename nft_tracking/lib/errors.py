"""
Exception hierarchy for collectible tracking.

Transport and validation failures are always caught inside the engine and
converted into omission of the affected item; they never escape the public
surface of the detector or the store.
"""

from typing import Optional


class CollectibleTrackingError(Exception):
    """Base class for all collectible tracking errors."""


class TransportError(CollectibleTrackingError):
    """A provider API or chain RPC call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(CollectibleTrackingError):
    """A required field could not be resolved after all fallbacks."""


class NotOwnedError(CollectibleTrackingError):
    """A user-supplied collectible resolved to a zero balance."""


class ConfigurationError(CollectibleTrackingError):
    """No active address, or the active network does not support collectibles."""
