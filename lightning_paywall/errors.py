"""
Paywall error taxonomy.

Every failure here resolves to "locked". Nothing in this package turns an
exception into an unlock.
"""

from __future__ import annotations


class PaywallError(Exception):
    """Base class for all paywall errors."""


class NotApplicable(PaywallError):
    """Paywall rules say the resource is free right now. Serve it directly."""


class GatewayFailure(PaywallError):
    """The Lightning node was unreachable or answered with malformed data."""

    def __init__(self, message: str, transient: bool = False):
        super().__init__(message)
        self.transient = transient


class TokenInvalid(PaywallError):
    """Signature mismatch or malformed token."""


class TokenExpired(PaywallError):
    """Token is past its expires_at. The payment flow must restart."""


class StorageFailure(PaywallError):
    """The invoice store is unavailable."""
