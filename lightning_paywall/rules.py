"""
Paywall activation rules.

Pure function over its inputs: a config, when the resource was published,
how much it has earned so far and the current time. Any matching rule
switches the paywall off.
"""

from __future__ import annotations

from typing import Optional

from .config import PaywallConfig

HOUR = 3600


def inactive_reason(
    config: PaywallConfig,
    published_at: Optional[float],
    cumulative_received: int,
    now: float,
) -> Optional[str]:
    """
    Return why the paywall is off, or None when it applies.

    Args:
        config: Paywall config for the resource.
        published_at: Unix timestamp the resource was published at.
        cumulative_received: Sats received for the resource so far.
        now: Current Unix timestamp.
    """
    if not config.amount or config.amount <= 0:
        return "no amount"

    # Time rules need a publish time to anchor to
    if published_at is not None:
        if config.timeout is not None and now > published_at + config.timeout * HOUR:
            return "timeout elapsed"
        if config.timein is not None and now < published_at + config.timein * HOUR:
            return "timein not reached"

    if config.total is not None and cumulative_received >= config.total:
        return "total reached"

    return None


def is_active(
    config: PaywallConfig,
    published_at: Optional[float],
    cumulative_received: int,
    now: float,
) -> bool:
    """True when the resource should be gated right now."""
    return inactive_reason(config, published_at, cumulative_received, now) is None
