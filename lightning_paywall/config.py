"""
Settings and per-resource paywall configuration.

PaywallSettings is process-wide and fixed at construction time.
PaywallConfig comes from the content layer (post metadata) and is treated
as an immutable input for each evaluation.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional

DEFAULT_TOKEN_LIFETIME = 600  # 10 minutes
DEFAULT_INVOICE_EXPIRY = 1800  # 30 minutes
DEFAULT_GATEWAY_TIMEOUT = 10.0


@dataclass(frozen=True)
class PaywallSettings:
    """Immutable process settings."""
    secret: str
    token_lifetime: int = DEFAULT_TOKEN_LIFETIME
    invoice_expiry: int = DEFAULT_INVOICE_EXPIRY
    gateway_timeout: float = DEFAULT_GATEWAY_TIMEOUT
    strict_amount: bool = False
    memo_prefix: str = ""

    def __post_init__(self) -> None:
        if not self.secret:
            raise ValueError("lightning-paywall: secret is required for token signing")
        if self.token_lifetime <= 0:
            raise ValueError("lightning-paywall: token_lifetime must be positive")
        if self.invoice_expiry <= 0:
            raise ValueError("lightning-paywall: invoice_expiry must be positive")
        if self.gateway_timeout <= 0:
            raise ValueError("lightning-paywall: gateway_timeout must be positive")

    @classmethod
    def from_env(
        cls,
        prefix: str = "PAYWALL_",
        environ: Optional[Mapping[str, str]] = None,
    ) -> "PaywallSettings":
        """
        Build settings from environment variables.

        Reads {prefix}SECRET, {prefix}TOKEN_LIFETIME, {prefix}INVOICE_EXPIRY,
        {prefix}GATEWAY_TIMEOUT, {prefix}STRICT_AMOUNT and {prefix}MEMO_PREFIX.

        Args:
            prefix: Variable name prefix.
            environ: Mapping to read from (defaults to os.environ).

        Returns:
            PaywallSettings.
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(prefix + name)
            return value if value not in (None, "") else None

        kwargs: Dict[str, Any] = {"secret": get("SECRET") or ""}
        if get("TOKEN_LIFETIME"):
            kwargs["token_lifetime"] = int(get("TOKEN_LIFETIME"))
        if get("INVOICE_EXPIRY"):
            kwargs["invoice_expiry"] = int(get("INVOICE_EXPIRY"))
        if get("GATEWAY_TIMEOUT"):
            kwargs["gateway_timeout"] = float(get("GATEWAY_TIMEOUT"))
        if get("STRICT_AMOUNT"):
            kwargs["strict_amount"] = get("STRICT_AMOUNT").lower() in ("1", "true", "yes", "on")
        if get("MEMO_PREFIX"):
            kwargs["memo_prefix"] = get("MEMO_PREFIX")
        return cls(**kwargs)


def _to_number(key: str, value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid paywall {key}: {value!r}")
    if isinstance(value, (int, float)):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        raise ValueError(f"Invalid paywall {key}: {value!r}") from None
    return int(number) if number.is_integer() else number


@dataclass(frozen=True)
class PaywallConfig:
    """
    Paywall settings for one resource.

    amount: price in sats.
    timeout: hours after publish after which the paywall switches off.
    timein: hours after publish before which the paywall is not yet on.
    total: cumulative sats after which the paywall switches off.
    button_text / description: presentation only.
    """
    amount: Optional[int] = None
    button_text: Optional[str] = None
    description: Optional[str] = None
    timeout: Optional[float] = None
    timein: Optional[float] = None
    total: Optional[int] = None

    def __post_init__(self) -> None:
        # Sats are whole units; a fractional price must not be truncated silently
        for key in ("amount", "total"):
            value = getattr(self, key)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValueError(f"Invalid paywall {key}: {value!r}")
            if isinstance(value, float):
                if not value.is_integer():
                    raise ValueError(f"Paywall {key} must be a whole number of sats: {value!r}")
                object.__setattr__(self, key, int(value))

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PaywallConfig":
        """
        Parse paywall attributes from content metadata.

        Blank values count as unset. Numeric strings are coerced.

        Raises:
            ValueError: if a numeric field cannot be parsed.
        """
        amount = _to_number("amount", data.get("amount"))
        total = _to_number("total", data.get("total"))
        return cls(
            amount=amount,
            button_text=data.get("button_text") or None,
            description=data.get("description") or None,
            timeout=_to_number("timeout", data.get("timeout")),
            timein=_to_number("timein", data.get("timein")),
            total=total,
        )

    def with_defaults(self, defaults: Optional["PaywallConfig"]) -> "PaywallConfig":
        """Fill every unset field from a site-wide default config."""
        if defaults is None:
            return self
        changes = {
            f.name: getattr(defaults, f.name)
            for f in fields(self)
            if getattr(self, f.name) is None
        }
        return replace(self, **changes)
