"""
⚡ lightning-paywall — gate content behind Lightning micropayments.

A caller requests access, gets an invoice and a signed token, pays
out-of-band, then presents the token (and optionally the preimage) to
unlock the content.

Usage:
    from lightning_paywall import PaywallConfig, create_paywall

    paywall = create_paywall(wallet_url="nostr+walletconnect://...", secret="your-secret")

    grant = await paywall.request_access("post-1", PaywallConfig(amount=1000))
    result = await paywall.verify_access(grant.token, preimage)
    if result.unlocked:
        ...
"""

from .config import PaywallConfig, PaywallSettings
from .errors import (
    GatewayFailure,
    NotApplicable,
    PaywallError,
    StorageFailure,
    TokenExpired,
    TokenInvalid,
)
from .gateway import InvoiceResult, InvoiceStatus, LightningGateway, LndRestGateway, sanitize_memo
from .l402 import L402Credentials, format_challenge, format_challenge_body, parse_authorization
from .nwc import NwcWallet
from .paywall import Paywall, create_paywall
from .rules import is_active
from .stats import PaywallStats
from .store import Invoice, InvoiceState, InvoiceStore, MemoryInvoiceStore, RedisInvoiceStore
from .token import AccessClaims, AccessToken, AccessTokenCodec, verify_preimage
from .verifier import AccessGrant, PaymentVerifier, VerifyResult

__version__ = "0.1.0"

__all__ = [
    # Main API
    "create_paywall",
    "Paywall",
    "PaymentVerifier",
    "AccessGrant",
    "VerifyResult",
    # Config
    "PaywallConfig",
    "PaywallSettings",
    "is_active",
    # Tokens
    "AccessTokenCodec",
    "AccessToken",
    "AccessClaims",
    "verify_preimage",
    # Storage
    "Invoice",
    "InvoiceState",
    "InvoiceStore",
    "MemoryInvoiceStore",
    "RedisInvoiceStore",
    # Gateways
    "LightningGateway",
    "LndRestGateway",
    "NwcWallet",
    "InvoiceResult",
    "InvoiceStatus",
    "sanitize_memo",
    # L402
    "format_challenge",
    "format_challenge_body",
    "parse_authorization",
    "L402Credentials",
    # Stats
    "PaywallStats",
    # Errors
    "PaywallError",
    "NotApplicable",
    "GatewayFailure",
    "TokenInvalid",
    "TokenExpired",
    "StorageFailure",
]
