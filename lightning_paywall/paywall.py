"""
Paywall factory.

create_paywall() wires settings, a Lightning gateway, an invoice store and
stats into a Paywall instance.

Usage:
    paywall = create_paywall(wallet_url="nostr+walletconnect://...", secret="...")
    grant = await paywall.request_access("post-1", PaywallConfig(amount=1000))
    result = await paywall.verify_access(grant.token, preimage)
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Optional

from .config import PaywallConfig, PaywallSettings
from .gateway import LightningGateway, LndRestGateway
from .nwc import NwcWallet
from .stats import PaywallStats
from .store import InvoiceStore, MemoryInvoiceStore
from .verifier import AccessGrant, PaymentVerifier, VerifyResult


class Paywall:
    """
    Paywall instance.

    Created by create_paywall(). Applies the site-wide default config to
    every per-resource config before delegating to the verifier.
    """

    def __init__(
        self,
        verifier: PaymentVerifier,
        default_config: Optional[PaywallConfig] = None,
    ):
        self.verifier = verifier
        self.default_config = default_config

    @property
    def settings(self) -> PaywallSettings:
        return self.verifier.settings

    @property
    def gateway(self) -> LightningGateway:
        return self.verifier.gateway

    @property
    def store(self) -> InvoiceStore:
        return self.verifier.store

    @property
    def stats(self) -> PaywallStats:
        return self.verifier.stats

    async def request_access(
        self,
        resource_id: str,
        config: PaywallConfig,
        now: Optional[float] = None,
        published_at: Optional[float] = None,
        cumulative_received: Optional[int] = None,
        title: Optional[str] = None,
    ) -> AccessGrant:
        return await self.verifier.request_access(
            resource_id,
            config.with_defaults(self.default_config),
            now=now,
            published_at=published_at,
            cumulative_received=cumulative_received,
            title=title,
        )

    async def verify_access(
        self,
        token: Optional[str],
        preimage: Optional[str] = None,
        now: Optional[float] = None,
    ) -> VerifyResult:
        return await self.verifier.verify_access(token, preimage, now=now)

    def router(
        self,
        resolve: Callable[[str], Awaitable[Any]],
        unlock: Optional[Callable[[str], Any]] = None,
        prefix: str = "/paywall",
    ) -> Any:
        """
        Build a FastAPI router with the pay/verify endpoints.

        Usage:
            app.include_router(paywall.router(resolve=load_post, unlock=protected_content))
        """
        from .routes import create_paywall_router

        return create_paywall_router(self, resolve, unlock=unlock, prefix=prefix)

    def dashboard_data(self) -> Dict[str, Any]:
        """Get the current stats as a dict."""
        return self.stats.to_dict()

    async def close(self) -> None:
        """Close the gateway and the invoice store."""
        close = getattr(self.gateway, "close", None)
        try:
            if close is not None:
                await close()
        finally:
            await self.store.close()


def create_paywall(
    secret: str = "",
    gateway: Optional[LightningGateway] = None,
    wallet_url: Optional[str] = None,
    lnd_url: Optional[str] = None,
    lnd_macaroon: str = "",
    lnd_tls_cert: Any = True,
    store: Optional[InvoiceStore] = None,
    settings: Optional[PaywallSettings] = None,
    default_config: Optional[PaywallConfig] = None,
    token_lifetime: int = 600,
    invoice_expiry: int = 1800,
    gateway_timeout: float = 10.0,
    strict_amount: bool = False,
    memo_prefix: str = "",
) -> Paywall:
    """
    Create a paywall for gating content behind Lightning payments.

    Args:
        secret: HMAC secret for signing access tokens (required unless settings given).
        gateway: Pre-created gateway (must have create_invoice and get_invoice_status).
        wallet_url: NWC connection string (nostr+walletconnect://...).
        lnd_url: LND REST base URL.
        lnd_macaroon: Hex invoice macaroon for LND.
        lnd_tls_cert: LND TLS cert path, or bool for default verification.
        store: Invoice store (defaults to an in-memory store).
        settings: Full settings; overrides the individual keyword settings.
        default_config: Site-wide defaults for blank per-resource fields.
        token_lifetime: Access token lifetime in seconds.
        invoice_expiry: Invoice expiry handed to the node, in seconds.
        gateway_timeout: Bound on each gateway call, in seconds.
        strict_amount: Refuse to unlock when the node reports less than invoiced.
        memo_prefix: Site name prepended to invoice memos.

    Returns:
        Paywall instance.
    """
    if settings is None:
        settings = PaywallSettings(
            secret=secret,
            token_lifetime=token_lifetime,
            invoice_expiry=invoice_expiry,
            gateway_timeout=gateway_timeout,
            strict_amount=strict_amount,
            memo_prefix=memo_prefix,
        )

    gateway_instance: LightningGateway
    if gateway is not None:
        if not hasattr(gateway, "create_invoice") or not hasattr(gateway, "get_invoice_status"):
            raise ValueError(
                "lightning-paywall: gateway must have create_invoice() and get_invoice_status() methods"
            )
        gateway_instance = gateway
    elif wallet_url:
        gateway_instance = NwcWallet(wallet_url, request_timeout=settings.gateway_timeout)
    elif lnd_url:
        gateway_instance = LndRestGateway(lnd_url, macaroon_hex=lnd_macaroon, tls_cert=lnd_tls_cert)
    else:
        raise ValueError("lightning-paywall: gateway, wallet_url or lnd_url is required")

    verifier = PaymentVerifier(
        settings,
        gateway_instance,
        store if store is not None else MemoryInvoiceStore(),
        stats=PaywallStats(),
    )
    return Paywall(verifier, default_config=default_config)
