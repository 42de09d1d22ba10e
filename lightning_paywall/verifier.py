"""
Payment verification.

request_access issues an invoice and a signed token for a gated resource.
verify_access checks a token, proves settlement and records it:

    preimage supplied and SHA256(preimage) == payment_hash  -> settled
    otherwise ask the Lightning node                        -> settled / pending

Settlement is recorded once per payment hash however many times a token is
verified. Anything that fails leaves the resource locked.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Optional, TypeVar

from .config import PaywallConfig, PaywallSettings
from .errors import GatewayFailure, NotApplicable, PaywallError, StorageFailure, TokenExpired, TokenInvalid
from .gateway import LightningGateway, guarded_call, sanitize_memo
from .rules import inactive_reason
from .stats import PaywallStats
from .store import Invoice, InvoiceState, InvoiceStore
from .token import AccessClaims, AccessTokenCodec, verify_preimage

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class AccessGrant:
    """What the payer gets back from request_access."""
    resource_id: str
    amount: int
    token: str
    payment_request: str
    payment_hash: str


@dataclass(frozen=True)
class Settlement:
    """Outcome of one proof strategy."""
    settled: bool
    amount: int
    source: str


@dataclass(frozen=True)
class VerifyResult:
    unlocked: bool
    amount: int = 0
    resource_id: Optional[str] = None
    payment_hash: Optional[str] = None


class PaymentVerifier:
    """Orchestrates invoice issuance and settlement verification."""

    def __init__(
        self,
        settings: PaywallSettings,
        gateway: LightningGateway,
        store: InvoiceStore,
        stats: Optional[PaywallStats] = None,
        codec: Optional[AccessTokenCodec] = None,
    ):
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self.stats = stats if stats is not None else PaywallStats()
        self.codec = codec or AccessTokenCodec(settings.secret, lifetime=settings.token_lifetime)

    async def _storage(self, call: Awaitable[T]) -> T:
        try:
            return await call
        except PaywallError:
            raise
        except Exception as exc:
            logger.exception("Invoice store call failed")
            raise StorageFailure(f"Invoice store unavailable: {exc}") from exc

    def _memo(self, resource_id: str, title: Optional[str]) -> str:
        label = title or str(resource_id)
        if self.settings.memo_prefix:
            label = f"{self.settings.memo_prefix} - {label}"
        return sanitize_memo(label)

    async def request_access(
        self,
        resource_id: str,
        config: PaywallConfig,
        now: Optional[float] = None,
        published_at: Optional[float] = None,
        cumulative_received: Optional[int] = None,
        title: Optional[str] = None,
    ) -> AccessGrant:
        """
        Start a payment for a gated resource.

        Args:
            resource_id: Gated resource identifier.
            config: Paywall config for the resource.
            now: Current Unix time (defaults to time.time()).
            published_at: Publish time of the resource, for timeout/timein.
            cumulative_received: Sats already earned; read from the store if omitted.
            title: Human label for the invoice memo.

        Returns:
            AccessGrant with the signed token and the payment request to pay.

        Raises:
            NotApplicable: paywall is off for this resource right now.
            GatewayFailure: invoice could not be created.
            StorageFailure: invoice could not be persisted.
        """
        resource_id = str(resource_id)
        now = time.time() if now is None else now

        if cumulative_received is None and config.total is not None:
            cumulative_received = await self._storage(self.store.total_received(resource_id))

        reason = inactive_reason(config, published_at, cumulative_received or 0, now)
        if reason is not None:
            logger.debug("Paywall inactive for %s: %s", resource_id, reason)
            raise NotApplicable(reason)

        amount = int(config.amount)
        result = await guarded_call(
            self.gateway.create_invoice(amount, self._memo(resource_id, title), self.settings.invoice_expiry),
            self.settings.gateway_timeout,
            "create_invoice",
        )
        if not result or not result.payment_hash or not result.payment_request:
            raise GatewayFailure("Gateway returned an invoice without payment hash or request")

        await self._storage(self.store.save(Invoice(
            payment_hash=result.payment_hash,
            payment_request=result.payment_request,
            resource_id=resource_id,
            amount=amount,
            created_at=now,
        )))

        token = self.codec.issue(resource_id, result.payment_hash, amount, now=now)
        self.stats.record_invoice(resource_id)
        logger.info(
            "Invoice created for %s: %s (%d sats)", resource_id, result.payment_hash, amount
        )

        return AccessGrant(
            resource_id=resource_id,
            amount=amount,
            token=token.raw,
            payment_request=result.payment_request,
            payment_hash=result.payment_hash,
        )

    async def settle_by_preimage(
        self,
        claims: AccessClaims,
        preimage: Optional[str],
        invoice: Optional[Invoice],
    ) -> Optional[Settlement]:
        """Self-certifying proof. None when no preimage or it does not match."""
        if not verify_preimage(preimage, claims.payment_hash):
            return None
        if invoice is not None:
            amount = invoice.amount_received if invoice.amount_received is not None else invoice.amount
        else:
            amount = claims.amount
        return Settlement(settled=True, amount=amount, source="preimage")

    async def settle_by_gateway(
        self,
        claims: AccessClaims,
        invoice: Optional[Invoice],
    ) -> Settlement:
        """Ask the node. The reported amount wins over anything the client sent."""
        status = await guarded_call(
            self.gateway.get_invoice_status(claims.payment_hash),
            self.settings.gateway_timeout,
            "get_invoice_status",
        )
        if status is None:
            raise GatewayFailure("Gateway returned no invoice status")

        if status.amount is not None:
            amount = int(status.amount)
        elif invoice is not None:
            amount = invoice.amount
        else:
            amount = claims.amount
        return Settlement(settled=bool(status.settled), amount=amount, source="gateway")

    async def verify_access(
        self,
        token: Optional[str],
        preimage: Optional[str] = None,
        now: Optional[float] = None,
    ) -> VerifyResult:
        """
        Verify a token and, if its invoice is paid, record the settlement.

        Args:
            token: Wire token from request_access.
            preimage: Optional hex preimage revealed by the payer's wallet.
            now: Current Unix time (defaults to time.time()).

        Returns:
            VerifyResult. unlocked is False while the invoice is still pending.

        Raises:
            TokenInvalid / TokenExpired: token rejected, no lookup was made.
            GatewayFailure: node could not be asked.
            StorageFailure: settlement could not be recorded.
        """
        try:
            claims = self.codec.verify(token, now=now)
        except (TokenInvalid, TokenExpired) as exc:
            logger.warning("Access token rejected: %s", exc)
            raise

        invoice = await self._storage(self.store.find_by_hash(claims.payment_hash))

        settlement = await self.settle_by_preimage(claims, preimage, invoice)
        if settlement is None:
            settlement = await self.settle_by_gateway(claims, invoice)

        if not settlement.settled:
            return VerifyResult(
                unlocked=False,
                resource_id=claims.resource_id,
                payment_hash=claims.payment_hash,
            )

        expected = invoice.amount if invoice is not None else claims.amount
        if self.settings.strict_amount and settlement.amount < expected:
            logger.warning(
                "Settled amount %d below invoice amount %d for %s",
                settlement.amount, expected, claims.payment_hash,
            )
            return VerifyResult(
                unlocked=False,
                resource_id=claims.resource_id,
                payment_hash=claims.payment_hash,
            )

        if invoice is None:
            logger.warning("Settled invoice %s is not in the store", claims.payment_hash)
        elif invoice.state is InvoiceState.SETTLED:
            logger.debug("Invoice %s already settled", claims.payment_hash)
        else:
            first = await self._storage(self.store.mark_settled(claims.payment_hash, settlement.amount))
            if first:
                self.stats.record_settlement(claims.resource_id, settlement.amount, claims.payment_hash)
                logger.info(
                    "Invoice settled for %s: %s (%d sats via %s)",
                    claims.resource_id, claims.payment_hash, settlement.amount, settlement.source,
                )

        return VerifyResult(
            unlocked=True,
            amount=settlement.amount,
            resource_id=claims.resource_id,
            payment_hash=claims.payment_hash,
        )
