"""
Lightning gateway interface and the LND REST implementation.

The verifier only needs two remote calls: create an invoice and ask whether
it has been settled. Both are fallible and bounded by a timeout. Failures
are surfaced as GatewayFailure and never retried here.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Dict, Optional, Protocol, TypeVar, Union

import httpx

from .errors import GatewayFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

MEMO_MAX_LENGTH = 64
_MEMO_DISALLOWED = re.compile(r"[^A-Za-z0-9_ ]")


@dataclass
class InvoiceResult:
    """A freshly created invoice."""
    payment_hash: str
    payment_request: str


@dataclass
class InvoiceStatus:
    """Settlement status reported by the node."""
    settled: bool
    amount: Optional[int] = None


class LightningGateway(Protocol):
    async def create_invoice(self, amount: int, memo: str, expiry: int) -> InvoiceResult:
        ...

    async def get_invoice_status(self, payment_hash: str) -> InvoiceStatus:
        ...


def sanitize_memo(memo: Optional[str]) -> str:
    """Truncate to 64 chars, then drop everything outside [A-Za-z0-9_ ]."""
    if not memo:
        return ""
    return _MEMO_DISALLOWED.sub("", memo[:MEMO_MAX_LENGTH])


async def guarded_call(call: Awaitable[T], timeout: float, operation: str) -> T:
    """
    Await a gateway call with a timeout.

    Raises:
        GatewayFailure: transient=True on timeout, otherwise wraps the error.
    """
    try:
        return await asyncio.wait_for(call, timeout=timeout)
    except GatewayFailure:
        raise
    except asyncio.TimeoutError as exc:
        logger.warning("Lightning gateway %s timed out after %ss", operation, timeout)
        raise GatewayFailure(f"{operation} timed out after {timeout}s", transient=True) from exc
    except Exception as exc:
        logger.warning("Lightning gateway %s failed: %s", operation, exc)
        raise GatewayFailure(f"{operation} failed: {exc}") from exc


def _hash_to_hex(r_hash: str) -> str:
    """LND returns r_hash as base64 in REST responses; accept hex too."""
    if re.fullmatch(r"[0-9a-fA-F]{64}", r_hash):
        return r_hash.lower()
    try:
        return base64.b64decode(r_hash, validate=True).hex()
    except (binascii.Error, ValueError):
        raise GatewayFailure(f"Malformed r_hash from node: {r_hash!r}") from None


def _reported_amount(invoice: Dict[str, Any]) -> Optional[int]:
    # Node implementations disagree on the field name
    for key in ("amt_paid_sat", "value", "amount"):
        value = invoice.get(key)
        if value not in (None, "", "0", 0):
            try:
                return int(value)
            except (TypeError, ValueError):
                raise GatewayFailure(f"Malformed {key} from node: {value!r}") from None
    return None


class LndRestGateway:
    """
    Gateway talking to an LND node over its REST API.

    Usage:
        gateway = LndRestGateway("https://localhost:8080", macaroon_hex="...")
    """

    def __init__(
        self,
        base_url: str,
        macaroon_hex: str = "",
        tls_cert: Union[str, bool] = True,
        private: bool = True,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            base_url: LND REST base URL.
            macaroon_hex: Invoice macaroon, hex-encoded.
            tls_cert: Path to the node's TLS cert, or a bool for default verification.
            private: Include routing hints for private channels.
            transport: Optional httpx transport (for tests).
        """
        if not base_url:
            raise ValueError("lightning-paywall: LND base_url is required")
        headers = {"Content-Type": "application/json"}
        if macaroon_hex:
            headers["Grpc-Metadata-macaroon"] = macaroon_hex
        self.private = private
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            verify=tls_cert,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        response = await self._client.request(method, path, **kwargs)
        if response.status_code >= 400:
            raise GatewayFailure(f"LND returned HTTP {response.status_code} for {path}")
        try:
            data = response.json()
        except ValueError:
            raise GatewayFailure(f"LND returned non-JSON body for {path}") from None
        if not isinstance(data, dict):
            raise GatewayFailure(f"LND returned unexpected body for {path}")
        return data

    async def create_invoice(self, amount: int, memo: str, expiry: int) -> InvoiceResult:
        data = await self._request("POST", "/v1/invoices", json={
            "value": str(amount),
            "memo": memo,
            "expiry": str(expiry),
            "private": self.private,
        })

        r_hash = data.get("r_hash")
        payment_request = data.get("payment_request")
        if not r_hash or not payment_request:
            raise GatewayFailure("LND addinvoice returned no r_hash or payment_request")

        return InvoiceResult(payment_hash=_hash_to_hex(r_hash), payment_request=payment_request)

    async def get_invoice_status(self, payment_hash: str) -> InvoiceStatus:
        data = await self._request("GET", f"/v1/invoice/{payment_hash}")
        settled = data.get("state") == "SETTLED" or data.get("settled") is True
        return InvoiceStatus(settled=settled, amount=_reported_amount(data) if settled else None)

    async def close(self) -> None:
        await self._client.aclose()
