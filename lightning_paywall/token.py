"""
Stateless proof-of-payment access tokens.

A token is a macaroon-style bearer credential: an identifier (the payment
hash) plus caveats, signed with a chained HMAC-SHA256. Each caveat is folded
into the signature, so none can be added, dropped or edited without the
server secret.

Wire format: base64url (unpadded) JSON {"id", "caveats", "signature"}.
Caveats, in order:
    resource_id = <id>
    amount = <sats>
    expires_at = <unix ts>
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .errors import TokenExpired, TokenInvalid

REQUIRED_CAVEATS = ("resource_id", "amount", "expires_at")


@dataclass(frozen=True)
class AccessClaims:
    """What a token asserts: this invoice, for this amount, until this time."""
    resource_id: str
    payment_hash: str
    amount: int
    expires_at: int


@dataclass(frozen=True)
class AccessToken:
    """An issued token: its claims and the wire string handed to the client."""
    claims: AccessClaims
    raw: str


def _sign(secret: bytes, identifier: str, caveats: List[str]) -> bytes:
    # HMAC(secret, id), then fold each caveat
    sig = hmac.new(secret, identifier.encode("utf-8"), hashlib.sha256).digest()
    for caveat in caveats:
        sig = hmac.new(sig, caveat.encode("utf-8"), hashlib.sha256).digest()
    return sig


def _b64encode(data: bytes) -> str:
    return urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64decode(raw: str) -> bytes:
    return urlsafe_b64decode(raw + "=" * (-len(raw) % 4))


class AccessTokenCodec:
    """
    Issues and verifies access tokens.

    The secret is fixed for the codec's lifetime. Rotating it (building a new
    codec) invalidates every outstanding token.
    """

    def __init__(self, secret: Union[str, bytes], lifetime: int = 600):
        if not secret:
            raise ValueError("Token secret is required")
        self._secret = secret.encode("utf-8") if isinstance(secret, str) else secret
        self.lifetime = lifetime

    def issue(
        self,
        resource_id: str,
        payment_hash: str,
        amount: int,
        now: Optional[float] = None,
    ) -> AccessToken:
        """
        Issue a token for an invoice.

        Args:
            resource_id: Gated resource identifier.
            payment_hash: Hex payment hash of the invoice.
            amount: Invoice amount in sats.
            now: Issue time (defaults to time.time()).

        Returns:
            AccessToken with claims and the base64url wire string.
        """
        if not payment_hash:
            raise ValueError("payment_hash is required for access token")
        if not resource_id:
            raise ValueError("resource_id is required for access token")

        issued_at = time.time() if now is None else now
        claims = AccessClaims(
            resource_id=str(resource_id),
            payment_hash=payment_hash,
            amount=int(amount),
            expires_at=int(issued_at) + self.lifetime,
        )
        caveats = [
            f"resource_id = {claims.resource_id}",
            f"amount = {claims.amount}",
            f"expires_at = {claims.expires_at}",
        ]
        signature = _sign(self._secret, payment_hash, caveats).hex()

        payload = {"id": payment_hash, "caveats": caveats, "signature": signature}
        raw = _b64encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return AccessToken(claims=claims, raw=raw)

    def verify(self, raw: Optional[str], now: Optional[float] = None) -> AccessClaims:
        """
        Verify a token and return its claims.

        Signature is checked before any caveat is read.

        Raises:
            TokenInvalid: malformed token, bad signature or missing caveats.
            TokenExpired: signature is good but expires_at has passed.
        """
        if not raw or not isinstance(raw, str):
            raise TokenInvalid("Token missing")

        try:
            parsed = json.loads(_b64decode(raw).decode("utf-8"))
        except ValueError:
            raise TokenInvalid("Token is not valid base64url JSON") from None

        if not isinstance(parsed, dict):
            raise TokenInvalid("Invalid token structure")
        identifier = parsed.get("id")
        caveats = parsed.get("caveats")
        signature = parsed.get("signature")
        if (
            not isinstance(identifier, str) or not identifier
            or not isinstance(signature, str)
            or not isinstance(caveats, list)
            or not all(isinstance(c, str) for c in caveats)
        ):
            raise TokenInvalid("Invalid token structure")

        try:
            presented = bytes.fromhex(signature)
        except ValueError:
            raise TokenInvalid("Invalid token signature") from None

        expected = _sign(self._secret, identifier, caveats)
        if not hmac.compare_digest(presented, expected):
            raise TokenInvalid("Invalid token signature")

        values: Dict[str, str] = {}
        for caveat in caveats:
            parts = caveat.split(" = ", 1)
            if len(parts) != 2:
                raise TokenInvalid(f"Malformed caveat: {caveat}")
            values[parts[0].strip()] = parts[1].strip()
            # unknown caveats are ignored (forward-compatible)

        missing = [key for key in REQUIRED_CAVEATS if key not in values]
        if missing:
            raise TokenInvalid(f"Token missing caveats: {', '.join(missing)}")

        try:
            expires_at = int(values["expires_at"])
            amount = int(values["amount"])
        except ValueError:
            raise TokenInvalid("Token caveats are not numeric") from None

        current = time.time() if now is None else now
        if current > expires_at:
            raise TokenExpired("Token expired")

        return AccessClaims(
            resource_id=values["resource_id"],
            payment_hash=identifier,
            amount=amount,
            expires_at=expires_at,
        )


def verify_preimage(preimage: Optional[str], payment_hash: Optional[str]) -> bool:
    """
    Check that SHA256(preimage) == payment_hash.

    Args:
        preimage: Hex-encoded preimage.
        payment_hash: Hex-encoded payment hash.

    Returns:
        False for empty or non-hex input.
    """
    if not preimage or not payment_hash:
        return False
    try:
        computed = hashlib.sha256(bytes.fromhex(preimage)).digest()
        return hmac.compare_digest(computed, bytes.fromhex(payment_hash))
    except (TypeError, ValueError):
        return False
