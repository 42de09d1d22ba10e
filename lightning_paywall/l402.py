"""
L402 header helpers.

The access token doubles as the L402 macaroon:

WWW-Authenticate: L402 invoice="lnbc...", macaroon="<token>"
Authorization: L402 <token>:<preimage>

The preimage part is optional here. "L402 <token>" asks the server to check
settlement with the node instead.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass
class L402Credentials:
    """Parsed L402 authorization credentials."""
    token: str
    preimage: Optional[str] = None


def format_challenge(payment_request: str, token: str) -> str:
    """WWW-Authenticate header value for a payment challenge."""
    return f'L402 invoice="{payment_request}", macaroon="{token}"'


def format_challenge_body(
    resource_id: str,
    payment_request: str,
    token: str,
    payment_hash: str,
    amount: int,
) -> Dict[str, Any]:
    """
    JSON body handed to the payer after an invoice is issued.

    Returns:
        Dict suitable for a JSON response.
    """
    return {
        "resource_id": resource_id,
        "amount": amount,
        "token": token,
        "payment_request": payment_request,
        "payment_hash": payment_hash,
        "protocol": "L402",
    }


def parse_authorization(auth_header: Optional[str]) -> Optional[L402Credentials]:
    """
    Parse an Authorization: L402 header.

    Format: L402 <token>[:<preimage>]

    Returns:
        L402Credentials or None if the header is not L402 or has no token.
    """
    if not auth_header or not isinstance(auth_header, str):
        return None

    trimmed = auth_header.strip()
    if not trimmed.lower().startswith("l402 "):
        return None

    credentials = trimmed[5:].strip()
    token, _, preimage = credentials.partition(":")
    if not token:
        return None

    return L402Credentials(token=token, preimage=preimage or None)
