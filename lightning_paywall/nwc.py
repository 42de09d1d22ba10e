"""
Nostr Wallet Connect (NIP-47) gateway.

Talks to a Lightning wallet service through a Nostr relay:
1. Parse the NWC URL: relay URL, wallet pubkey, client secret
2. Publish NIP-04 encrypted requests (kind 23194)
3. Wait for the matching encrypted response (kind 23195)

Supports make_invoice and lookup_invoice, which is all the paywall needs.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlparse

from websockets.asyncio.client import ClientConnection, connect

from .crypto import Nip04Cipher, sign_event, x_only_public_key
from .errors import GatewayFailure
from .gateway import InvoiceResult, InvoiceStatus

logger = logging.getLogger(__name__)

KIND_REQUEST = 23194
KIND_RESPONSE = 23195


@dataclass
class NwcConfig:
    """Parsed NWC URL configuration."""
    relay_url: str
    wallet_pubkey: str
    secret_key: str
    client_pubkey: str  # derived from secret_key


def parse_nwc_url(nwc_url: str) -> NwcConfig:
    """
    Parse an NWC connection string.

    Format: nostr+walletconnect://<wallet_pubkey>?relay=<relay_url>&secret=<secret_key>

    Raises:
        ValueError: if the scheme or a required part is missing.
    """
    parsed = urlparse(nwc_url)

    if parsed.scheme != "nostr+walletconnect":
        raise ValueError(f"Invalid NWC URL scheme: {parsed.scheme} (expected nostr+walletconnect)")

    wallet_pubkey = parsed.netloc or ""
    if not wallet_pubkey:
        raise ValueError("NWC URL missing wallet pubkey")

    params = parse_qs(parsed.query)
    relay_url = params.get("relay", [None])[0]
    secret_key = params.get("secret", [None])[0]

    if not relay_url:
        raise ValueError("NWC URL missing relay parameter")
    if not secret_key:
        raise ValueError("NWC URL missing secret parameter")

    return NwcConfig(
        relay_url=relay_url,
        wallet_pubkey=wallet_pubkey,
        secret_key=secret_key,
        client_pubkey=x_only_public_key(secret_key),
    )


class NwcWallet:
    """
    Lightning gateway backed by an NWC wallet service.

    One relay connection is shared by all requests. A single reader task
    owns ws.recv() and hands each response to the future registered under
    its subscription id, so concurrent requests never race on the socket.
    """

    def __init__(self, nwc_url: str, request_timeout: float = 30.0):
        self.config = parse_nwc_url(nwc_url)
        self.request_timeout = request_timeout
        self._cipher = Nip04Cipher(self.config.secret_key, self.config.wallet_pubkey)
        self._ws: Optional[ClientConnection] = None
        self._reader: Optional["asyncio.Task[None]"] = None
        self._pending: Dict[str, "asyncio.Future[Dict[str, Any]]"] = {}
        self._connect_lock = asyncio.Lock()

    async def _connection(self) -> ClientConnection:
        async with self._connect_lock:
            if self._ws is not None and self._reader is not None and not self._reader.done():
                return self._ws

            if self._ws is not None:
                logger.debug("NWC relay connection lost, reconnecting")
            ws = await connect(self.config.relay_url)
            self._ws = ws
            self._reader = asyncio.create_task(self._read(ws))
            return ws

    async def _read(self, ws: ClientConnection) -> None:
        """Dispatch relay messages to waiting requests until the socket closes."""
        try:
            async for raw_msg in ws:
                try:
                    msg = json.loads(raw_msg)
                except ValueError:
                    logger.debug("Ignoring non-JSON relay message")
                    continue
                if not (isinstance(msg, list) and len(msg) >= 3 and msg[0] == "EVENT"):
                    continue
                future = self._pending.get(msg[1])
                if future is not None and not future.done():
                    future.set_result(msg[2])
        except Exception as exc:
            logger.warning("NWC relay connection failed: %s", exc)
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(GatewayFailure("NWC relay connection closed", transient=True))

    async def _send(self, method: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Publish a NIP-47 request and wait for its response.

        Raises:
            GatewayFailure: wallet error, lost relay or no response within request_timeout.
        """
        ws = await self._connection()

        event = sign_event({
            "kind": KIND_REQUEST,
            "pubkey": self.config.client_pubkey,
            "created_at": int(time.time()),
            "tags": [["p", self.config.wallet_pubkey]],
            "content": self._cipher.encrypt(json.dumps({"method": method, "params": params})),
        }, self.config.secret_key)

        sub_id = secrets.token_hex(16)
        future: "asyncio.Future[Dict[str, Any]]" = asyncio.get_running_loop().create_future()
        self._pending[sub_id] = future

        try:
            # Subscribe before publishing so the response can't be missed
            await ws.send(json.dumps(["REQ", sub_id, {
                "kinds": [KIND_RESPONSE],
                "authors": [self.config.wallet_pubkey],
                "#p": [self.config.client_pubkey],
                "#e": [event["id"]],
            }]))
            await ws.send(json.dumps(["EVENT", event]))

            try:
                response_event = await asyncio.wait_for(future, timeout=self.request_timeout)
            except asyncio.TimeoutError:
                raise GatewayFailure(
                    f"NWC {method} timed out after {self.request_timeout}s", transient=True
                ) from None
        finally:
            self._pending.pop(sub_id, None)
            try:
                await ws.send(json.dumps(["CLOSE", sub_id]))
            except Exception:
                logger.debug("Could not close NWC subscription %s", sub_id)

        result = json.loads(self._cipher.decrypt(response_event["content"]))
        if result.get("error"):
            error = result["error"]
            raise GatewayFailure(
                f"NWC error: {error.get('message', 'Unknown error')} "
                f"(code: {error.get('code', 'N/A')})"
            )
        return result.get("result") or {}

    async def create_invoice(self, amount: int, memo: str, expiry: int) -> InvoiceResult:
        # NWC amounts are millisats
        result = await self._send("make_invoice", {
            "amount": amount * 1000,
            "description": memo,
            "expiry": expiry,
        })

        payment_request = result.get("invoice")
        payment_hash = result.get("payment_hash")
        if not payment_request or not payment_hash:
            raise GatewayFailure("NWC make_invoice returned no invoice or payment_hash")

        return InvoiceResult(payment_hash=payment_hash, payment_request=payment_request)

    async def get_invoice_status(self, payment_hash: str) -> InvoiceStatus:
        result = await self._send("lookup_invoice", {"payment_hash": payment_hash})

        settled = result.get("settled_at") is not None or result.get("state") == "settled"
        amount_msat = result.get("amount")
        amount = int(amount_msat) // 1000 if settled and amount_msat else None
        return InvoiceStatus(settled=settled, amount=amount)

    async def close(self) -> None:
        """Close the relay connection and stop the reader."""
        ws, self._ws = self._ws, None
        reader, self._reader = self._reader, None
        if ws is not None:
            await ws.close()
        if reader is not None:
            await reader
