"""Tests for the NWC gateway, URL parsing and NIP-04 helpers."""

import asyncio
import json
import secrets
from unittest.mock import AsyncMock

import pytest
from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from lightning_paywall.crypto import Nip04Cipher, sign_event, x_only_public_key
from lightning_paywall.errors import GatewayFailure
from lightning_paywall.nwc import NwcWallet, parse_nwc_url


CLIENT_SECRET = "11" * 32
WALLET_SECRET = "22" * 32
WALLET_PUBKEY = x_only_public_key(WALLET_SECRET)
PAID_HASH = "aa" * 32
OPEN_HASH = "bb" * 32


def nwc_url(relay="wss://relay.example.com"):
    return f"nostr+walletconnect://{WALLET_PUBKEY}?relay={relay}&secret={CLIENT_SECRET}"


class TestParseNwcUrl:
    def test_valid_url(self):
        config = parse_nwc_url(nwc_url())
        assert config.wallet_pubkey == WALLET_PUBKEY
        assert config.relay_url == "wss://relay.example.com"
        assert config.secret_key == CLIENT_SECRET
        assert config.client_pubkey == x_only_public_key(CLIENT_SECRET)

    def test_wrong_scheme(self):
        with pytest.raises(ValueError, match="scheme"):
            parse_nwc_url("https://example.com")

    def test_missing_relay(self):
        with pytest.raises(ValueError, match="relay"):
            parse_nwc_url(f"nostr+walletconnect://abc?secret={CLIENT_SECRET}")

    def test_missing_secret(self):
        with pytest.raises(ValueError, match="secret"):
            parse_nwc_url("nostr+walletconnect://abc?relay=wss://relay.example.com")


class TestNip04:
    def test_peers_share_a_key(self):
        """A message encrypted by the client decrypts on the wallet side."""
        client = Nip04Cipher(CLIENT_SECRET, WALLET_PUBKEY)
        wallet = Nip04Cipher(WALLET_SECRET, x_only_public_key(CLIENT_SECRET))
        message = '{"method":"lookup_invoice"}'
        encrypted = client.encrypt(message)
        assert "?iv=" in encrypted
        assert wallet.decrypt(encrypted) == message

    def test_rejects_bad_format(self):
        cipher = Nip04Cipher(CLIENT_SECRET, WALLET_PUBKEY)
        with pytest.raises(ValueError, match="iv"):
            cipher.decrypt("nope")


class TestSignEvent:
    def test_adds_id_and_signature(self):
        event = {
            "kind": 23194,
            "pubkey": x_only_public_key(CLIENT_SECRET),
            "created_at": 1700000000,
            "tags": [],
            "content": secrets.token_hex(8),
        }
        signed = sign_event(event, CLIENT_SECRET)
        assert len(signed["id"]) == 64
        assert len(signed["sig"]) == 128
        assert "id" not in event


def make_wallet(result):
    wallet = NwcWallet(nwc_url())
    wallet._send = AsyncMock(return_value=result)
    return wallet


class TestNwcResults:
    @pytest.mark.asyncio
    async def test_create_invoice_sends_millisats(self):
        wallet = make_wallet({"invoice": "lnbc10u1nwc", "payment_hash": PAID_HASH})
        result = await wallet.create_invoice(1000, "My post", 1800)
        assert result.payment_hash == PAID_HASH
        assert result.payment_request == "lnbc10u1nwc"
        wallet._send.assert_awaited_once_with("make_invoice", {
            "amount": 1000000,
            "description": "My post",
            "expiry": 1800,
        })

    @pytest.mark.asyncio
    async def test_create_invoice_without_hash(self):
        wallet = make_wallet({"invoice": "lnbc10u1nwc"})
        with pytest.raises(GatewayFailure, match="payment_hash"):
            await wallet.create_invoice(1000, "", 60)

    @pytest.mark.asyncio
    async def test_create_invoice_without_invoice(self):
        wallet = make_wallet({})
        with pytest.raises(GatewayFailure):
            await wallet.create_invoice(1000, "", 60)

    @pytest.mark.asyncio
    async def test_settled_at_means_paid(self):
        wallet = make_wallet({"settled_at": 1700000000, "amount": 1500999})
        status = await wallet.get_invoice_status(PAID_HASH)
        assert status.settled is True
        assert status.amount == 1500
        wallet._send.assert_awaited_once_with("lookup_invoice", {"payment_hash": PAID_HASH})

    @pytest.mark.asyncio
    async def test_settled_state_means_paid(self):
        wallet = make_wallet({"state": "settled", "amount": 21000})
        status = await wallet.get_invoice_status(PAID_HASH)
        assert status.settled is True
        assert status.amount == 21

    @pytest.mark.asyncio
    async def test_preimage_alone_is_not_payment(self):
        wallet = make_wallet({"state": "pending", "preimage": "cc" * 32, "amount": 21000})
        status = await wallet.get_invoice_status(OPEN_HASH)
        assert status.settled is False
        assert status.amount is None

    @pytest.mark.asyncio
    async def test_settled_without_amount(self):
        wallet = make_wallet({"settled_at": 1700000000})
        status = await wallet.get_invoice_status(PAID_HASH)
        assert status.settled is True
        assert status.amount is None


class LocalRelay:
    """Relay and wallet service in one: answers each request after a delay."""

    def __init__(self, delay=0.2, silent=False):
        self.delay = delay
        self.silent = silent
        self.cipher = Nip04Cipher(WALLET_SECRET, x_only_public_key(CLIENT_SECRET))
        self._tasks = set()

    def answer(self, request):
        if request["method"] == "make_invoice":
            return {"error": {"code": "QUOTA_EXCEEDED", "message": "Budget used up"}}
        if request["params"]["payment_hash"] == PAID_HASH:
            return {"result_type": "lookup_invoice", "result": {"settled_at": 1700000000, "amount": 1000000}}
        return {"result_type": "lookup_invoice", "result": {"amount": 2000000}}

    async def handler(self, websocket):
        subscriptions = {}
        async for raw in websocket:
            msg = json.loads(raw)
            if msg[0] == "REQ":
                subscriptions[msg[2]["#e"][0]] = msg[1]
            elif msg[0] == "EVENT" and not self.silent:
                event = msg[1]
                task = asyncio.create_task(self._respond(websocket, subscriptions[event["id"]], event))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    async def _respond(self, websocket, sub_id, event):
        await asyncio.sleep(self.delay)
        request = json.loads(self.cipher.decrypt(event["content"]))
        response = {"kind": 23195, "content": self.cipher.encrypt(json.dumps(self.answer(request)))}
        try:
            await websocket.send(json.dumps(["EVENT", sub_id, response]))
        except ConnectionClosed:
            pass


async def start_relay(relay):
    server = await serve(relay.handler, "127.0.0.1", 0)
    port = server.sockets[0].getsockname()[1]
    return server, f"ws://127.0.0.1:{port}"


class TestNwcRelay:
    @pytest.mark.asyncio
    async def test_concurrent_lookups_each_get_their_answer(self):
        server, relay_url = await start_relay(LocalRelay())
        wallet = NwcWallet(nwc_url(relay_url))
        try:
            paid, unpaid = await asyncio.gather(
                wallet.get_invoice_status(PAID_HASH),
                wallet.get_invoice_status(OPEN_HASH),
            )
        finally:
            await wallet.close()
            server.close()
            await server.wait_closed()

        assert paid.settled is True
        assert paid.amount == 1000
        assert unpaid.settled is False

    @pytest.mark.asyncio
    async def test_many_concurrent_requests(self):
        server, relay_url = await start_relay(LocalRelay(delay=0.05))
        wallet = NwcWallet(nwc_url(relay_url))
        try:
            results = await asyncio.gather(*[
                wallet.get_invoice_status(PAID_HASH if i % 2 else OPEN_HASH) for i in range(6)
            ])
        finally:
            await wallet.close()
            server.close()
            await server.wait_closed()

        assert [r.settled for r in results] == [False, True] * 3

    @pytest.mark.asyncio
    async def test_wallet_error_is_gateway_failure(self):
        server, relay_url = await start_relay(LocalRelay(delay=0))
        wallet = NwcWallet(nwc_url(relay_url))
        try:
            with pytest.raises(GatewayFailure, match="Budget used up"):
                await wallet.create_invoice(1000, "memo", 60)
        finally:
            await wallet.close()
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_no_answer_times_out(self):
        server, relay_url = await start_relay(LocalRelay(silent=True))
        wallet = NwcWallet(nwc_url(relay_url), request_timeout=0.1)
        try:
            with pytest.raises(GatewayFailure) as exc_info:
                await wallet.get_invoice_status(PAID_HASH)
        finally:
            await wallet.close()
            server.close()
            await server.wait_closed()

        assert exc_info.value.transient is True
        assert wallet._pending == {}
