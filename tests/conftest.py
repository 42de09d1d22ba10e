"""Shared fixtures: a fake Lightning gateway with real preimages."""

import hashlib
import secrets
from typing import Dict, Optional

import pytest

from lightning_paywall.gateway import InvoiceResult, InvoiceStatus


class FakeGateway:
    """In-memory gateway: each invoice gets a random preimage."""

    def __init__(self):
        self.preimages: Dict[str, str] = {}
        self.settled: Dict[str, int] = {}
        self.created = []
        self.status_calls = 0

    async def create_invoice(self, amount: int, memo: str, expiry: int) -> InvoiceResult:
        preimage = secrets.token_hex(32)
        payment_hash = hashlib.sha256(bytes.fromhex(preimage)).hexdigest()
        self.preimages[payment_hash] = preimage
        self.created.append({"amount": amount, "memo": memo, "expiry": expiry})
        return InvoiceResult(payment_hash=payment_hash, payment_request=f"lnbc{amount}0n1fake{payment_hash[:16]}")

    async def get_invoice_status(self, payment_hash: str) -> InvoiceStatus:
        self.status_calls += 1
        if payment_hash in self.settled:
            return InvoiceStatus(settled=True, amount=self.settled[payment_hash])
        return InvoiceStatus(settled=False)

    def pay(self, payment_hash: str, amount: int) -> None:
        self.settled[payment_hash] = amount

    def preimage_for(self, payment_hash: str) -> Optional[str]:
        return self.preimages.get(payment_hash)


@pytest.fixture
def gateway():
    return FakeGateway()
