"""
⚡ lightning-paywall FastAPI Demo

A tiny blog whose posts are split into a free teaser and a paywalled body.

Run:
    pip install -e ".[dev]"
    NWC_URL="nostr+walletconnect://..." PAYWALL_SECRET="your-secret" python examples/fastapi_demo.py

Or without a real wallet (uses a mock node that marks invoices paid on demand):
    python examples/fastapi_demo.py
"""

import hashlib
import logging
import os
import secrets
import time

import uvicorn
from fastapi import FastAPI, HTTPException

from lightning_paywall import InvoiceResult, InvoiceStatus, PaywallConfig, PaywallSettings, create_paywall
from lightning_paywall.routes import Resource

logging.basicConfig(level=logging.INFO)


# --- Mock node for demo (when no NWC_URL is provided) ---


class MockGateway:
    """Mock node: invoices settle when /demo/settle/{payment_hash} is called."""

    def __init__(self):
        self.preimages = {}
        self.paid = {}

    async def create_invoice(self, amount: int, memo: str, expiry: int) -> InvoiceResult:
        preimage = secrets.token_hex(32)
        payment_hash = hashlib.sha256(bytes.fromhex(preimage)).hexdigest()
        self.preimages[payment_hash] = preimage
        return InvoiceResult(
            payment_hash=payment_hash,
            payment_request=f"lnbc{amount}0n1demo{secrets.token_hex(20)}",
        )

    async def get_invoice_status(self, payment_hash: str) -> InvoiceStatus:
        amount = self.paid.get(payment_hash)
        return InvoiceStatus(settled=amount is not None, amount=amount)


# --- Setup ---

app = FastAPI(
    title="lightning-paywall Demo",
    description="Lightning paywalled blog posts with FastAPI",
    version="0.1.0",
)

os.environ.setdefault("PAYWALL_SECRET", "demo-secret-change-me-in-production")
os.environ.setdefault("PAYWALL_MEMO_PREFIX", "Demo Blog")
settings = PaywallSettings.from_env()

nwc_url = os.environ.get("NWC_URL")
mock_gateway = None
if nwc_url:
    paywall = create_paywall(wallet_url=nwc_url, settings=settings)
    print("⚡ Using real NWC wallet")
else:
    mock_gateway = MockGateway()
    paywall = create_paywall(gateway=mock_gateway, settings=settings)
    print("🧪 Using mock node (POST /demo/settle/<payment_hash> to pay)")

POSTS = {
    "1": {
        "title": "Running a Lightning node at home",
        "published_at": time.time() - 3600,
        "paywall": {"amount": 100},
        "teaser": "Running your own node is easier than ever.",
        "protected": "Here is the full hardware list and channel strategy...",
    },
    "2": {
        "title": "Free for the first day",
        "published_at": time.time(),
        "paywall": {"amount": 50, "timein": 24},
        "teaser": "This post is free until it is a day old.",
        "protected": "Still free, come back tomorrow.",
    },
    "3": {
        "title": "Crowdfunded article",
        "published_at": time.time() - 86400,
        "paywall": {"amount": 21, "total": 210},
        "teaser": "Once readers chip in 210 sats this becomes free for everyone.",
        "protected": "Thanks for funding this article!",
    },
}


async def resolve(post_id: str):
    post = POSTS.get(post_id)
    if post is None:
        return None
    return Resource(
        config=PaywallConfig.from_dict(post["paywall"]),
        published_at=post["published_at"],
        title=post["title"],
    )


def protected_content(post_id: str) -> str:
    return POSTS[post_id]["protected"]


app.include_router(paywall.router(resolve=resolve, unlock=protected_content))


# --- Routes ---


@app.get("/posts/{post_id}")
async def read_post(post_id: str):
    """Teaser plus instructions to unlock the rest."""
    post = POSTS.get(post_id)
    if post is None:
        raise HTTPException(status_code=404, detail={"error": "invalid post"})
    return {
        "title": post["title"],
        "teaser": post["teaser"],
        "unlock": {
            "step1": f"POST /paywall/pay {{\"resource_id\": \"{post_id}\"}}",
            "step2": "Pay the payment_request with any Lightning wallet",
            "step3": "POST /paywall/verify {\"token\": ..., \"preimage\": ...}",
        },
    }


@app.post("/demo/settle/{payment_hash}")
async def settle(payment_hash: str):
    """Mock-node only: mark an invoice paid and reveal its preimage."""
    if mock_gateway is None or payment_hash not in mock_gateway.preimages:
        raise HTTPException(status_code=404, detail={"error": "unknown invoice"})
    invoice = await paywall.store.find_by_hash(payment_hash)
    mock_gateway.paid[payment_hash] = invoice.amount
    return {"preimage": mock_gateway.preimages[payment_hash]}


@app.get("/api/stats")
async def stats():
    """Revenue dashboard."""
    return paywall.dashboard_data()


# --- Run ---

if __name__ == "__main__":
    print("\n⚡ lightning-paywall FastAPI Demo")
    print("=" * 40)
    print("  GET  /posts/{id}           — teaser")
    print("  POST /paywall/pay          — get an invoice + token")
    print("  POST /paywall/verify       — unlock with token (+ preimage)")
    print("  GET  /api/stats            — revenue dashboard")
    print()
    uvicorn.run(app, host="0.0.0.0", port=8402)
