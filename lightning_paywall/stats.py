"""
In-memory paywall statistics.

Tracks invoices issued, settlements and revenue per resource, plus a ring
of recent payments. Process-local; the invoice store stays the source of
truth for cumulative totals.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, List


@dataclass
class PaymentRecord:
    """A single settled payment."""
    resource_id: str
    amount: int
    payment_hash: str
    timestamp: float  # milliseconds since epoch


class PaywallStats:
    """In-memory payment statistics tracker."""

    def __init__(self, max_recent: int = 100):
        self.max_recent = max_recent

        self.total_revenue: int = 0
        self.total_invoices: int = 0
        self.total_settled: int = 0

        # resource_id → { invoices, settled, revenue }
        self._resources: Dict[str, Dict[str, int]] = {}

        self._recent_payments: List[PaymentRecord] = []

    def _resource(self, resource_id: str) -> Dict[str, int]:
        if resource_id not in self._resources:
            self._resources[resource_id] = {"invoices": 0, "settled": 0, "revenue": 0}
        return self._resources[resource_id]

    def record_invoice(self, resource_id: str) -> None:
        """Count an issued invoice."""
        self.total_invoices += 1
        self._resource(resource_id)["invoices"] += 1

    def record_settlement(self, resource_id: str, amount: int, payment_hash: str) -> None:
        """Count a first-time settlement. Repeated verifications must not call this."""
        self.total_settled += 1
        self.total_revenue += amount
        entry = self._resource(resource_id)
        entry["settled"] += 1
        entry["revenue"] += amount

        self._recent_payments.append(
            PaymentRecord(
                resource_id=resource_id,
                amount=amount,
                payment_hash=payment_hash,
                timestamp=time.time() * 1000,
            )
        )
        if len(self._recent_payments) > self.max_recent:
            self._recent_payments = self._recent_payments[-self.max_recent:]

    def to_dict(self) -> Dict[str, Any]:
        recent = [
            {
                "resourceId": r.resource_id,
                "amountSats": r.amount,
                "paymentHash": r.payment_hash,
                "timestamp": r.timestamp,
            }
            for r in self._recent_payments[-20:]
        ]
        recent.reverse()

        return {
            "totalRevenue": self.total_revenue,
            "totalInvoices": self.total_invoices,
            "totalSettled": self.total_settled,
            "resources": {rid: dict(data) for rid, data in self._resources.items()},
            "recentPayments": recent,
        }
