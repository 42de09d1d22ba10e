"""
Invoice store.

Durable record of invoices and their settlement state. The only mutable
shared state in the paywall is the pending -> settled transition, which each
store applies atomically per payment hash.
"""

from __future__ import annotations

import enum
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from .errors import StorageFailure


class InvoiceState(str, enum.Enum):
    PENDING = "pending"
    SETTLED = "settled"


class InvalidTransition(Exception):
    """Raised when an invoice state change would move backwards."""


def transition(current: InvoiceState, target: InvoiceState) -> InvoiceState:
    """
    Guarded state transition. Only pending -> settled is allowed.

    Raises:
        InvalidTransition: for any other change.
    """
    if current is InvoiceState.PENDING and target is InvoiceState.SETTLED:
        return target
    raise InvalidTransition(f"Cannot move invoice from {current.value} to {target.value}")


@dataclass(frozen=True)
class Invoice:
    """A single Lightning payment request for a resource."""
    payment_hash: str
    payment_request: str
    resource_id: str
    amount: int
    state: InvoiceState = InvoiceState.PENDING
    created_at: float = field(default_factory=time.time)
    amount_received: Optional[int] = None
    settled_at: Optional[float] = None

    def settle(self, amount: int, now: Optional[float] = None) -> "Invoice":
        """Return the settled copy of this invoice."""
        return replace(
            self,
            state=transition(self.state, InvoiceState.SETTLED),
            amount_received=amount,
            settled_at=time.time() if now is None else now,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "payment_hash": self.payment_hash,
            "payment_request": self.payment_request,
            "resource_id": self.resource_id,
            "amount": self.amount,
            "state": self.state.value,
            "created_at": self.created_at,
            "amount_received": self.amount_received,
            "settled_at": self.settled_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Invoice":
        return cls(
            payment_hash=data["payment_hash"],
            payment_request=data["payment_request"],
            resource_id=str(data["resource_id"]),
            amount=int(data["amount"]),
            state=InvoiceState(data.get("state", InvoiceState.PENDING.value)),
            created_at=float(data["created_at"]),
            amount_received=int(data["amount_received"]) if data.get("amount_received") is not None else None,
            settled_at=float(data["settled_at"]) if data.get("settled_at") is not None else None,
        )


class InvoiceStore(ABC):
    """Persistence interface consumed by the verifier."""

    @abstractmethod
    async def save(self, invoice: Invoice) -> None:
        """Persist a new invoice. The payment hash must not exist yet."""

    @abstractmethod
    async def find_by_hash(self, payment_hash: str) -> Optional[Invoice]:
        pass

    @abstractmethod
    async def mark_settled(self, payment_hash: str, amount: int) -> bool:
        """
        Move an invoice from pending to settled, recording the received amount.

        Returns:
            True if this call performed the transition, False if the invoice
            was already settled or is unknown.
        """

    @abstractmethod
    async def total_received(self, resource_id: str) -> int:
        """Sum of received amounts over settled invoices of a resource."""

    async def close(self) -> None:
        """Release connections. Nothing to do for process-local stores."""


class MemoryInvoiceStore(InvoiceStore):
    """
    Process-local store.

    Check-and-set in mark_settled runs without yielding to the event loop,
    so concurrent verifications of the same hash settle it once.
    """

    def __init__(self) -> None:
        self._invoices: Dict[str, Invoice] = {}
        self._received: Dict[str, int] = {}

    async def save(self, invoice: Invoice) -> None:
        if invoice.payment_hash in self._invoices:
            raise StorageFailure(f"Invoice {invoice.payment_hash} already exists")
        self._invoices[invoice.payment_hash] = invoice

    async def find_by_hash(self, payment_hash: str) -> Optional[Invoice]:
        return self._invoices.get(payment_hash)

    async def mark_settled(self, payment_hash: str, amount: int) -> bool:
        invoice = self._invoices.get(payment_hash)
        if invoice is None or invoice.state is InvoiceState.SETTLED:
            return False
        self._invoices[payment_hash] = invoice.settle(amount)
        self._received[invoice.resource_id] = self._received.get(invoice.resource_id, 0) + amount
        return True

    async def total_received(self, resource_id: str) -> int:
        return self._received.get(resource_id, 0)


# KEYS[1] invoice key; ARGV field/value pairs
_CREATE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 1 then
    return 0
end
redis.call('HSET', KEYS[1], unpack(ARGV))
return 1
"""

# KEYS[1] invoice key, KEYS[2] per-resource total key; ARGV amount, settled_at
_MARK_SETTLED_SCRIPT = """
if redis.call('HGET', KEYS[1], 'state') ~= 'pending' then
    return 0
end
redis.call('HSET', KEYS[1], 'state', 'settled', 'amount_received', ARGV[1], 'settled_at', ARGV[2])
redis.call('INCRBY', KEYS[2], ARGV[1])
return 1
"""


class RedisInvoiceStore(InvoiceStore):
    """
    Redis-backed store.

    Invoices are hashes under "{prefix}:invoice:{hash}" with every field kept
    as a string, so timestamps survive unrounded. Creation and settlement are
    Lua scripts: the existence/pending check and the write happen atomically
    on the server.

    Settlement touches the invoice key and "{prefix}:received:{resource_id}"
    in one script. Those keys hash to different slots, so this store needs a
    single Redis instance (or a replicated primary), not Redis Cluster.
    """

    def __init__(self, redis_client: Any, prefix: str = "paywall"):
        self._redis = redis_client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "paywall") -> "RedisInvoiceStore":
        import redis.asyncio as redis

        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def _invoice_key(self, payment_hash: str) -> str:
        return f"{self._prefix}:invoice:{payment_hash}"

    def _total_key(self, resource_id: str) -> str:
        return f"{self._prefix}:received:{resource_id}"

    async def save(self, invoice: Invoice) -> None:
        fields_and_values = []
        for key, value in invoice.to_dict().items():
            if value is not None:
                fields_and_values.extend([key, str(value)])
        try:
            created = await self._redis.eval(
                _CREATE_SCRIPT, 1, self._invoice_key(invoice.payment_hash), *fields_and_values
            )
        except Exception as exc:
            raise StorageFailure(f"Failed to save invoice: {exc}") from exc
        if int(created) != 1:
            raise StorageFailure(f"Invoice {invoice.payment_hash} already exists")

    async def find_by_hash(self, payment_hash: str) -> Optional[Invoice]:
        try:
            data = await self._redis.hgetall(self._invoice_key(payment_hash))
        except Exception as exc:
            raise StorageFailure(f"Failed to load invoice: {exc}") from exc
        if not data:
            return None
        return Invoice.from_dict(data)

    async def mark_settled(self, payment_hash: str, amount: int) -> bool:
        invoice = await self.find_by_hash(payment_hash)
        if invoice is None:
            return False
        try:
            result = await self._redis.eval(
                _MARK_SETTLED_SCRIPT,
                2,
                self._invoice_key(payment_hash),
                self._total_key(invoice.resource_id),
                int(amount),
                repr(time.time()),
            )
        except Exception as exc:
            raise StorageFailure(f"Failed to settle invoice: {exc}") from exc
        return int(result) == 1

    async def total_received(self, resource_id: str) -> int:
        try:
            value = await self._redis.get(self._total_key(resource_id))
        except Exception as exc:
            raise StorageFailure(f"Failed to load totals: {exc}") from exc
        return int(value) if value else 0

    async def close(self) -> None:
        await self._redis.aclose()
