import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..interface import CheckoutBackend
from ...config import settings

logger = logging.getLogger(__name__)

# Simulated network latency per operation (milliseconds).
LATENCY_MS = {
    "fetch_products": 800,
    "validate_shipping_address": 1200,
    "process_payment": 2000,
    "save_order": 1000,
    "send_order_confirmation": 500,
    "update_inventory": 300,
}

UNSERVICEABLE_ZIP_PREFIX = "00000"
DECLINED_CARD_MARKER = "0000"

DEFAULT_INVENTORY = [
    {"id": 1, "name": "Duct Tape", "price": 12.99, "stock": 50},
    {"id": 2, "name": "Rope", "price": 8.50, "stock": 25},
    {"id": 3, "name": "Flashlight", "price": 24.99, "stock": 15},
    {"id": 4, "name": "Multi-tool", "price": 45.00, "stock": 8},
]


class BackendError(Exception):
    """Raised by the mock backend; the message is what the customer sees."""


@dataclass
class FaultPlan:
    """
    Explicit failure injection for the mock backend.

    `failures` maps an operation name to the number of upcoming calls that
    should fail; `messages` optionally overrides the error text per operation.
    """
    failures: Dict[str, int] = field(default_factory=dict)
    messages: Dict[str, str] = field(default_factory=dict)

    def fail(self, operation: str, times: int = 1, message: Optional[str] = None) -> "FaultPlan":
        self.failures[operation] = self.failures.get(operation, 0) + times
        if message is not None:
            self.messages[operation] = message
        return self

    def consume(self, operation: str) -> Optional[str]:
        """Returns the error message if this call should fail, consuming one failure."""
        remaining = self.failures.get(operation, 0)
        if remaining <= 0:
            return None
        self.failures[operation] = remaining - 1
        return self.messages.get(operation, f"Injected failure in {operation}")


class MockCheckoutBackend(CheckoutBackend):
    """
    In-memory stand-in for the remote services.

    Outcomes are deterministic: they depend only on the input (unserviceable
    zip codes, declined card numbers) and on the FaultPlan.
    """

    def __init__(
        self,
        fault_plan: Optional[FaultPlan] = None,
        latency_scale: float = settings.BACKEND_LATENCY_SCALE,
        inventory: Optional[List[Dict[str, Any]]] = None,
    ):
        self.fault_plan = fault_plan or FaultPlan()
        self.latency_scale = latency_scale
        self.inventory = [dict(item) for item in (inventory or DEFAULT_INVENTORY)]
        self.orders: List[Dict[str, Any]] = []
        self.calls: List[str] = []

    async def _simulate(self, operation: str) -> None:
        self.calls.append(operation)
        delay = LATENCY_MS[operation] * self.latency_scale / 1000.0
        await asyncio.sleep(delay)
        message = self.fault_plan.consume(operation)
        if message is not None:
            logger.info(f"Mock backend: injected failure in {operation}")
            raise BackendError(message)

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    async def fetch_products(self) -> Dict[str, Any]:
        await self._simulate("fetch_products")
        return {
            "products": [
                {
                    "id": item["id"],
                    "name": item["name"],
                    "price": item["price"],
                    "available": item["stock"] > 0,
                }
                for item in self.inventory
            ],
            "timestamp": self._now(),
        }

    async def validate_shipping_address(self, shipping_data: Dict[str, Any]) -> Dict[str, Any]:
        await self._simulate("validate_shipping_address")
        shipping_data = shipping_data or {}

        if str(shipping_data.get("zip") or "").startswith(UNSERVICEABLE_ZIP_PREFIX):
            raise BackendError("Invalid shipping address: Zip code not serviceable")

        normalized = dict(shipping_data)
        for key in ("street_address1", "city"):
            if normalized.get(key):
                normalized[key] = normalized[key].upper()

        return {
            "is_valid": True,
            "normalized_address": normalized,
            "email": shipping_data.get("email"),
            "estimated_delivery": (datetime.now(timezone.utc) + timedelta(days=3)).isoformat(),
        }

    async def process_payment(self, payment_data: Dict[str, Any], order_total: float) -> Dict[str, Any]:
        await self._simulate("process_payment")

        if DECLINED_CARD_MARKER in str((payment_data or {}).get("card_number") or ""):
            raise BackendError("Payment declined: Invalid card number")

        return {
            "transaction_id": f"txn_{uuid.uuid4().hex[:12]}",
            "amount": order_total,
            "status": "completed",
            "timestamp": self._now(),
        }

    async def save_order(self, order_data: Dict[str, Any]) -> Dict[str, Any]:
        await self._simulate("save_order")
        order = {
            "id": f"order_{uuid.uuid4().hex[:12]}",
            **(order_data or {}),
            "status": "confirmed",
            "created_at": self._now(),
        }
        self.orders.append(order)
        return order

    async def send_order_confirmation(self, saved_order: Dict[str, Any], customer_email: str) -> Dict[str, Any]:
        await self._simulate("send_order_confirmation")
        return {
            "email_sent": True,
            "confirmation_number": f"conf_{uuid.uuid4().hex[:8]}",
            "sent_to": customer_email,
            "timestamp": self._now(),
        }

    async def update_inventory(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        await self._simulate("update_inventory")
        for item in items:
            stocked = next((inv for inv in self.inventory if inv["id"] == item.get("id")), None)
            if stocked is not None:
                stocked["stock"] = max(0, stocked["stock"] - item.get("quantity", 1))
        return {"updated": True, "timestamp": self._now()}
