from abc import ABC, abstractmethod
from typing import Any, Dict, List


class CheckoutBackend(ABC):
    """
    Abstract Base Class interface that defines the contract for the remote
    operations a checkout depends on (catalog, address validation, payment
    gateway, order store, mailer, inventory).

    Every operation either returns a JSON-compatible payload or raises an
    exception whose message is shown to the customer.
    """

    @abstractmethod
    async def fetch_products(self) -> Dict[str, Any]:
        """Returns {"products": [...], "timestamp": ...}."""
        pass

    @abstractmethod
    async def validate_shipping_address(self, shipping_data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def process_payment(self, payment_data: Dict[str, Any], order_total: float) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def save_order(self, order_data: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def send_order_confirmation(self, saved_order: Dict[str, Any], customer_email: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update_inventory(self, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        pass
