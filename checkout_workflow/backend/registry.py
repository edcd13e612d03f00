"""
Service Registry

Adapts a CheckoutBackend to the single-argument services the machines invoke
by name. Each service receives the input projected from the machine context.
"""

from typing import Dict

from ..domain.models import ServiceFn
from .interface import CheckoutBackend


def build_service_registry(backend: CheckoutBackend) -> Dict[str, ServiceFn]:
    async def fetch_products(_):
        return await backend.fetch_products()

    async def validate_shipping_address(payload):
        return await backend.validate_shipping_address(payload["shipping_data"])

    async def process_payment(payload):
        return await backend.process_payment(payload["payment_data"], payload["order_total"])

    async def save_order(payload):
        return await backend.save_order(payload["order_data"])

    async def send_order_confirmation(payload):
        return await backend.send_order_confirmation(payload["saved_order"], payload["customer_email"])

    async def update_inventory(payload):
        return await backend.update_inventory(payload["items"])

    return {
        "fetch_products": fetch_products,
        "validate_shipping_address": validate_shipping_address,
        "process_payment": process_payment,
        "save_order": save_order,
        "send_order_confirmation": send_order_confirmation,
        "update_inventory": update_inventory,
    }
