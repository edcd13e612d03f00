"""
Global pytest configuration and fixtures for checkout workflow tests
"""

import logging

import pytest

from checkout_workflow.backend.adapters.mock_backend import FaultPlan, MockCheckoutBackend
from checkout_workflow.backend.registry import build_service_registry
from checkout_workflow.machines import build_checkout_machine, build_fulfillment_machine, build_payment_machine
from checkout_workflow.repositories.machine import StaticMachineRepository

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
)


@pytest.fixture
def fault_plan():
    """Failure injection shared with the backend fixture"""
    return FaultPlan()


@pytest.fixture
def backend(fault_plan):
    """Mock backend without simulated latency"""
    return MockCheckoutBackend(fault_plan=fault_plan, latency_scale=0.0)


@pytest.fixture
def services(backend):
    return build_service_registry(backend)


@pytest.fixture
def payment_machine():
    return build_payment_machine(max_retries=3, validation_delay_ms=0)


@pytest.fixture
def fulfillment_machine():
    return build_fulfillment_machine()


@pytest.fixture
def checkout_machine(payment_machine, fulfillment_machine):
    return build_checkout_machine(
        payment_machine=payment_machine,
        fulfillment_machine=fulfillment_machine,
        order_reset_ms=10000,
    )


@pytest.fixture
def machine_repository(checkout_machine, payment_machine, fulfillment_machine):
    return StaticMachineRepository(definitions=[checkout_machine, payment_machine, fulfillment_machine])
