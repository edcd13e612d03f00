"""
Machines - Concrete Workflow Definitions

The checkout parent and its payment / fulfillment children.
"""

from checkout_workflow.machines.checkout import build_checkout_machine
from checkout_workflow.machines.fulfillment import build_fulfillment_machine
from checkout_workflow.machines.payment import build_payment_machine

__all__ = [
    "build_checkout_machine",
    "build_fulfillment_machine",
    "build_payment_machine",
]
