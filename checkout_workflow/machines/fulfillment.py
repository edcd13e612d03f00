"""
Fulfillment Machine - Child Workflow with Degraded Success

Saving the order is the only critical step. The confirmation email and the
inventory adjustment are best-effort: their failure is recorded in the
result and the workflow still completes successfully.
"""

from typing import Any, Mapping

from ..domain.models import Invocation, MachineDefinition, StateNode, Transition
from ..state.models import ChildResult

MACHINE_ID = "fulfillment"

FULFILL_ORDER = "FULFILL_ORDER"
DEFAULT_CUSTOMER_EMAIL = "customer@example.com"


def store_order_data(ctx, event):
    return {"order_data": event.data.get("order_data", ctx.get("order_data")), "error": None}


def store_saved_order(ctx, event):
    return {"saved_order": event.output}


def record_save_failure(ctx, event):
    return {"error": f"Failed to save order: {event.error}"}


def store_confirmation(ctx, event):
    return {"confirmation_result": event.output}


def record_email_failure(ctx, event):
    return {"confirmation_result": {"email_sent": False, "error": "Email failed"}}


def store_inventory(ctx, event):
    return {"inventory_result": event.output}


def record_inventory_failure(ctx, event):
    return {"inventory_result": {"updated": False, "error": "Inventory update failed"}}


def save_order_input(ctx: Mapping[str, Any]) -> Mapping[str, Any]:
    return {"order_data": ctx["order_data"]}


def confirmation_input(ctx):
    shipping = (ctx["order_data"] or {}).get("shipping_data") or {}
    return {
        "saved_order": ctx["saved_order"],
        "customer_email": shipping.get("email") or DEFAULT_CUSTOMER_EMAIL,
    }


def inventory_input(ctx):
    return {"items": (ctx["order_data"] or {}).get("items") or []}


def completed_output(ctx) -> ChildResult:
    return ChildResult.succeeded(
        MACHINE_ID,
        order=ctx["saved_order"],
        confirmation=ctx["confirmation_result"],
        inventory=ctx["inventory_result"],
    )


def failed_output(ctx) -> ChildResult:
    return ChildResult.failed(MACHINE_ID, ctx["error"])


def build_fulfillment_machine() -> MachineDefinition:
    return MachineDefinition(
        id=MACHINE_ID,
        initial="idle",
        context={
            "order_data": None,
            "saved_order": None,
            "confirmation_result": None,
            "inventory_result": None,
            "error": None,
        },
        states={
            "idle": StateNode(
                on={FULFILL_ORDER: [Transition(target="saving_order", actions=["store_order_data"])]},
            ),
            "saving_order": StateNode(
                invoke=Invocation(
                    id="save_order",
                    src="save_order",
                    input=save_order_input,
                    on_done=[Transition(target="sending_confirmation", actions=["store_saved_order"])],
                    on_error=[Transition(target="failed", actions=["record_save_failure"])],
                ),
            ),
            "sending_confirmation": StateNode(
                invoke=Invocation(
                    id="send_confirmation",
                    src="send_order_confirmation",
                    input=confirmation_input,
                    on_done=[Transition(target="updating_inventory", actions=["store_confirmation"])],
                    on_error=[Transition(target="updating_inventory", actions=["record_email_failure"])],
                ),
            ),
            "updating_inventory": StateNode(
                invoke=Invocation(
                    id="update_inventory",
                    src="update_inventory",
                    input=inventory_input,
                    on_done=[Transition(target="completed", actions=["store_inventory"])],
                    on_error=[Transition(target="completed", actions=["record_inventory_failure"])],
                ),
            ),
            "completed": StateNode(terminal=True, output=completed_output),
            "failed": StateNode(terminal=True, output=failed_output),
        },
        actions={
            "store_order_data": store_order_data,
            "store_saved_order": store_saved_order,
            "record_save_failure": record_save_failure,
            "store_confirmation": store_confirmation,
            "record_email_failure": record_email_failure,
            "store_inventory": store_inventory,
            "record_inventory_failure": record_inventory_failure,
        },
    )
