"""
Checkout Machine - Parent Workflow

Drives a customer from product selection through shipping, payment details
and order review, then delegates payment and fulfillment to child machines.

The shipping / card / billing / review forms are grouped under the compound
`checkout` state so CANCEL_CHECKOUT applies to all of them. CLEAR_ERROR is a
machine-wide rule.
"""

import copy
from typing import Any, Dict, List, Mapping, Optional

from ..config import settings
from ..domain.models import ChildSpec, Invocation, MachineDefinition, StateNode, Transition
from ..state.models import ChildResult
from .fulfillment import FULFILL_ORDER, build_fulfillment_machine
from .payment import CANCEL, PROCESS_PAYMENT, RETRY, build_payment_machine

MACHINE_ID = "checkout"

AUTO_SELECTED_ITEMS = 2

INITIAL_CONTEXT: Dict[str, Any] = {
    "products": [],
    "selected_items": [],
    "shipping_data": None,
    "credit_card_data": None,
    "billing_data": None,
    "validated_shipping": None,
    "payment_result": None,
    "order_result": None,
    "error": None,
    "is_loading": False,
    "order_total": 0,
}


def _child_error(event) -> Optional[str]:
    if isinstance(event.output, ChildResult):
        return event.output.error
    return event.error


def _calculate_total(items: List[Mapping[str, Any]]) -> float:
    total = sum(float(item["price"]) * item.get("quantity", 1) for item in items)
    return round(total, 2)


# ==========================================================================
# Actions
# ==========================================================================

def set_loading(ctx, event):
    return {"is_loading": True}


def clear_error(ctx, event):
    return {"error": None}


def store_products(ctx, event):
    products = list(event.output["products"])
    selected = [{**p, "quantity": 1} for p in products[:AUTO_SELECTED_ITEMS]]
    return {"products": products, "selected_items": selected, "is_loading": False, "error": None}


def record_load_failure(ctx, event):
    return {"error": f"Failed to load products: {event.error}", "is_loading": False}


def add_item(ctx, event):
    item = event.data["item"]
    items = [dict(i) for i in ctx["selected_items"]]
    for existing in items:
        if existing["id"] == item["id"]:
            existing["quantity"] = existing.get("quantity", 1) + 1
            break
    else:
        items.append({**item, "quantity": 1})
    return {"selected_items": items}


def remove_item(ctx, event):
    item_id = event.data.get("item_id")
    return {"selected_items": [i for i in ctx["selected_items"] if i["id"] != item_id]}


def calculate_total(ctx, event):
    return {"order_total": _calculate_total(ctx["selected_items"])}


def store_shipping(ctx, event):
    return {"shipping_data": event.data.get("shipping_data")}


def store_validated_shipping(ctx, event):
    return {"validated_shipping": event.output, "is_loading": False, "error": None}


def record_error(ctx, event):
    return {"error": event.error, "is_loading": False}


def store_credit_card(ctx, event):
    return {"credit_card_data": event.data.get("credit_card_data")}


def store_billing(ctx, event):
    return {"billing_data": event.data.get("billing_data")}


def store_payment_result(ctx, event):
    return {
        "payment_result": event.output.model_dump(mode="json"),
        "is_loading": False,
        "error": None,
    }


def record_payment_failure(ctx, event):
    return {"error": _child_error(event), "is_loading": False}


def clear_payment(ctx, event):
    return {"error": None, "payment_result": None}


def store_order_result(ctx, event):
    return {"order_result": event.output.model_dump(mode="json"), "is_loading": False}


def record_fulfillment_failure(ctx, event):
    return {"error": f"Order fulfillment failed: {_child_error(event)}", "is_loading": False}


def reset_order(ctx, event):
    return {
        "selected_items": [],
        "shipping_data": None,
        "credit_card_data": None,
        "billing_data": None,
        "validated_shipping": None,
        "payment_result": None,
        "order_result": None,
        "order_total": 0,
    }


def reset_catalog(ctx, event):
    return {"error": None, "products": [], "selected_items": [], "order_total": 0}


# ==========================================================================
# Guards
# ==========================================================================

def has_selected_items(ctx, event) -> bool:
    return bool(ctx["selected_items"])


def child_succeeded(ctx, event) -> bool:
    return isinstance(event.output, ChildResult) and event.output.success


# ==========================================================================
# Child Inputs
# ==========================================================================

def shipping_input(ctx):
    return {"shipping_data": ctx["shipping_data"]}


def payment_input(ctx):
    return {"payment_data": ctx["credit_card_data"], "order_total": ctx["order_total"]}


def fulfillment_input(ctx):
    return {
        "order_data": {
            "items": ctx["selected_items"],
            "shipping_data": ctx["validated_shipping"],
            "billing_data": ctx["billing_data"],
            "payment_result": ctx["payment_result"],
            "total": ctx["order_total"],
        }
    }


def support_output(ctx):
    return {"error": ctx["error"], "order_total": ctx["order_total"]}


def build_checkout_machine(
    payment_machine: Optional[MachineDefinition] = None,
    fulfillment_machine: Optional[MachineDefinition] = None,
    order_reset_ms: Optional[int] = None,
) -> MachineDefinition:
    """
    Builds the checkout workflow.

    The child definitions can be swapped out (e.g. for stubs in tests); they
    default to the standard payment and fulfillment machines.
    """
    payment_machine = payment_machine or build_payment_machine()
    fulfillment_machine = fulfillment_machine or build_fulfillment_machine()
    if order_reset_ms is None:
        order_reset_ms = settings.ORDER_COMPLETE_RESET_MS

    checkout_states = {
        "shipping_address": StateNode(
            on={
                "SUBMIT_SHIPPING": [Transition(target="validating_shipping", actions=["store_shipping"])],
                "BACK_TO_CART": [Transition(target="product_selection")],
            },
        ),
        "validating_shipping": StateNode(
            entry=["set_loading"],
            invoke=Invocation(
                id="validate_shipping",
                src="validate_shipping_address",
                input=shipping_input,
                on_done=[Transition(target="credit_card_details", actions=["store_validated_shipping"])],
                on_error=[Transition(target="shipping_address", actions=["record_error"])],
            ),
        ),
        "credit_card_details": StateNode(
            on={
                "SUBMIT_PAYMENT": [Transition(target="billing_address", actions=["store_credit_card"])],
                "BACK_TO_SHIPPING": [Transition(target="shipping_address")],
            },
        ),
        "billing_address": StateNode(
            on={
                "SUBMIT_BILLING": [Transition(target="order_review", actions=["store_billing"])],
                "BACK_TO_PAYMENT": [Transition(target="credit_card_details")],
            },
        ),
        "order_review": StateNode(
            on={
                "SUBMIT_ORDER": [Transition(target="processing_payment")],
                "EDIT_SHIPPING": [Transition(target="shipping_address")],
                "EDIT_PAYMENT": [Transition(target="credit_card_details")],
                "EDIT_BILLING": [Transition(target="billing_address")],
            },
        ),
    }

    return MachineDefinition(
        id=MACHINE_ID,
        initial="initializing",
        context=copy.deepcopy(INITIAL_CONTEXT),
        on={"CLEAR_ERROR": [Transition(actions=["clear_error"])]},
        states={
            "initializing": StateNode(
                always=[Transition(target="loading_products")],
            ),
            "loading_products": StateNode(
                entry=["set_loading"],
                invoke=Invocation(
                    id="load_products",
                    src="fetch_products",
                    on_done=[
                        Transition(target="product_selection", actions=["store_products", "calculate_total"])
                    ],
                    on_error=[Transition(target="error_state", actions=["record_load_failure"])],
                ),
            ),
            "product_selection": StateNode(
                on={
                    "ADD_ITEM": [Transition(actions=["add_item", "calculate_total"])],
                    "REMOVE_ITEM": [Transition(actions=["remove_item", "calculate_total"])],
                    "PROCEED_TO_SHIPPING": [Transition(target="checkout", guard="has_selected_items")],
                },
            ),
            "checkout": StateNode(
                initial="shipping_address",
                states=checkout_states,
                on={"CANCEL_CHECKOUT": [Transition(target="product_selection", actions=["clear_error"])]},
            ),
            "processing_payment": StateNode(
                entry=["set_loading"],
                invoke=ChildSpec(
                    id="payment",
                    machine=payment_machine,
                    input=payment_input,
                    start_event=PROCESS_PAYMENT,
                    forward_events=[RETRY, CANCEL],
                    on_done=[
                        Transition(
                            target="fulfilling_order",
                            guard="child_succeeded",
                            actions=["store_payment_result"],
                        ),
                        Transition(target="payment_failed", actions=["record_payment_failure"]),
                    ],
                    on_error=[Transition(target="payment_failed", actions=["record_payment_failure"])],
                ),
            ),
            "payment_failed": StateNode(
                on={
                    "RETRY_PAYMENT": [Transition(target="processing_payment")],
                    "EDIT_PAYMENT": [Transition(target="checkout.credit_card_details")],
                    "CANCEL_ORDER": [Transition(target="product_selection", actions=["clear_payment"])],
                },
            ),
            "fulfilling_order": StateNode(
                entry=["set_loading"],
                invoke=ChildSpec(
                    id="fulfillment",
                    machine=fulfillment_machine,
                    input=fulfillment_input,
                    start_event=FULFILL_ORDER,
                    on_done=[
                        Transition(
                            target="order_complete",
                            guard="child_succeeded",
                            actions=["store_order_result"],
                        ),
                        Transition(target="fulfillment_failed", actions=["record_fulfillment_failure"]),
                    ],
                    on_error=[Transition(target="fulfillment_failed", actions=["record_fulfillment_failure"])],
                ),
            ),
            "fulfillment_failed": StateNode(
                on={
                    "RETRY_FULFILLMENT": [Transition(target="fulfilling_order")],
                    "CONTACT_SUPPORT": [Transition(target="support_contact")],
                },
            ),
            "order_complete": StateNode(
                after={order_reset_ms: [Transition(target="product_selection", actions=["reset_order"])]},
                on={"START_NEW_ORDER": [Transition(target="product_selection", actions=["reset_order"])]},
            ),
            "error_state": StateNode(
                on={
                    "RETRY": [Transition(target="loading_products")],
                    "RESET": [Transition(target="initializing", actions=["reset_catalog"])],
                },
            ),
            "support_contact": StateNode(terminal=True, output=support_output),
        },
        actions={
            "set_loading": set_loading,
            "clear_error": clear_error,
            "store_products": store_products,
            "record_load_failure": record_load_failure,
            "add_item": add_item,
            "remove_item": remove_item,
            "calculate_total": calculate_total,
            "store_shipping": store_shipping,
            "store_validated_shipping": store_validated_shipping,
            "record_error": record_error,
            "store_credit_card": store_credit_card,
            "store_billing": store_billing,
            "store_payment_result": store_payment_result,
            "record_payment_failure": record_payment_failure,
            "clear_payment": clear_payment,
            "store_order_result": store_order_result,
            "record_fulfillment_failure": record_fulfillment_failure,
            "reset_order": reset_order,
            "reset_catalog": reset_catalog,
        },
        guards={
            "has_selected_items": has_selected_items,
            "child_succeeded": child_succeeded,
        },
    )
