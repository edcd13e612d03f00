"""
Payment Machine - Child Workflow with Bounded Retry

idle -> validating -> processing -> success | failed
failed --RETRY--> processing (while retry_count < max_retries) | max_retries_reached
failed --CANCEL--> cancelled

`retry_count` only grows when a processing attempt fails, so a machine that
has failed N times has made N attempts. Exhausting the retries and being
cancelled are different terminals; only the former carries the original
failure message.
"""

from typing import Any, Mapping

from ..config import settings
from ..domain.models import Invocation, MachineDefinition, StateNode, Transition
from ..state.models import ChildResult

MACHINE_ID = "payment"

PROCESS_PAYMENT = "PROCESS_PAYMENT"
RETRY = "RETRY"
CANCEL = "CANCEL"


# ==========================================================================
# Actions
# ==========================================================================

def store_payment_request(ctx: Mapping[str, Any], event) -> Mapping[str, Any]:
    return {
        "payment_data": event.data.get("payment_data", ctx.get("payment_data")),
        "order_total": event.data.get("order_total", ctx.get("order_total", 0)),
        "error": None,
    }


def clear_error(ctx, event):
    return {"error": None}


def store_transaction(ctx, event):
    return {"transaction_result": event.output, "error": None}


def record_failure(ctx, event):
    return {"error": event.error, "retry_count": ctx["retry_count"] + 1}


# ==========================================================================
# Guards
# ==========================================================================

def can_retry(ctx: Mapping[str, Any], event) -> bool:
    return ctx["retry_count"] < ctx["max_retries"]


# ==========================================================================
# Outputs
# ==========================================================================

def success_output(ctx) -> ChildResult:
    return ChildResult.succeeded(MACHINE_ID, transaction_result=ctx["transaction_result"])


def exhausted_output(ctx) -> ChildResult:
    return ChildResult.failed(
        MACHINE_ID,
        "Maximum retry attempts reached",
        original_error=ctx["error"],
        retry_count=ctx["retry_count"],
    )


def cancelled_output(ctx) -> ChildResult:
    return ChildResult.failed(MACHINE_ID, "Payment cancelled by user")


def payment_input(ctx) -> Mapping[str, Any]:
    return {"payment_data": ctx["payment_data"], "order_total": ctx["order_total"]}


def build_payment_machine(
    max_retries: int = None,
    validation_delay_ms: int = None,
) -> MachineDefinition:
    """
    Builds the payment workflow.

    Args:
        max_retries: Failed attempts allowed before giving up. Defaults to
            settings.MAX_PAYMENT_RETRIES.
        validation_delay_ms: Pause in `validating` before the charge is
            attempted. Defaults to settings.PAYMENT_VALIDATION_DELAY_MS.
    """
    if max_retries is None:
        max_retries = settings.MAX_PAYMENT_RETRIES
    if validation_delay_ms is None:
        validation_delay_ms = settings.PAYMENT_VALIDATION_DELAY_MS

    return MachineDefinition(
        id=MACHINE_ID,
        initial="idle",
        context={
            "payment_data": None,
            "order_total": 0,
            "transaction_result": None,
            "error": None,
            "retry_count": 0,
            "max_retries": max_retries,
        },
        states={
            "idle": StateNode(
                on={PROCESS_PAYMENT: [Transition(target="validating", actions=["store_payment_request"])]},
            ),
            "validating": StateNode(
                after={validation_delay_ms: [Transition(target="processing", actions=["clear_error"])]},
            ),
            "processing": StateNode(
                invoke=Invocation(
                    id="charge",
                    src="process_payment",
                    input=payment_input,
                    on_done=[Transition(target="success", actions=["store_transaction"])],
                    on_error=[Transition(target="failed", actions=["record_failure"])],
                ),
            ),
            "failed": StateNode(
                on={
                    RETRY: [
                        Transition(target="processing", guard="can_retry"),
                        Transition(target="max_retries_reached"),
                    ],
                    CANCEL: [Transition(target="cancelled")],
                },
            ),
            "success": StateNode(terminal=True, output=success_output),
            "max_retries_reached": StateNode(terminal=True, output=exhausted_output),
            "cancelled": StateNode(terminal=True, output=cancelled_output),
        },
        actions={
            "store_payment_request": store_payment_request,
            "clear_error": clear_error,
            "store_transaction": store_transaction,
            "record_failure": record_failure,
        },
        guards={"can_retry": can_retry},
    )
