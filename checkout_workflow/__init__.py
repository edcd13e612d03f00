"""
Checkout Workflow

A multi-step checkout modelled as a hierarchical, event-driven state machine
that coordinates asynchronous backend calls, delegates payment and
fulfillment to child machines and persists a snapshot after every transition.
"""

from checkout_workflow.domain import (
    ChildSpec,
    Invocation,
    InterpreterStateError,
    MachineDefinition,
    MachineDefinitionError,
    StateNode,
    Transition,
)
from checkout_workflow.state import (
    ChildResult,
    MachineSnapshot,
    MachineStatus,
)
from checkout_workflow.schemas import Event, EventKind
from checkout_workflow.execution import MachineInterpreter, SnapshotChannel, TransitionEngine

__all__ = [
    # Domain Layer
    "ChildSpec",
    "Invocation",
    "InterpreterStateError",
    "MachineDefinition",
    "MachineDefinitionError",
    "StateNode",
    "Transition",
    # State Layer
    "ChildResult",
    "MachineSnapshot",
    "MachineStatus",
    # Schemas
    "Event",
    "EventKind",
    # Execution Layer
    "MachineInterpreter",
    "SnapshotChannel",
    "TransitionEngine",
]
