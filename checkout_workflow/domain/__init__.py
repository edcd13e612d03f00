"""
Domain Layer - Static Machine Definitions

Defines the static structure of workflow machines: states, transitions,
invocations and nested child machines.
"""

from checkout_workflow.domain.exceptions import (
    InterpreterStateError,
    MachineDefinitionError,
)
from checkout_workflow.domain.models import (
    ChildSpec,
    Invocation,
    MachineDefinition,
    StateNode,
    Transition,
)

__all__ = [
    "ChildSpec",
    "Invocation",
    "InterpreterStateError",
    "MachineDefinition",
    "MachineDefinitionError",
    "StateNode",
    "Transition",
]
