"""
State Layer - Runtime Data Models

Defines the runtime data produced by running machines: snapshots and the
tagged results child machines return to their parents.
"""

from checkout_workflow.state.models import (
    ChildResult,
    MachineSnapshot,
    MachineStatus,
)

__all__ = [
    "ChildResult",
    "MachineSnapshot",
    "MachineStatus",
]
