"""
Execution Layer - Running Machines

Defines the TransitionEngine (deterministic transition function) and the
MachineInterpreter (event queue, invocations, timers, child machines) that
together run checkout workflows.
"""

from checkout_workflow.execution.engine import TransitionEngine
from checkout_workflow.execution.interpreter import MachineInterpreter
from checkout_workflow.execution.snapshot_channel import SnapshotChannel


__all__ = [
    "MachineInterpreter",
    "SnapshotChannel",
    "TransitionEngine",
]
