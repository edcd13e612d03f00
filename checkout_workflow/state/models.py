"""
State Layer - Runtime Data Models

This module defines the runtime data produced by running machines: the
snapshot of a machine's position and context, and the tagged result a child
machine hands back to its parent when it finishes.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field


class MachineStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    RUNNING = "RUNNING"
    DONE = "DONE"  # A terminal state was reached
    STOPPED = "STOPPED"


class ChildResult(BaseModel):
    """
    Represents the output of a completed child machine.

    Parents route on `status` only; they never look at the child's states.
    """
    source_machine_id: str
    status: Literal["SUCCESS", "FAILURE"]
    error: Optional[str] = None
    data: Dict[str, Any] = Field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == "SUCCESS"

    @classmethod
    def succeeded(cls, source_machine_id: str, **data: Any) -> "ChildResult":
        return cls(source_machine_id=source_machine_id, status="SUCCESS", data=data)

    @classmethod
    def failed(cls, source_machine_id: str, error: str, **data: Any) -> "ChildResult":
        return cls(source_machine_id=source_machine_id, status="FAILURE", error=error, data=data)


class MachineSnapshot(BaseModel):
    """
    Position and context of a machine instance right after a committed transition.

    `value` is the dotted path of the active leaf state (e.g. "checkout.order_review").
    """
    machine_id: str
    value: str
    context: Dict[str, Any] = Field(default_factory=dict)
    status: MachineStatus = MachineStatus.RUNNING
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def matches(self, path: str) -> bool:
        """True if `path` is the active state or one of its ancestors."""
        return self.value == path or self.value.startswith(f"{path}.")
