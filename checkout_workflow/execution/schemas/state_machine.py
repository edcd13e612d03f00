"""
Transition Types - FSM State Transition Definitions

Type definitions for the output of the TransitionEngine. The engine never
performs side effects itself; it returns the effects to run and the
interpreter executes them after the transition is committed.
"""

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Union


class StateMachineTransition(Enum):
    """
    Strict State Machine terminology describing what happened to the state pointer.
    """

    HOLD = auto()  # No rule matched. State and context are untouched.
    UPDATE = auto()  # A rule matched but the pointer stayed put (context may have changed).
    ADVANCE = auto()  # The pointer moved to another state.
    EXIT = auto()  # The pointer moved to a terminal state.


@dataclass(frozen=True)
class StartInvocation:
    state_path: str


@dataclass(frozen=True)
class CancelInvocation:
    state_path: str


@dataclass(frozen=True)
class ArmTimer:
    state_path: str
    delay_ms: int


@dataclass(frozen=True)
class CancelTimers:
    state_path: str


Effect = Union[StartInvocation, CancelInvocation, ArmTimer, CancelTimers]


@dataclass
class TransitionResult:
    """
    Outcome of feeding one event to the TransitionEngine.

    For HOLD, `value` and `context` are the inputs, returned unchanged.
    """

    transition_type: StateMachineTransition
    value: str
    context: Dict[str, Any]
    effects: List[Effect] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.transition_type != StateMachineTransition.HOLD

    @property
    def done(self) -> bool:
        return self.transition_type == StateMachineTransition.EXIT
