"""
Schemas - Events

Events are the only way anything reaches a running machine: user actions,
settled invocations, fired timers and completed child machines all arrive as
an Event on the interpreter's queue.

Synthetic events (everything except USER) carry the path of the state that
produced them and the id of the handle that was live at the time. The
interpreter uses both to recognise settlements that belong to a state the
machine has already left.
"""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..domain.models import done_event_type, error_event_type, timer_event_type


class EventKind(str, Enum):
    """
    USER: An external action (button press, API call).
    INIT: The implicit event that enters the initial state.
    INVOCATION_DONE: An async service resolved.
    INVOCATION_ERROR: An async service (or a child machine) failed to run.
    TIMER: A delayed transition became due.
    CHILD_DONE: A nested machine reached a terminal state.
    """
    USER = "USER"
    INIT = "INIT"
    INVOCATION_DONE = "INVOCATION_DONE"
    INVOCATION_ERROR = "INVOCATION_ERROR"
    TIMER = "TIMER"
    CHILD_DONE = "CHILD_DONE"


SETTLEMENT_KINDS = (
    EventKind.INVOCATION_DONE,
    EventKind.INVOCATION_ERROR,
    EventKind.CHILD_DONE,
)


class Event(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    type: str
    kind: EventKind = EventKind.USER
    data: Dict[str, Any] = Field(default_factory=dict)

    # Set on synthetic events only.
    origin_state: Optional[str] = None
    handle_id: Optional[str] = None

    @property
    def is_settlement(self) -> bool:
        return self.kind in SETTLEMENT_KINDS

    @property
    def output(self) -> Any:
        return self.data.get("output")

    @property
    def error(self) -> Optional[str]:
        return self.data.get("error")


INIT_EVENT = Event(type="machine.init", kind=EventKind.INIT)


def user_event(event_type: str, **data: Any) -> Event:
    return Event(type=event_type, data=data)


def invocation_done(invoke_id: str, output: Any, origin_state: str, handle_id: str) -> Event:
    return Event(
        type=done_event_type(invoke_id),
        kind=EventKind.INVOCATION_DONE,
        data={"output": output},
        origin_state=origin_state,
        handle_id=handle_id,
    )


def invocation_error(invoke_id: str, message: str, origin_state: str, handle_id: str) -> Event:
    return Event(
        type=error_event_type(invoke_id),
        kind=EventKind.INVOCATION_ERROR,
        data={"error": message},
        origin_state=origin_state,
        handle_id=handle_id,
    )


def child_done(invoke_id: str, output: Any, origin_state: str, handle_id: str) -> Event:
    return Event(
        type=done_event_type(invoke_id),
        kind=EventKind.CHILD_DONE,
        data={"output": output},
        origin_state=origin_state,
        handle_id=handle_id,
    )


def timer_fired(state_path: str, delay_ms: int, handle_id: str) -> Event:
    return Event(
        type=timer_event_type(state_path, delay_ms),
        kind=EventKind.TIMER,
        data={"delay_ms": delay_ms},
        origin_state=state_path,
        handle_id=handle_id,
    )
