"""
Schemas - Event Models

Defines the tagged Event model that every input to a running machine is
expressed as, plus constructors for the synthetic kinds.
"""

from checkout_workflow.schemas.events import (
    INIT_EVENT,
    Event,
    EventKind,
    user_event,
)

__all__ = [
    "INIT_EVENT",
    "Event",
    "EventKind",
    "user_event",
]
