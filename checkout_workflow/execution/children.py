"""
Child Machine Runner - Nested Workflows as Invocations

A child machine is started as the invocation of its parent's state. It runs
against its own queue and engine, and the parent only ever sees the tagged
ChildResult produced by the child's terminal state. The parent never reaches
into the child's states or context.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Dict, Mapping

from ..domain.models import ChildSpec
from ..schemas.events import Event, child_done, invocation_error
from ..state.models import ChildResult

if TYPE_CHECKING:
    from .interpreter import MachineInterpreter
    from .invocations import InvocationHandle

logger = logging.getLogger(__name__)


class ChildMachineRunner:
    def __init__(self, parent: MachineInterpreter):
        self._parent = parent

    def spawn(
        self, handle: InvocationHandle, spec: ChildSpec, context: Mapping[str, Any]
    ) -> None:
        try:
            payload: Dict[str, Any] = dict(spec.input(context)) if spec.input else {}
        except Exception as e:
            logger.exception(f"Input projection for child '{spec.id}' failed")
            self._fail(handle, spec, f"Invalid input for child '{spec.id}': {e}")
            return

        child = self._parent.create_child(spec.machine, name=f"{self._parent.name}/{spec.id}")
        handle.child = child
        handle.forward_events = tuple(spec.forward_events)
        child.on_done(lambda output: self._deliver(handle, spec, output))

        logger.info(f"Spawning child '{child.name}' from {handle.state_path}")
        try:
            child.start(context=payload)
            if spec.start_event and not child.done:
                child.send(Event(type=spec.start_event, data=payload))
        except Exception as e:
            logger.exception(f"Child machine '{child.name}' failed to start")
            child.stop()
            self._fail(handle, spec, f"Child machine '{spec.machine.id}' failed to start: {e}")

    def _deliver(self, handle: InvocationHandle, spec: ChildSpec, output: Any) -> None:
        if isinstance(output, ChildResult):
            logger.info(f"Child '{spec.id}' finished with {output.status}")
            event = child_done(spec.id, output, handle.state_path, handle.handle_id)
        else:
            event = invocation_error(
                spec.id,
                f"Child machine '{spec.machine.id}' finished without a result.",
                handle.state_path,
                handle.handle_id,
            )
        self._parent.send(event)

    def _fail(self, handle: InvocationHandle, spec: ChildSpec, message: str) -> None:
        self._parent.send(invocation_error(spec.id, message, handle.state_path, handle.handle_id))
