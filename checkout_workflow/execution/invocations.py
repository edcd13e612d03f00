"""
Invocation Manager - Asynchronous Work Bound to a State

Each machine instance has at most one outstanding invocation. Starting a new
one abandons the previous handle: the abandoned operation is left to finish,
but its settlement is recognised as stale by the interpreter and discarded.

A service failure never propagates past this boundary. It is turned into an
error event carrying a human-readable message.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping, Optional, Tuple

from ..domain.models import ChildSpec, Invocation, InvokeSpec, ServiceFn
from ..schemas.events import Event, invocation_done, invocation_error
from .children import ChildMachineRunner

if TYPE_CHECKING:
    from .interpreter import MachineInterpreter

logger = logging.getLogger(__name__)


@dataclass
class InvocationHandle:
    handle_id: str
    state_path: str
    invoke_id: str
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    child: Optional["MachineInterpreter"] = field(default=None, repr=False)
    forward_events: Tuple[str, ...] = ()
    stale: bool = False


class InvocationManager:
    def __init__(self, interpreter: MachineInterpreter, services: Mapping[str, ServiceFn]):
        self._interpreter = interpreter
        self._services = services
        self._children = ChildMachineRunner(interpreter)
        self._current: Optional[InvocationHandle] = None

    @property
    def current(self) -> Optional[InvocationHandle]:
        return self._current

    def start(
        self, state_path: str, descriptor: InvokeSpec, context: Mapping[str, Any]
    ) -> InvocationHandle:
        if self._current is not None:
            logger.debug(f"Abandoning invocation '{self._current.invoke_id}' of {self._current.state_path}")
            self.cancel(self._current)

        handle = InvocationHandle(
            handle_id=uuid.uuid4().hex,
            state_path=state_path,
            invoke_id=descriptor.id,
        )
        self._current = handle

        if isinstance(descriptor, ChildSpec):
            self._children.spawn(handle, descriptor, context)
        else:
            self._dispatch(handle, descriptor, context)
        return handle

    def cancel(self, handle: InvocationHandle, abort: bool = False) -> None:
        """
        Marks a handle stale. Child machines are stopped; plain tasks keep
        running unless `abort` is set, and their settlement is discarded.
        """
        handle.stale = True
        if self._current is handle:
            self._current = None
        if handle.child is not None:
            handle.child.stop()
        if abort and handle.task is not None and not handle.task.done():
            handle.task.cancel()

    def cancel_state(self, state_path: str) -> None:
        if self._current is not None and self._current.state_path == state_path:
            self.cancel(self._current)

    def shutdown(self) -> None:
        if self._current is not None:
            self.cancel(self._current, abort=True)

    def is_current(self, event: Event) -> bool:
        handle = self._current
        return (
            handle is not None
            and not handle.stale
            and handle.handle_id == event.handle_id
            and handle.state_path == event.origin_state
        )

    def settle(self, event: Event) -> None:
        if self.is_current(event):
            self._current = None

    def forward(self, event: Event) -> bool:
        """Relays a user event to the running child if the child spec asks for it."""
        handle = self._current
        if handle is None or handle.child is None or event.type not in handle.forward_events:
            return False
        logger.debug(f"Forwarding {event.type} to child '{handle.child.name}'")
        handle.child.send(event)
        return True

    # ==========================================================================
    # Service Dispatch
    # ==========================================================================

    def _dispatch(
        self, handle: InvocationHandle, descriptor: Invocation, context: Mapping[str, Any]
    ) -> None:
        service = self._services.get(descriptor.src)
        if service is None:
            self._fail(handle, f"No service registered for '{descriptor.src}'.")
            return

        try:
            payload = descriptor.input(context) if descriptor.input else None
        except Exception as e:
            logger.exception(f"Input projection for '{descriptor.id}' failed")
            self._fail(handle, f"Invalid input for '{descriptor.src}': {e}")
            return

        handle.task = asyncio.get_running_loop().create_task(
            self._run(handle, service, payload),
            name=f"{self._interpreter.name}:{descriptor.id}",
        )

    async def _run(self, handle: InvocationHandle, service: ServiceFn, payload: Any) -> None:
        try:
            result = service(payload)
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.info(f"Invocation '{handle.invoke_id}' of {handle.state_path} failed: {message}")
            self._interpreter.send(
                invocation_error(handle.invoke_id, message, handle.state_path, handle.handle_id)
            )
            return

        self._interpreter.send(
            invocation_done(handle.invoke_id, result, handle.state_path, handle.handle_id)
        )

    def _fail(self, handle: InvocationHandle, message: str) -> None:
        logger.error(f"Invocation '{handle.invoke_id}' of {handle.state_path} could not start: {message}")
        self._interpreter.send(
            invocation_error(handle.invoke_id, message, handle.state_path, handle.handle_id)
        )
