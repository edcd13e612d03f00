"""
Interpreter - Event Queue & Dispatcher

The MachineInterpreter is one running instance of a MachineDefinition. It owns
the instance's state pointer and context, and is the only place either of
them changes.
-----------------------------------------------

Run-to-completion: `send()` appends to a FIFO queue and, unless an event is
already being processed, drains it. Each event is processed fully before the
next one is dequeued:

1. Settlement and timer events are checked against the live handles; events
   from a state that has been left are discarded (and reported to the
   `on_discard` listeners).
2. The TransitionEngine computes the next state, context and effects.
3. The result is committed and the effects run (invocations started or
   abandoned, timers armed or cancelled).
4. Subscribers (e.g. the SnapshotChannel) are notified with the new snapshot.

Asynchronous work (service calls, timers, child machines) never touches the
context; it reports back by calling `send()` from the event loop. Everything
runs on a single asyncio loop, so no locking is involved.
"""

import asyncio
import logging
from collections import deque
from types import MappingProxyType
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Union

from ..domain.exceptions import InterpreterStateError, MachineDefinitionError
from ..domain.models import MachineDefinition, ServiceFn
from ..schemas.events import INIT_EVENT, Event, EventKind, user_event
from ..state.models import MachineSnapshot, MachineStatus
from .engine import TransitionEngine
from .invocations import InvocationManager
from .schemas.state_machine import (
    ArmTimer,
    CancelInvocation,
    CancelTimers,
    Effect,
    StartInvocation,
    StateMachineTransition,
    TransitionResult,
)
from .timers import TimerScheduler

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[MachineSnapshot], None]
DoneListener = Callable[[Any], None]
DiscardListener = Callable[[Event, str], None]

RESERVED_EVENT_PREFIXES = ("done.invoke.", "error.invoke.", "after.")


class MachineInterpreter:
    def __init__(
        self,
        definition: MachineDefinition,
        services: Optional[Mapping[str, ServiceFn]] = None,
        name: Optional[str] = None,
    ):
        self.definition = definition
        self.name = name or definition.id
        self.services: Dict[str, ServiceFn] = dict(services or {})
        self.engine = TransitionEngine(definition)
        self.invocations = InvocationManager(self, self.services)
        self.timers = TimerScheduler(self)

        self._queue: Deque[Event] = deque()
        self._processing = False
        self._status = MachineStatus.NOT_STARTED
        self._value = ""
        self._context: Dict[str, Any] = {}
        self._output: Any = None

        self._listeners: List[SnapshotListener] = []
        self._done_listeners: List[DoneListener] = []
        self._discard_listeners: List[DiscardListener] = []

    # ==========================================================================
    # Public API
    # ==========================================================================

    @property
    def status(self) -> MachineStatus:
        return self._status

    @property
    def value(self) -> str:
        return self._value

    @property
    def context(self) -> Mapping[str, Any]:
        return MappingProxyType(self._context)

    @property
    def done(self) -> bool:
        return self._status == MachineStatus.DONE

    @property
    def output(self) -> Any:
        return self._output

    @property
    def child(self) -> Optional["MachineInterpreter"]:
        handle = self.invocations.current
        return handle.child if handle is not None else None

    def start(
        self,
        context: Optional[Mapping[str, Any]] = None,
        restore: Optional[MachineSnapshot] = None,
    ) -> "MachineInterpreter":
        """
        Enters the initial state, or resumes from `restore`.

        A restored instance keeps the saved context and re-arms the restored
        state's invocation and timers; entry actions are not replayed.
        """
        if self._status == MachineStatus.RUNNING:
            raise InterpreterStateError(f"Machine '{self.name}' is already running.")

        if restore is not None:
            result = self._restore_result(restore)
        else:
            result = self.engine.initial_state(context)

        self._status = MachineStatus.RUNNING
        self._output = None
        logger.info(f"[{self.name}] Starting in {result.value}")

        self._processing = True
        try:
            self._commit(result, INIT_EVENT)
        finally:
            self._processing = False
        self._drain()
        return self

    def send(self, event: Union[Event, str], **data: Any) -> None:
        """Enqueues an event. Accepts an Event or an event type plus data fields."""
        if isinstance(event, str):
            event = user_event(event, **data)
        if self._status == MachineStatus.NOT_STARTED:
            raise InterpreterStateError(f"Machine '{self.name}' has not been started.")
        self._queue.append(event)
        self._drain()

    def get_snapshot(self) -> MachineSnapshot:
        return MachineSnapshot(
            machine_id=self.definition.id,
            value=self._value,
            context=dict(self._context),
            status=self._status,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Calls `listener` after every committed transition. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def on_done(self, listener: DoneListener) -> None:
        self._done_listeners.append(listener)

    def on_discard(self, listener: DiscardListener) -> None:
        """Diagnostic hook: called with every stale settlement or timer that gets dropped."""
        self._discard_listeners.append(listener)

    def stop(self) -> None:
        if self._status == MachineStatus.RUNNING:
            self._status = MachineStatus.STOPPED
            logger.info(f"[{self.name}] Stopped in {self._value}")
        self._teardown()

    def reset(self, context: Optional[Mapping[str, Any]] = None) -> "MachineInterpreter":
        """Abandons all outstanding work and re-enters the initial state."""
        logger.info(f"[{self.name}] Resetting from {self._value or '(not started)'}")
        self._teardown()
        self._status = MachineStatus.NOT_STARTED
        return self.start(context=context)

    def create_child(self, definition: MachineDefinition, name: str) -> "MachineInterpreter":
        return MachineInterpreter(definition, services=self.services, name=name)

    async def wait_for(
        self,
        predicate: Callable[[MachineSnapshot], bool],
        timeout: Optional[float] = None,
    ) -> MachineSnapshot:
        """Waits until a committed snapshot satisfies `predicate`."""
        snapshot = self.get_snapshot()
        if predicate(snapshot):
            return snapshot

        future: asyncio.Future = asyncio.get_running_loop().create_future()

        def _listener(s: MachineSnapshot) -> None:
            if not future.done() and predicate(s):
                future.set_result(s)

        unsubscribe = self.subscribe(_listener)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            unsubscribe()

    async def wait_for_state(self, path: str, timeout: Optional[float] = None) -> MachineSnapshot:
        return await self.wait_for(lambda s: s.matches(path), timeout)

    # ==========================================================================
    # Dispatch
    # ==========================================================================

    def _drain(self) -> None:
        if self._processing:
            return
        self._processing = True
        try:
            while self._queue:
                self._process(self._queue.popleft())
        finally:
            self._processing = False

    def _process(self, event: Event) -> None:
        if self._status != MachineStatus.RUNNING:
            logger.debug(f"[{self.name}] Ignoring {event.type}: machine is {self._status.value}")
            return

        if event.kind == EventKind.USER and event.type.startswith(RESERVED_EVENT_PREFIXES):
            logger.warning(f"[{self.name}] Rejecting user event with reserved type '{event.type}'")
            return

        if event.is_settlement:
            if not self.invocations.is_current(event):
                self._discard(event, "stale invocation settlement")
                return
            self.invocations.settle(event)
        elif event.kind == EventKind.TIMER:
            if not self.timers.is_current(event):
                self._discard(event, "stale timer")
                return
            self.timers.settle(event)
        elif event.kind == EventKind.USER:
            self.invocations.forward(event)

        if event.kind == EventKind.TIMER:
            logger.debug(f"[{self.name}] Dispatching {event.type} while in {self._value}")
        else:
            logger.info(f"[{self.name}] Dispatching {event.type} while in {self._value}")

        try:
            result = self.engine.transition(self._value, self._context, event)
        except Exception:
            logger.exception(f"[{self.name}] Error while processing {event.type} in {self._value}; event dropped")
            return

        if not result.changed:
            logger.debug(f"[{self.name}] No rule for {event.type} in {self._value}")
            return

        self._commit(result, event)

    def _commit(self, result: TransitionResult, event: Event) -> None:
        previous = self._value
        self._value = result.value
        self._context = result.context

        self._run_effects(result.effects)

        if result.done:
            self._status = MachineStatus.DONE
            self._output = self._compute_output()
            self._teardown()

        if result.transition_type in (StateMachineTransition.ADVANCE, StateMachineTransition.EXIT):
            logger.info(f"[{self.name}] {previous or '(start)'} -> {self._value}")

        self._notify(self.get_snapshot())

        if result.done:
            logger.info(f"[{self.name}] Reached terminal state {self._value}")
            for listener in list(self._done_listeners):
                listener(self._output)

    def _run_effects(self, effects: List[Effect]) -> None:
        for effect in effects:
            if isinstance(effect, StartInvocation):
                node = self.definition.get_state(effect.state_path)
                self.invocations.start(effect.state_path, node.invoke, self._context)
            elif isinstance(effect, CancelInvocation):
                self.invocations.cancel_state(effect.state_path)
            elif isinstance(effect, ArmTimer):
                self.timers.schedule_once(effect.state_path, effect.delay_ms)
            elif isinstance(effect, CancelTimers):
                self.timers.cancel(effect.state_path)

    # ==========================================================================
    # Standard Helpers
    # ==========================================================================

    def _restore_result(self, snapshot: MachineSnapshot) -> TransitionResult:
        if snapshot.machine_id != self.definition.id:
            raise MachineDefinitionError(
                f"Snapshot belongs to '{snapshot.machine_id}', not '{self.definition.id}'."
            )
        leaf = self.definition.get_state(snapshot.value)
        if leaf.terminal:
            return TransitionResult(StateMachineTransition.EXIT, snapshot.value, dict(snapshot.context))
        effects = self.engine.restore(snapshot.value)
        return TransitionResult(
            StateMachineTransition.ADVANCE, snapshot.value, dict(snapshot.context), effects
        )

    def _compute_output(self) -> Any:
        leaf = self.definition.get_state(self._value)
        if leaf.output is None:
            return None
        try:
            return leaf.output(MappingProxyType(self._context))
        except Exception:
            logger.exception(f"[{self.name}] Output projection of {self._value} failed")
            return None

    def _notify(self, snapshot: MachineSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"[{self.name}] Snapshot listener failed")

    def _discard(self, event: Event, reason: str) -> None:
        logger.info(
            f"[{self.name}] Discarding {event.type} from {event.origin_state} ({reason}); now in {self._value}"
        )
        for listener in list(self._discard_listeners):
            try:
                listener(event, reason)
            except Exception:
                logger.exception(f"[{self.name}] Discard listener failed")

    def _teardown(self) -> None:
        self.invocations.shutdown()
        self.timers.shutdown()
        self._queue.clear()
