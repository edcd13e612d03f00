"""Timer scheduler emitting delayed-transition events."""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List

from ..schemas.events import Event, timer_fired

if TYPE_CHECKING:
    from .interpreter import MachineInterpreter

logger = logging.getLogger(__name__)


@dataclass
class _TimerTask:
    handle_id: str
    state_path: str
    delay_ms: int
    handle: asyncio.TimerHandle

    def cancel(self) -> None:
        self.handle.cancel()


class TimerScheduler:
    """Arms one-shot timers per state and feeds their expiry back to the interpreter."""

    def __init__(self, interpreter: MachineInterpreter) -> None:
        self._interpreter = interpreter
        self._tasks: Dict[str, _TimerTask] = {}

    def schedule_once(self, state_path: str, delay_ms: int) -> str:
        loop = asyncio.get_running_loop()
        handle_id = uuid.uuid4().hex

        def _fire() -> None:
            logger.debug(f"Timer {handle_id} for {state_path} ({delay_ms}ms) fired")
            self._interpreter.send(timer_fired(state_path, delay_ms, handle_id))

        task = _TimerTask(
            handle_id=handle_id,
            state_path=state_path,
            delay_ms=delay_ms,
            handle=loop.call_later(delay_ms / 1000.0, _fire),
        )
        self._tasks[handle_id] = task
        logger.debug(f"Timer {handle_id} armed for {state_path} in {delay_ms}ms")
        return handle_id

    def cancel(self, state_path: str) -> None:
        for handle_id in [h for h, t in self._tasks.items() if t.state_path == state_path]:
            self._tasks.pop(handle_id).cancel()
            logger.debug(f"Timer {handle_id} for {state_path} cancelled")

    def shutdown(self) -> None:
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()

    def is_current(self, event: Event) -> bool:
        task = self._tasks.get(event.handle_id or "")
        return task is not None and task.state_path == event.origin_state

    def settle(self, event: Event) -> None:
        self._tasks.pop(event.handle_id or "", None)

    def pending(self, state_path: str | None = None) -> List[str]:
        return [
            t.state_path
            for t in self._tasks.values()
            if state_path is None or t.state_path == state_path
        ]
