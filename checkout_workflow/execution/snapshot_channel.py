"""
Snapshot Channel - Best-Effort Persistence Observer

Subscribed to an interpreter, the channel writes every committed snapshot to
a SnapshotStorage. It is called synchronously after the transition commits
and before the next event is dequeued, so the last write always reflects the
current {state, context}. Storage failures are logged and swallowed: the
workflow never waits on, or fails because of, persistence.
"""

import logging
from typing import TYPE_CHECKING, Callable, Optional

from pydantic import ValidationError

from ..state.models import MachineSnapshot

if TYPE_CHECKING:
    from ..repositories.snapshot import SnapshotStorage
    from .interpreter import MachineInterpreter

logger = logging.getLogger(__name__)


class SnapshotChannel:
    def __init__(self, storage: "SnapshotStorage"):
        self.storage = storage
        self.last_written: Optional[MachineSnapshot] = None

    def attach(self, interpreter: "MachineInterpreter") -> Callable[[], None]:
        """Subscribes the channel; returns the unsubscribe callable."""
        return interpreter.subscribe(self)

    def __call__(self, snapshot: MachineSnapshot) -> None:
        try:
            self.storage.write(snapshot.model_dump_json())
        except Exception as e:
            logger.error(f"Failed to persist snapshot of '{snapshot.machine_id}' at {snapshot.value}: {e}")
            return
        self.last_written = snapshot
        logger.debug(f"Snapshot saved: {snapshot.machine_id} @ {snapshot.value}")

    def load(self) -> Optional[MachineSnapshot]:
        """Reads the last stored snapshot, or None if absent or unreadable."""
        try:
            blob = self.storage.read()
        except Exception as e:
            logger.error(f"Failed to read saved snapshot: {e}")
            return None

        if blob is None:
            return None

        try:
            return MachineSnapshot.model_validate_json(blob)
        except ValidationError as e:
            logger.error(f"Saved snapshot is corrupt and will be ignored: {e}")
            return None

    def clear(self) -> None:
        try:
            self.storage.clear()
        except Exception as e:
            logger.error(f"Failed to clear saved snapshot: {e}")
