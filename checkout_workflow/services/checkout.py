"""
Checkout Service - Application Orchestration Layer

This service is the entry point for all workflow session operations. It owns
the running interpreters (one per session), wires each of them to its own
snapshot storage, and resumes sessions from storage when asked.

Sessions share nothing except the backend services and the machine
definitions, which are both stateless from the machine's point of view.
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from ..config import settings
from ..domain.models import ServiceFn
from ..execution.interpreter import MachineInterpreter
from ..execution.snapshot_channel import SnapshotChannel
from ..repositories.machine import MachineRepository
from ..repositories.snapshot import SnapshotStorage
from ..schemas.events import Event
from ..state.models import MachineSnapshot
from .exceptions import SessionNotFoundError

logger = logging.getLogger(__name__)

StorageFactory = Callable[[str], SnapshotStorage]


@dataclass
class CheckoutSession:
    session_id: str
    interpreter: MachineInterpreter
    channel: SnapshotChannel
    discarded: List[str] = field(default_factory=list)

    @property
    def machine_id(self) -> str:
        return self.interpreter.definition.id


class CheckoutService:
    def __init__(
        self,
        machine_repository: MachineRepository,
        services: Mapping[str, ServiceFn],
        storage_factory: StorageFactory,
    ):
        self.machine_repo = machine_repository
        self.services = services
        self.storage_factory = storage_factory
        self._sessions: Dict[str, CheckoutSession] = {}

    def create_session(
        self, machine_id: str = "checkout", context: Optional[Mapping[str, Any]] = None
    ) -> CheckoutSession:
        """Starts a new workflow instance. Raises UnknownMachineError."""
        definition = self.machine_repo.get_machine(machine_id)
        session_id = str(uuid.uuid4())

        session = self._open(session_id, definition)
        session.interpreter.start(context=context)
        logger.info(f"Created session {session_id} for machine '{machine_id}'")
        return session

    def list_machines(self) -> List[str]:
        return self.machine_repo.list_machines()

    def get_session(self, session_id: str) -> CheckoutSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session

    def get_snapshot(self, session_id: str) -> MachineSnapshot:
        """
        Returns the live snapshot, falling back to the stored one for sessions
        that are not running in this process.
        """
        session = self._sessions.get(session_id)
        if session is not None:
            return session.interpreter.get_snapshot()

        snapshot = SnapshotChannel(self.storage_factory(self._storage_key(session_id))).load()
        if snapshot is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return snapshot

    def send_event(self, session_id: str, event_type: str, data: Optional[Mapping[str, Any]] = None) -> MachineSnapshot:
        session = self.get_session(session_id)
        session.interpreter.send(Event(type=event_type, data=dict(data or {})))
        return session.interpreter.get_snapshot()

    def resume_session(self, session_id: str) -> CheckoutSession:
        """
        Restores a session from its last stored snapshot and restarts its
        outstanding work. A session that is already live is returned as is.
        """
        if session_id in self._sessions:
            return self._sessions[session_id]

        storage = self.storage_factory(self._storage_key(session_id))
        snapshot = SnapshotChannel(storage).load()
        if snapshot is None:
            raise SessionNotFoundError(f"No saved state for session {session_id}")

        definition = self.machine_repo.get_machine(snapshot.machine_id)
        session = self._open(session_id, definition, storage)
        try:
            session.interpreter.start(restore=snapshot)
        except Exception:
            self._sessions.pop(session_id, None)
            raise
        logger.info(f"Resumed session {session_id} in {snapshot.value}")
        return session

    def delete_session(self, session_id: str) -> bool:
        """Stops the session and clears its stored snapshot. Returns True if it existed."""
        storage = self.storage_factory(self._storage_key(session_id))
        session = self._sessions.pop(session_id, None)
        found = session is not None or storage.exists()

        if session is not None:
            session.interpreter.stop()
        SnapshotChannel(storage).clear()
        return found

    def shutdown(self):
        for session in self._sessions.values():
            session.interpreter.stop()
        self._sessions.clear()

    # ==========================================================================
    # Standard Helpers
    # ==========================================================================

    def _open(self, session_id, definition, storage: Optional[SnapshotStorage] = None) -> CheckoutSession:
        storage = storage or self.storage_factory(self._storage_key(session_id))
        interpreter = MachineInterpreter(
            definition,
            services=self.services,
            name=f"{definition.id}:{session_id[:8]}",
        )
        session = CheckoutSession(session_id=session_id, interpreter=interpreter, channel=SnapshotChannel(storage))
        session.channel.attach(interpreter)
        interpreter.on_discard(lambda event, reason: session.discarded.append(event.type))
        self._sessions[session_id] = session
        return session

    @staticmethod
    def _storage_key(session_id: str) -> str:
        return f"{settings.STORAGE_KEY}-{session_id}"
