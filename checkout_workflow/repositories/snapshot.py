from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from ..config import settings
from ..infrastructure.database.connection import engine as default_engine
from ..infrastructure.database.tables import SnapshotDBModel


class SnapshotStorage(ABC):
    """
    Defines how snapshots of one machine instance are stored.
    The blob is opaque here; the SnapshotChannel owns the serialization.
    This allows us change where snapshots live (Memory -> File -> SQL) later
    without changing the interpreter code.
    """

    def __init__(self, storage_key: str = settings.STORAGE_KEY):
        self.storage_key = storage_key

    @abstractmethod
    def write(self, blob: str):
        """Replaces the stored blob."""
        pass

    @abstractmethod
    def read(self) -> Optional[str]:
        """Returns the stored blob, or None if nothing was written."""
        pass

    @abstractmethod
    def clear(self):
        pass

    def exists(self) -> bool:
        return self.read() is not None


class InMemorySnapshotStorage(SnapshotStorage):
    """
    Uses an in-memory dictionary for snapshot storage for testing/dev purposes.
    Instances sharing `store` see each other's keys.
    """

    def __init__(self, storage_key: str = settings.STORAGE_KEY, store: Optional[Dict[str, str]] = None):
        super().__init__(storage_key)
        self._store: Dict[str, str] = store if store is not None else {}

    def write(self, blob: str):
        self._store[self.storage_key] = blob

    def read(self) -> Optional[str]:
        return self._store.get(self.storage_key)

    def clear(self):
        self._store.pop(self.storage_key, None)


class JsonFileSnapshotStorage(SnapshotStorage):
    """
    One JSON file per storage key inside `directory`.
    """

    def __init__(self, storage_key: str = settings.STORAGE_KEY, directory: str = settings.SNAPSHOT_FILE_PATH):
        super().__init__(storage_key)
        self.directory = Path(directory)

    @property
    def path(self) -> Path:
        return self.directory / f"{self.storage_key}.json"

    def write(self, blob: str):
        self.directory.mkdir(parents=True, exist_ok=True)
        # Write-then-rename so a crash never leaves a half-written snapshot
        tmp = self.path.with_suffix(".json.tmp")
        tmp.write_text(blob, encoding="utf-8")
        tmp.replace(self.path)

    def read(self) -> Optional[str]:
        if not self.path.exists():
            return None
        return self.path.read_text(encoding="utf-8")

    def clear(self):
        self.path.unlink(missing_ok=True)


class SqlSnapshotStorage(SnapshotStorage):
    """
    SQL storage for snapshots ('machine_snapshots' table, one row per key).
    """

    def __init__(self, storage_key: str = settings.STORAGE_KEY, engine: Optional[Engine] = None):
        super().__init__(storage_key)
        self.engine = engine if engine is not None else default_engine

    def _get_row(self, db: Session) -> Optional[SnapshotDBModel]:
        statement = select(SnapshotDBModel).where(SnapshotDBModel.storage_key == self.storage_key)
        return db.exec(statement).first()

    def write(self, blob: str):
        with Session(self.engine) as db:
            result = self._get_row(db)

            if result:
                # Update the blob and the timestamp
                result.state = blob
                result.updated_at = datetime.now(timezone.utc)
            else:
                result = SnapshotDBModel(storage_key=self.storage_key, state=blob)
            db.add(result)
            db.commit()

    def read(self) -> Optional[str]:
        with Session(self.engine) as db:
            result = self._get_row(db)
            return result.state if result else None

    def clear(self):
        with Session(self.engine) as db:
            result = self._get_row(db)
            if result:
                db.delete(result)
                db.commit()


def create_snapshot_storage(storage_key: str, backend: str = settings.SNAPSHOT_BACKEND, **kwargs) -> SnapshotStorage:
    """Builds the storage configured by SNAPSHOT_BACKEND for one storage key."""
    if backend == "memory":
        return InMemorySnapshotStorage(storage_key, **kwargs)
    if backend == "file":
        return JsonFileSnapshotStorage(storage_key, **kwargs)
    if backend == "sql":
        return SqlSnapshotStorage(storage_key, **kwargs)
    raise ValueError(f"Unknown snapshot backend '{backend}'.")
