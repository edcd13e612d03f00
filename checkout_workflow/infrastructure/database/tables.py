"""
Database Table Definitions.

This module defines the SQL schema using SQLModel.
We use the 'DBModel' suffix to distinguish these persistence models
from the Pydantic runtime models (MachineSnapshot).
"""

from datetime import datetime, timezone

from sqlalchemy import Column, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SnapshotDBModel(SQLModel, table=True):
    """
    Persistence model for machine snapshots.
    One row per storage key; every write replaces the previous blob.
    """

    __tablename__ = "machine_snapshots"

    storage_key: str = Field(primary_key=True, index=True)

    # The serialized MachineSnapshot, stored opaquely.
    state: str = Field(sa_column=Column(Text, nullable=False))

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
