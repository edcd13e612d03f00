"""
Database Connection Manager.

This module handles the low-level details of connecting to the snapshot
database. It exposes the SQLModel engine which will be used by the Repositories.
"""

from sqlalchemy.engine import Engine
from sqlmodel import create_engine, SQLModel
from ...config import settings


def build_engine(database_url: str = settings.DATABASE_URL) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Snapshots are written from the event loop thread and read from request threads
        connect_args["check_same_thread"] = False
    # echo=False in production to avoid leaking sensitive data in logs
    return create_engine(database_url, echo=False, connect_args=connect_args)


engine = build_engine()


def init_db(target: Engine = engine):
    """
    Idempotent initialization.
    Creates tables if they do not exist.
    Useful for local dev or simple deployments.
    """
    SQLModel.metadata.create_all(target)
