"""
Dependency Injection Wiring (Composition Root).

This module acts as the central "container" for the application's services.
It is responsible for:
1. Instantiating the core Singleton services (Backend, Repositories, Storage).
2. Wiring them together (e.g., injecting the backend services and the machine
   repository into the CheckoutService).
3. Managing the lifecycle of these objects using @lru_cache to ensure
   they are created only once per application process.

By consolidating construction logic here, we keep the API layer (main.py)
clean and strictly focused on routing, while allowing for easy dependency
overrides during testing.
"""

from functools import lru_cache, partial
from typing import Dict

from fastapi import Depends

from ..config import settings
from ..backend.interface import CheckoutBackend
from ..backend.adapters.mock_backend import MockCheckoutBackend
from ..backend.registry import build_service_registry
from ..repositories.machine import MachineRepository, StaticMachineRepository
from ..repositories.snapshot import create_snapshot_storage
from ..services.checkout import CheckoutService, StorageFactory

from ..infrastructure.database.connection import init_db

# Backend (Singleton)
@lru_cache()
def get_backend() -> CheckoutBackend:
    return MockCheckoutBackend(latency_scale=settings.BACKEND_LATENCY_SCALE)

# Machine Repository (Singleton)
@lru_cache()
def get_machine_repository() -> MachineRepository:
    return StaticMachineRepository()

# Snapshot storage factory (Singleton)
# Note: the in-memory store must be shared so snapshots survive across requests!
@lru_cache()
def get_storage_factory() -> StorageFactory:
    if settings.SNAPSHOT_BACKEND == "sql":
        init_db()
    if settings.SNAPSHOT_BACKEND == "memory":
        shared: Dict[str, str] = {}
        return partial(create_snapshot_storage, backend="memory", store=shared)
    return partial(create_snapshot_storage, backend=settings.SNAPSHOT_BACKEND)

# The Checkout Service (Singleton Service)
@lru_cache()
def get_checkout_service(
    backend: CheckoutBackend = Depends(get_backend),
    machine_repo: MachineRepository = Depends(get_machine_repository),
    storage_factory: StorageFactory = Depends(get_storage_factory),
) -> CheckoutService:
    """
    Injects all necessary components into the CheckoutService.
    """
    return CheckoutService(
        machine_repository=machine_repo,
        services=build_service_registry(backend),
        storage_factory=storage_factory,
    )
