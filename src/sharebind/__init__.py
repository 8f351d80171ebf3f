"""Typed object registry with shared and local services.

Services are requested by type. A *shared* service is constructed once, cached,
and handed out behind a reference-counted pointer, so every caller sees the same
instance. A *local* service is constructed anew on every request. Constructors
get a `Resolver` to pull in their own dependencies.

Exports:
- `ServiceContainer`: the registry; resolves shared and local services.
- `ContainerBuilder`: registers override constructors before the container is built.
- `Resolver`: restricted view of the container handed to constructors.
- `SharedService` / `LocalService`: base classes declaring how a type is constructed.
- `Rc` / `Arc`: reference-counted pointers that shared instances live behind.
- `Access`, `RefCell`, `Mutex`, `RwLock`: guarded access to the pointed-to data,
  reporting lock poisoning through `Healthy` / `Poisoned` results.
"""

from ._access import (
    Access,
    BorrowError,
    Guarded,
    Healthy,
    Mutex,
    Poisoned,
    PoisonError,
    Poisoning,
    RefCell,
    RwLock,
)
from ._container import (
    AlreadyResolvedError,
    ContainerBuilder,
    ContainerClosedError,
    ResolutionError,
    Resolver,
    ServiceContainer,
)
from ._pointers import Arc, ErasedPointer, Rc, SharedPointer
from ._services import LocalService, SharedService


__all__ = [
    "Access",
    "AlreadyResolvedError",
    "Arc",
    "BorrowError",
    "ContainerBuilder",
    "ContainerClosedError",
    "ErasedPointer",
    "Guarded",
    "Healthy",
    "LocalService",
    "Mutex",
    "PoisonError",
    "Poisoned",
    "Poisoning",
    "Rc",
    "RefCell",
    "ResolutionError",
    "Resolver",
    "RwLock",
    "ServiceContainer",
    "SharedPointer",
    "SharedService",
]
