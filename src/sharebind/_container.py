from __future__ import annotations

import inspect
import logging
import weakref
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from ._pointers import ErasedPointer, SharedPointer
from ._services import LocalService, SharedService
from ._validation import service_name, validate_local, validate_shared


logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    B = TypeVar("B", bound="ContainerBuilder")

    SharedConstructor = Callable[["Resolver"], SharedPointer[Any]]
    LocalConstructor = Callable[["Resolver", Any], Any]


class ResolutionError(RuntimeError):
    pass


class AlreadyResolvedError(RuntimeError):
    pass


class ContainerClosedError(RuntimeError):
    pass


@dataclass
class ServiceEntry:
    shared_ptr: ErasedPointer | None = None
    shared_ctor: SharedConstructor | None = None
    local_ctor: LocalConstructor | None = None


def _drop_services(services: dict[object, ServiceEntry]) -> None:
    logger.debug("Dropping %d service entries", len(services))
    entries = list(services.values())
    services.clear()
    for entry in entries:
        if entry.shared_ptr is not None:
            entry.shared_ptr.drop()


class ServiceContainer:
    """Registry of shared and local services, keyed by service type.

    - shared services are constructed on first resolution, then cached
    - local services are constructed on every resolution, never cached
    - constructors get a `Resolver` to resolve their own dependencies.

    The container does no locking of its own: serialise access to it.
    """

    def __init__(self) -> None:
        self._services: dict[object, ServiceEntry] = {}
        self._finalizer = weakref.finalize(self, _drop_services, self._services)

    @classmethod
    def _from_entries(cls, services: dict[object, ServiceEntry]) -> ServiceContainer:
        container = cls()
        container._services.update(services)
        return container

    @staticmethod
    def builder() -> ContainerBuilder:
        return ContainerBuilder()

    def insert(self, service: object, instance: SharedPointer[Any]) -> None:
        """Pre-seed the shared instance of `service`.

        Ownership of `instance` moves into the container; clone it first to keep a
        pointer. Raises `AlreadyResolvedError` if `service` already has a shared
        instance: holders of the existing one must keep seeing the same object.
        """
        self._check_open()
        validate_shared(service, instance)
        self._store(service, instance)

    def resolve_shared(self, service: object) -> SharedPointer[Any]:
        """Resolve the shared instance of `service`.

        - cached instance: return a clone of it
        - registered override: construct with it and cache the result
        - `SharedService`: construct with `construct_shared()` and cache the result
        - otherwise: `ResolutionError`.

        Whatever a constructor raises propagates unchanged and nothing is cached.
        """
        self._check_open()
        entry = self._services.get(service)

        if entry is not None and entry.shared_ptr is not None:
            logger.debug("Returning cached shared instance: %s", service_name(service))
            instance = entry.shared_ptr.clone()
        else:
            if entry is not None and entry.shared_ctor is not None:
                logger.debug("Constructing shared instance with override: %s", service_name(service))
                ctor = entry.shared_ctor
            else:
                ctor = _default_shared_ctor(service)
                logger.debug("Constructing shared instance: %s", service_name(service))

            instance = ctor(Resolver(self, _from_container=True))
            validate_shared(service, instance)
            self._store(service, instance.clone())
            logger.debug("Shared instance created and cached: %s", service_name(service))

        if inspect.isclass(service) and issubclass(service, SharedService):
            service.resolved_shared(instance, Resolver(self, _from_container=True))

        return instance

    def resolve_local(self, service: object, params: Any = None) -> Any:
        """Construct a new local instance of `service` from `params`. Nothing is cached."""
        self._check_open()
        entry = self._services.get(service)

        if entry is not None and entry.local_ctor is not None:
            logger.debug("Constructing local instance with override: %s", service_name(service))
            ctor = entry.local_ctor
        else:
            ctor = _default_local_ctor(service)
            logger.debug("Constructing local instance: %s", service_name(service))

        instance = ctor(Resolver(self, _from_container=True), params)
        validate_local(service, instance)

        if inspect.isclass(service) and issubclass(service, LocalService):
            service.resolved_local(instance, Resolver(self, _from_container=True))

        return instance

    def is_resolved(self, service: object) -> bool:
        entry = self._services.get(service)
        return entry is not None and entry.shared_ptr is not None

    @property
    def closed(self) -> bool:
        return not self._finalizer.alive

    def close(self) -> None:
        """Drop every cached shared instance. Closing twice is a no-op."""
        self._finalizer()

    def __enter__(self) -> ServiceContainer:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def __len__(self) -> int:
        return len(self._services)

    def __contains__(self, service: object) -> bool:
        return service in self._services

    def __repr__(self) -> str:
        resolved = sum(1 for entry in self._services.values() if entry.shared_ptr is not None)
        return f"ServiceContainer(entries={len(self._services)}, resolved={resolved})"

    def _store(self, service: object, instance: SharedPointer[Any]) -> None:
        entry = self._services.setdefault(service, ServiceEntry())
        if entry.shared_ptr is not None:
            msg = f"Shared instance of {service_name(service)} is already resolved and cannot be replaced."
            raise AlreadyResolvedError(msg)
        entry.shared_ptr = ErasedPointer.erase(instance)

    def _check_open(self) -> None:
        if self.closed:
            msg = "ServiceContainer is closed"
            raise ContainerClosedError(msg)


class Resolver:
    """Resolves services on behalf of a constructor.

    Only resolving and inserting are possible: a constructor cannot replace,
    clear or close the container it was called from.
    """

    __slots__ = ("_container",)

    def __init__(self, container: ServiceContainer, *, _from_container: bool = False) -> None:
        if not _from_container:
            msg = "Resolver instances are only handed out by a ServiceContainer"
            raise RuntimeError(msg)
        self._container = container

    def shared(self, service: object) -> SharedPointer[Any]:
        return self._container.resolve_shared(service)

    def local(self, service: object, params: Any = None) -> Any:
        return self._container.resolve_local(service, params)

    def insert(self, service: object, instance: SharedPointer[Any]) -> None:
        self._container.insert(service, instance)

    def is_resolved(self, service: object) -> bool:
        return self._container.is_resolved(service)

    def __repr__(self) -> str:
        return f"Resolver({self._container!r})"


class ContainerBuilder:
    """Collects override constructors before the container is built.

    Example:
      container = (
          ServiceContainer.builder()
          .with_shared_constructor(Database, lambda r: Arc(Mutex(Database(":memory:"))))
          .with_local_constructor(Request, lambda r, params: Request(**params))
          .build()
      )

    """

    def __init__(self) -> None:
        self._services: dict[object, ServiceEntry] | None = {}
        # releases pre-seeded instances of a builder that is never built
        self._finalizer = weakref.finalize(self, _drop_services, self._services)

    def with_shared(self: B, service: object, instance: SharedPointer[Any]) -> B:
        """Pre-seed a shared instance. Ownership of `instance` moves into the builder."""
        validate_shared(service, instance)
        entry = self._entry(service)
        if entry.shared_ptr is not None:
            msg = f"Shared instance of {service_name(service)} is already set."
            raise AlreadyResolvedError(msg)
        entry.shared_ptr = ErasedPointer.erase(instance)
        return self

    def with_shared_constructor(self: B, service: object, ctor: SharedConstructor) -> B:
        self._entry(service).shared_ctor = ctor
        return self

    def with_local_constructor(self: B, service: object, ctor: LocalConstructor) -> B:
        self._entry(service).local_ctor = ctor
        return self

    def with_constructors(
        self: B,
        service: object,
        *,
        shared: SharedConstructor,
        local: LocalConstructor,
    ) -> B:
        entry = self._entry(service)
        entry.shared_ctor = shared
        entry.local_ctor = local
        return self

    def build(self) -> ServiceContainer:
        """Freeze the registrations into a new container. A builder builds once."""
        services = self._live_services()
        self._services = None
        self._finalizer.detach()
        logger.debug("Building ServiceContainer with %d entries", len(services))
        return ServiceContainer._from_entries(services)  # noqa: SLF001

    def _entry(self, service: object) -> ServiceEntry:
        return self._live_services().setdefault(service, ServiceEntry())

    def _live_services(self) -> dict[object, ServiceEntry]:
        if self._services is None:
            msg = "ContainerBuilder has already been built"
            raise RuntimeError(msg)
        return self._services


def _default_shared_ctor(service: object) -> SharedConstructor:
    if inspect.isclass(service) and issubclass(service, SharedService):
        return service.construct_shared
    msg = f"No shared constructor for {service_name(service)}: register an override or implement SharedService."
    raise ResolutionError(msg)


def _default_local_ctor(service: object) -> LocalConstructor:
    if inspect.isclass(service) and issubclass(service, LocalService):
        return service.construct_local
    msg = f"No local constructor for {service_name(service)}: register an override or implement LocalService."
    raise ResolutionError(msg)
