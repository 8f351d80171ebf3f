from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, ClassVar

from ._pointers import Rc, SharedPointer


if TYPE_CHECKING:
    from ._container import Resolver


class SharedService(ABC):
    """A type that can be resolved as a shared instance.

    The first resolution calls `construct_shared()`; the container keeps the
    returned pointer and every later resolution gets a clone of it.

    Example:
      class Config(SharedService):
          pointer = Arc

          @classmethod
          def construct_shared(cls, resolver):
              return Arc(RwLock(cls()))

    """

    # pointer class the instance is stored behind
    pointer: ClassVar[type[SharedPointer[Any]]] = Rc

    @classmethod
    @abstractmethod
    def construct_shared(cls, resolver: Resolver) -> SharedPointer[Any]:
        """Construct the shared instance. Raise to signal a construction error."""

    @classmethod
    def resolved_shared(cls, this: SharedPointer[Any], resolver: Resolver) -> None:
        """Called every time after the shared instance is resolved.

        Use this to inject dependencies that can't be resolved while
        constructing, e.g. to break a cycle between two shared services.
        """


class LocalService(ABC):
    """A type that is constructed anew every time it is resolved."""

    @classmethod
    @abstractmethod
    def construct_local(cls, resolver: Resolver, params: Any) -> Any:
        """Construct a local instance from caller-supplied `params`."""

    @classmethod
    def resolved_local(cls, this: Any, resolver: Resolver) -> None:
        """Called every time after a local instance is constructed."""
