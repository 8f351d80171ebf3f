from __future__ import annotations

import logging
import threading
import weakref
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ._access import Access, Guarded


logger = logging.getLogger(__name__)

T = TypeVar("T")

if TYPE_CHECKING:
    from collections.abc import Callable

    from ._access import Poisoning

    U = TypeVar("U")
    P = TypeVar("P", bound="SharedPointer[Any]")


class _RcBox(Generic[T]):
    """Allocation shared by every pointer to the same instance."""

    __slots__ = ("on_drop", "strong", "value")

    def __init__(self, value: T, on_drop: Callable[[T], object] | None) -> None:
        self.value: T | None = value
        self.strong = 1
        self.on_drop = on_drop

    def increment(self) -> None:
        if self.strong == 0:
            msg = "Cannot clone a pointer to a freed instance"
            raise ReferenceError(msg)
        self.strong += 1

    def decrement(self) -> None:
        self.strong -= 1
        if self.strong == 0:
            self._free()

    def _free(self) -> None:
        value, on_drop = self.value, self.on_drop
        self.value = None
        self.on_drop = None
        logger.debug("Freeing shared instance %r", value)
        if on_drop is not None:
            on_drop(value)


class _ArcBox(_RcBox[T]):
    __slots__ = ("_lock",)

    def __init__(self, value: T, on_drop: Callable[[T], object] | None) -> None:
        super().__init__(value, on_drop)
        self._lock = threading.Lock()

    def increment(self) -> None:
        with self._lock:
            super().increment()

    def decrement(self) -> None:
        with self._lock:
            self.strong -= 1
            last = self.strong == 0
        # destructor runs outside the lock
        if last:
            self._free()


def _release(box: _RcBox[Any]) -> None:
    box.decrement()


class SharedPointer(Generic[T]):
    """Reference-counted owning pointer.

    Each pointer object owns exactly one strong reference to a shared box. The
    reference is released by `drop()`, or when the pointer object is garbage
    collected. When the last reference goes, `on_drop(value)` runs once.

    The class-level `*_ptr` methods convert between pointers and the raw box.
    They don't check anything; pairing them correctly is up to the caller.
    """

    __slots__ = ("__weakref__", "_box", "_finalizer")

    _box_type: type[_RcBox[Any]] = _RcBox

    def __init__(self, value: T, on_drop: Callable[[T], object] | None = None) -> None:
        self._attach(self._box_type(value, on_drop))

    def _attach(self, box: _RcBox[T]) -> None:
        self._box: _RcBox[T] | None = box
        self._finalizer = weakref.finalize(self, _release, box)

    @classmethod
    def from_ptr(cls: type[P], ptr: _RcBox[Any]) -> P:
        """Rebuild a pointer from a raw box without incrementing the count.

        Only use this to take back the reference given up by `into_ptr()`.
        """
        pointer = cls.__new__(cls)
        pointer._attach(ptr)  # noqa: SLF001
        return pointer

    @classmethod
    def clone_from_ptr(cls: type[P], ptr: _RcBox[Any]) -> P:
        """Rebuild a pointer from a raw box and increment the count."""
        ptr.increment()
        return cls.from_ptr(ptr)

    @classmethod
    def drop_from_ptr(cls, ptr: _RcBox[Any]) -> None:
        """Release the reference held by a raw box."""
        cls.from_ptr(ptr).drop()

    def into_ptr(self) -> _RcBox[T]:
        """Give up this pointer and return its raw box, keeping the reference alive.

        The pointer is unusable afterwards. The reference must eventually be taken
        back with `from_ptr()` or released with `drop_from_ptr()`.
        """
        box = self._live_box()
        self._finalizer.detach()
        self._box = None
        return box

    def clone(self: P) -> P:
        """Return a new pointer to the same instance, incrementing the count."""
        return type(self).clone_from_ptr(self._live_box())

    __copy__ = clone

    def drop(self) -> None:
        """Release this pointer's reference. Dropping twice is a no-op."""
        self._finalizer()
        self._box = None

    @property
    def alive(self) -> bool:
        return self._box is not None

    @property
    def strong_count(self) -> int:
        return self._live_box().strong

    @property
    def target(self) -> T:
        return self._live_box().value  # type: ignore[return-value]

    def ptr_eq(self, other: SharedPointer[Any]) -> bool:
        """True if both pointers point to the same instance. Contents are not compared."""
        return self._box is not None and self._box is other._box

    def access(self, f: Callable[[Poisoning[Any]], U]) -> U:
        """Shared access to the target, blocking while an exclusive access is held."""
        return self._guarded().access(f)

    def try_access(self, f: Callable[[Poisoning[Any]], U]) -> U | None:
        """Shared access to the target, or `None` instead of blocking."""
        return self._guarded().try_access(f)

    def access_mut(self, f: Callable[[Poisoning[Any]], U]) -> U:
        """Exclusive access to the target, blocking while any other access is held."""
        return self._guarded().access_mut(f)

    def try_access_mut(self, f: Callable[[Poisoning[Any]], U]) -> U | None:
        """Exclusive access to the target, or `None` instead of blocking."""
        return self._guarded().try_access_mut(f)

    def _guarded(self) -> Guarded[Any]:
        target = self.target
        if isinstance(target, Guarded):
            return target
        return Access(target)

    def _peek(self) -> Any:
        """Read the guarded value without taking its lock or borrow.

        Guards without `_peek()` are read through a shared access.
        """
        target = self.target
        peek = getattr(target, "_peek", None)
        if peek is not None:
            return peek()
        return self._guarded().access(lambda guard: guard.unpoison())

    def _live_box(self) -> _RcBox[T]:
        if self._box is None:
            msg = f"{type(self).__name__} has been dropped or given up"
            raise ReferenceError(msg)
        return self._box

    def __repr__(self) -> str:
        if self._box is None:
            return f"{type(self).__name__}(<released>)"
        return f"{type(self).__name__}({self._box.value!r}, strong={self._box.strong})"


class Rc(SharedPointer[T]):
    """Single-threaded reference-counted pointer."""

    __slots__ = ()


class Arc(SharedPointer[T]):
    """Reference-counted pointer whose count may be shared across threads."""

    __slots__ = ()

    _box_type = _ArcBox


class ErasedPointer:
    """A shared pointer with its concrete pointer class erased.

    Holds the raw box together with the pointer class it came from and that
    class's destructor, so pointers of any kind can live in one uniform slot.
    The destructor is captured at erasure time and always matches the box.
    """

    __slots__ = ("dtor", "kind", "ptr")

    def __init__(self, ptr: _RcBox[Any], kind: type[SharedPointer[Any]]) -> None:
        self.ptr: _RcBox[Any] | None = ptr
        self.kind = kind
        self.dtor: Callable[[_RcBox[Any]], None] = kind.drop_from_ptr

    @classmethod
    def erase(cls, pointer: SharedPointer[Any]) -> ErasedPointer:
        """Consume `pointer` into an erased handle. The strong count is unchanged."""
        kind = type(pointer)
        return cls(pointer.into_ptr(), kind)

    def unerase(self) -> SharedPointer[Any]:
        """Turn the handle back into a pointer without incrementing the count.

        The handle is spent afterwards.
        """
        ptr = self._live_ptr()
        self.ptr = None
        return self.kind.from_ptr(ptr)

    def clone(self) -> SharedPointer[Any]:
        """Return a new pointer to the instance, incrementing the count."""
        return self.kind.clone_from_ptr(self._live_ptr())

    def is_same(self, other: ErasedPointer) -> bool:
        return self.ptr is not None and self.ptr is other.ptr

    def drop(self) -> None:
        """Run the captured destructor. Only the first call has an effect."""
        if self.ptr is None:
            return
        ptr, self.ptr = self.ptr, None
        self.dtor(ptr)

    def _live_ptr(self) -> _RcBox[Any]:
        if self.ptr is None:
            msg = "Erased pointer has already been dropped or unerased"
            raise ReferenceError(msg)
        return self.ptr

    def __repr__(self) -> str:
        return f"ErasedPointer(kind={self.kind.__name__}, alive={self.ptr is not None})"
