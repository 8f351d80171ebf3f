from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, Protocol, TypeVar, runtime_checkable


logger = logging.getLogger(__name__)

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)

if TYPE_CHECKING:
    from collections.abc import Callable

    U = TypeVar("U")


class PoisonError(RuntimeError):
    pass


class BorrowError(RuntimeError):
    pass


@dataclass(frozen=True)
class Poisoning(Generic[T]):
    """Result of a guarded access, tagged with the poisoning status of the data.

    A value is poisoned when an earlier exclusive access raised half-way through
    a mutation, so the data may be inconsistent. It is still handed out; callers
    decide what to do with it:

    - when poisoning is a hard bug, or the backing cannot be poisoned: `assert_healthy()`
    - when the status doesn't matter: `unpoison()`
    - when both cases need their own logic: match on `Healthy(...)` / `Poisoned(...)`.
    """

    value: T

    def assert_healthy(self) -> T:
        """Return the value, raise `PoisonError` if it is poisoned."""
        if isinstance(self, Poisoned):
            msg = f"Shared instance is poisoned: {self.value!r}"
            raise PoisonError(msg)
        return self.value

    def assert_poisoned(self) -> T:
        """Return the value, raise `PoisonError` if it is *not* poisoned."""
        if not isinstance(self, Poisoned):
            msg = f"Shared instance is not poisoned: {self.value!r}"
            raise PoisonError(msg)
        return self.value

    def unpoison(self) -> T:
        """Return the value whether it is poisoned or not.

        Prefer `assert_healthy()` for backings that cannot be poisoned, so that
        swapping the backing later doesn't hide a bug.
        """
        return self.value

    def is_healthy(self) -> bool:
        return not isinstance(self, Poisoned)

    def is_poisoned(self) -> bool:
        return isinstance(self, Poisoned)

    def into_healthy(self) -> T | None:
        return None if isinstance(self, Poisoned) else self.value

    def into_poisoned(self) -> T | None:
        return self.value if isinstance(self, Poisoned) else None


@dataclass(frozen=True)
class Healthy(Poisoning[T]):
    pass


@dataclass(frozen=True)
class Poisoned(Poisoning[T]):
    pass


@runtime_checkable
class Guarded(Protocol[T_co]):
    """Shared/exclusive, blocking/non-blocking access to a guarded value.

    The closure receives the value wrapped in a `Poisoning`. The `try_*` variants
    return `None` instead of waiting when a conflicting access is outstanding.
    """

    def access(self, f: Callable[[Poisoning[T_co]], U]) -> U: ...

    def try_access(self, f: Callable[[Poisoning[T_co]], U]) -> U | None: ...

    def access_mut(self, f: Callable[[Poisoning[T_co]], U]) -> U: ...

    def try_access_mut(self, f: Callable[[Poisoning[T_co]], U]) -> U | None: ...


class Access(Generic[T]):
    """Plain value behind the guarded-access contract.

    No locking, no borrow tracking: every access succeeds and is healthy.
    """

    __slots__ = ("_inner",)

    def __init__(self, inner: T) -> None:
        self._inner = inner

    @property
    def inner(self) -> T:
        return self._inner

    def into_inner(self) -> T:
        return self._inner

    def _peek(self) -> T:
        return self._inner

    def access(self, f: Callable[[Poisoning[T]], U]) -> U:
        return f(Healthy(self._inner))

    def try_access(self, f: Callable[[Poisoning[T]], U]) -> U | None:
        return f(Healthy(self._inner))

    def access_mut(self, f: Callable[[Poisoning[T]], U]) -> U:
        return f(Healthy(self._inner))

    def try_access_mut(self, f: Callable[[Poisoning[T]], U]) -> U | None:
        return f(Healthy(self._inner))

    def __repr__(self) -> str:
        return f"Access({self._inner!r})"


class RefCell(Generic[T]):
    """Borrow-checked cell for single-threaded use.

    Any number of shared borrows may be outstanding at once, or a single
    exclusive one. Waiting can never release a borrow held further up the same
    call stack, so the blocking variants raise `BorrowError` on conflict.
    """

    __slots__ = ("_readers", "_value", "_writing")

    def __init__(self, value: T) -> None:
        self._value = value
        self._readers = 0
        self._writing = False

    def access(self, f: Callable[[Poisoning[T]], U]) -> U:
        if self._writing:
            msg = "RefCell is already mutably borrowed"
            raise BorrowError(msg)
        return self._borrow(f)

    def try_access(self, f: Callable[[Poisoning[T]], U]) -> U | None:
        if self._writing:
            return None
        return self._borrow(f)

    def access_mut(self, f: Callable[[Poisoning[T]], U]) -> U:
        if self._writing or self._readers:
            msg = "RefCell is already borrowed"
            raise BorrowError(msg)
        return self._borrow_mut(f)

    def try_access_mut(self, f: Callable[[Poisoning[T]], U]) -> U | None:
        if self._writing or self._readers:
            return None
        return self._borrow_mut(f)

    def _peek(self) -> T:
        """Read the value without borrowing it."""
        return self._value

    def _borrow(self, f: Callable[[Poisoning[T]], U]) -> U:
        self._readers += 1
        try:
            return f(Healthy(self._value))
        finally:
            self._readers -= 1

    def _borrow_mut(self, f: Callable[[Poisoning[T]], U]) -> U:
        self._writing = True
        try:
            return f(Healthy(self._value))
        finally:
            self._writing = False

    def __repr__(self) -> str:
        if self._writing:
            return "RefCell(<borrowed>)"
        return f"RefCell({self._value!r})"


class _Poisonable(Generic[T]):
    """Poison flag shared by the lock-backed primitives.

    The flag is raised before every exclusive critical section and lowered only
    when the section returns normally.
    """

    __slots__ = ()

    _value: T
    _poisoned: bool

    def is_poisoned(self) -> bool:
        return self._poisoned

    def clear_poison(self) -> None:
        self._poisoned = False

    def _peek(self) -> T:
        """Read the value without taking the lock."""
        return self._value

    def _status(self) -> Poisoning[T]:
        return Poisoned(self._value) if self._poisoned else Healthy(self._value)

    def _mutate(self, f: Callable[[Poisoning[T]], U]) -> U:
        status = self._status()
        self._poisoned = True
        try:
            result = f(status)
        except BaseException:
            logger.warning("Exclusive access to %s raised, marking it poisoned", type(self).__name__)
            raise
        self._poisoned = False
        return result


class Mutex(_Poisonable[T]):
    """Mutual-exclusion lock. Shared and exclusive access both hold the lock."""

    __slots__ = ("_lock", "_poisoned", "_value")

    def __init__(self, value: T) -> None:
        self._value = value
        self._lock = threading.Lock()
        self._poisoned = False

    def access(self, f: Callable[[Poisoning[T]], U]) -> U:
        with self._lock:
            return f(self._status())

    def try_access(self, f: Callable[[Poisoning[T]], U]) -> U | None:
        if not self._lock.acquire(blocking=False):
            return None
        try:
            return f(self._status())
        finally:
            self._lock.release()

    def access_mut(self, f: Callable[[Poisoning[T]], U]) -> U:
        with self._lock:
            return self._mutate(f)

    def try_access_mut(self, f: Callable[[Poisoning[T]], U]) -> U | None:
        if not self._lock.acquire(blocking=False):
            return None
        try:
            return self._mutate(f)
        finally:
            self._lock.release()

    def __repr__(self) -> str:
        state = "poisoned" if self._poisoned else "healthy"
        return f"Mutex(<{state}>)"


class RwLock(_Poisonable[T]):
    """Reader-writer lock: many shared accessors, or one exclusive accessor.

    A waiting writer blocks new readers so writers cannot starve.
    """

    __slots__ = ("_cond", "_poisoned", "_readers", "_value", "_writer", "_writers_waiting")

    def __init__(self, value: T) -> None:
        self._value = value
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0
        self._poisoned = False

    def access(self, f: Callable[[Poisoning[T]], U]) -> U:
        self._acquire_read(blocking=True)
        try:
            return f(self._status())
        finally:
            self._release_read()

    def try_access(self, f: Callable[[Poisoning[T]], U]) -> U | None:
        if not self._acquire_read(blocking=False):
            return None
        try:
            return f(self._status())
        finally:
            self._release_read()

    def access_mut(self, f: Callable[[Poisoning[T]], U]) -> U:
        self._acquire_write(blocking=True)
        try:
            return self._mutate(f)
        finally:
            self._release_write()

    def try_access_mut(self, f: Callable[[Poisoning[T]], U]) -> U | None:
        if not self._acquire_write(blocking=False):
            return None
        try:
            return self._mutate(f)
        finally:
            self._release_write()

    def _acquire_read(self, *, blocking: bool) -> bool:
        with self._cond:
            if self._writer or self._writers_waiting:
                if not blocking:
                    return False
                self._cond.wait_for(lambda: not (self._writer or self._writers_waiting))
            self._readers += 1
            return True

    def _release_read(self) -> None:
        with self._cond:
            self._readers -= 1
            if not self._readers:
                self._cond.notify_all()

    def _acquire_write(self, *, blocking: bool) -> bool:
        with self._cond:
            if self._writer or self._readers:
                if not blocking:
                    return False
                self._writers_waiting += 1
                try:
                    self._cond.wait_for(lambda: not (self._writer or self._readers))
                finally:
                    self._writers_waiting -= 1
            self._writer = True
            return True

    def _release_write(self) -> None:
        with self._cond:
            self._writer = False
            self._cond.notify_all()

    def __repr__(self) -> str:
        state = "poisoned" if self._poisoned else "healthy"
        return f"RwLock(<{state}>)"
