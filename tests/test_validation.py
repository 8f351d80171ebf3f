import threading
import unittest
from typing import Protocol, runtime_checkable

import pytest

from sharebind import Access, Arc, ContainerBuilder, Mutex, Rc, RefCell, ServiceContainer


@runtime_checkable
class RepoProtocol(Protocol):
    def get(self) -> int: ...


class GoodRepo:
    def get(self) -> int:
        return 42


class BadRepo:
    # Missing `get`, does not conform to RepoProtocol
    def other(self) -> str:
        return "nope"


class TestSharedProtocolConformance(unittest.TestCase):
    def test_conforming_shared_override_resolves(self):
        cont = ContainerBuilder().with_shared_constructor(RepoProtocol, lambda _: Rc(Access(GoodRepo()))).build()

        repo = cont.resolve_shared(RepoProtocol)

        assert repo.access(lambda g: g.assert_healthy().get()) == 42

    def test_non_conforming_shared_override_raises_type_error(self):
        cont = ContainerBuilder().with_shared_constructor(RepoProtocol, lambda _: Rc(Access(BadRepo()))).build()

        with pytest.raises(TypeError):
            cont.resolve_shared(RepoProtocol)
        assert not cont.is_resolved(RepoProtocol)

    def test_guarded_value_is_checked_not_the_guard(self):
        cont = ContainerBuilder().with_shared_constructor(RepoProtocol, lambda _: Arc(Mutex(GoodRepo()))).build()

        repo = cont.resolve_shared(RepoProtocol)

        assert repo.access(lambda g: g.value.get()) == 42

    def test_bare_value_behind_pointer_is_checked(self):
        cont = ServiceContainer()
        cont.insert(RepoProtocol, Rc(GoodRepo()))

        assert cont.resolve_shared(RepoProtocol).access(lambda g: g.value.get()) == 42

    def test_non_conforming_insert_raises_and_keeps_pointer(self):
        cont = ServiceContainer()
        instance = Rc(RefCell(BadRepo()))

        with pytest.raises(TypeError):
            cont.insert(RepoProtocol, instance)

        assert instance.alive
        assert instance.strong_count == 1
        assert not cont.is_resolved(RepoProtocol)

    def test_insert_does_not_wait_for_lock_held_by_other_thread(self):
        cont = ServiceContainer()
        shared = Arc(Mutex(GoodRepo()))
        locked = threading.Event()
        release = threading.Event()

        def hold(guard):
            locked.set()
            release.wait(5)

        holder = threading.Thread(target=shared.access_mut, args=(hold,))
        holder.start()
        locked.wait(5)
        inserter = threading.Thread(target=cont.insert, args=(RepoProtocol, shared.clone()))
        try:
            inserter.start()
            inserter.join(1)
            assert not inserter.is_alive()
        finally:
            release.set()
            holder.join(5)
            inserter.join(5)

        assert cont.resolve_shared(RepoProtocol).ptr_eq(shared)

    def test_resolve_inside_exclusive_borrow_of_the_value(self):
        inner = Rc(RefCell(GoodRepo()))
        cont = ContainerBuilder().with_shared_constructor(RepoProtocol, lambda _: inner.clone()).build()

        resolved = inner.access_mut(lambda _: cont.resolve_shared(RepoProtocol))

        assert resolved.ptr_eq(inner)
        assert cont.is_resolved(RepoProtocol)

    def test_non_conforming_value_is_rejected_while_locked(self):
        cont = ServiceContainer()
        shared = Arc(Mutex(BadRepo()))

        with pytest.raises(TypeError):
            shared.access(lambda _: cont.insert(RepoProtocol, shared.clone()))
        assert not cont.is_resolved(RepoProtocol)


class TestLocalProtocolConformance(unittest.TestCase):
    def test_conforming_local_override_resolves(self):
        cont = ContainerBuilder().with_local_constructor(RepoProtocol, lambda _, params: GoodRepo()).build()

        assert cont.resolve_local(RepoProtocol).get() == 42

    def test_non_conforming_local_override_raises_type_error(self):
        cont = ContainerBuilder().with_local_constructor(RepoProtocol, lambda _, params: BadRepo()).build()

        with pytest.raises(TypeError, match="does not conform to protocol RepoProtocol"):
            cont.resolve_local(RepoProtocol)


class TestProtocolSignatureNonConformance(unittest.TestCase):
    class KeyedRepo(Protocol):
        def get(self, key: str) -> int: ...

    def _resolve(self, impl):
        cont = ContainerBuilder().with_local_constructor(self.KeyedRepo, lambda _, params: impl).build()
        return cont.resolve_local(self.KeyedRepo)

    def test_missing_parameter_raises(self):
        class NoKey:
            def get(self) -> int:
                return 1

        with pytest.raises(TypeError):
            self._resolve(NoKey())

    def test_extra_required_parameter_raises(self):
        class TwoKeys:
            def get(self, key: str, other: str) -> int:
                return 1

        with pytest.raises(TypeError):
            self._resolve(TwoKeys())

    def test_non_callable_member_raises(self):
        class Attribute:
            get = 42

        with pytest.raises(TypeError):
            self._resolve(Attribute())

    def test_wrong_return_type_raises(self):
        class StrRepo:
            def get(self, key: str) -> str:
                return key

        with pytest.raises(TypeError):
            self._resolve(StrRepo())

    def test_optional_extra_parameter_passes(self):
        class Defaulted:
            def get(self, key: str, default: int = 0) -> int:
                return default

        assert self._resolve(Defaulted()).get("k") == 0

    def test_varargs_implementation_passes(self):
        class Variadic:
            def get(self, *args) -> int:
                return len(args)

        assert self._resolve(Variadic()).get("k") == 1

    def test_subclass_return_type_passes(self):
        class BoolRepo:
            def get(self, key: str) -> bool:
                return True

        assert self._resolve(BoolRepo()).get("k") is True


def test_nominal_protocol_subclass_passes():
    class Declared(RepoProtocol):
        def get(self) -> int:
            return 7

    cont = ServiceContainer()
    cont.insert(RepoProtocol, Rc(Access(Declared())))

    assert cont.resolve_shared(RepoProtocol).access(lambda g: g.value.get()) == 7


def test_plain_type_keys_are_not_structurally_checked():
    class Repo:
        def get(self) -> int:
            return 1

    cont = ServiceContainer()
    cont.insert(Repo, Rc(Access(BadRepo())))

    assert cont.is_resolved(Repo)
