import gc
import unittest

from sharebind import Access, Arc, Mutex, Rc, ServiceContainer


class Tracked: ...


class TestSharedInstanceLifetime(unittest.TestCase):
    cont: ServiceContainer
    dropped: list

    def setUp(self):
        self.dropped = []
        self.cont = ServiceContainer()

    def test_resolve_shared_increases_ref_count(self):
        self.cont.insert(Tracked, Rc(Access("tracked"), on_drop=self.dropped.append))

        first = self.cont.resolve_shared(Tracked)
        assert first.strong_count == 2

        second = self.cont.resolve_shared(Tracked)
        assert first.strong_count == 3

        second.drop()
        assert first.strong_count == 2

    def test_close_decreases_ref_count(self):
        instance = Rc(Access("tracked"), on_drop=self.dropped.append)
        keep = instance.clone()
        self.cont.insert(Tracked, instance)
        assert keep.strong_count == 2

        self.cont.close()

        assert keep.strong_count == 1
        assert self.dropped == []

    def test_dropping_every_reference_frees_exactly_once(self):
        self.cont.insert(Tracked, Arc(Access("tracked"), on_drop=self.dropped.append))
        handles = [self.cont.resolve_shared(Tracked) for _ in range(3)]
        assert handles[0].strong_count == 4

        for handle in handles:
            handle.drop()
        assert self.dropped == []

        self.cont.close()
        assert self.dropped[0].inner == "tracked"
        assert len(self.dropped) == 1

    def test_close_without_external_clones_runs_destructor_once(self):
        self.cont.insert(Tracked, Rc("tracked", on_drop=self.dropped.append))

        self.cont.close()
        self.cont.close()

        assert self.dropped == ["tracked"]

    def test_garbage_collected_container_drops_its_instances(self):
        self.cont.insert(Tracked, Rc("tracked", on_drop=self.dropped.append))

        del self.cont
        gc.collect()

        assert self.dropped == ["tracked"]

    def test_context_manager_closes_container(self):
        with ServiceContainer() as cont:
            cont.insert(Tracked, Rc("tracked", on_drop=self.dropped.append))
            assert self.dropped == []

        assert cont.closed
        assert self.dropped == ["tracked"]

    def test_external_clone_outlives_container(self):
        self.cont.insert(Tracked, Arc(Mutex(["log"]), on_drop=self.dropped.append))
        external = self.cont.resolve_shared(Tracked)

        self.cont.close()

        external.access_mut(lambda g: g.value.append("after close"))
        assert external.access(lambda g: g.assert_healthy()) == ["log", "after close"]
        assert self.dropped == []

        external.drop()
        assert len(self.dropped) == 1
