import threading
import time

import pytest

from dropcloud.callback import use_callback
from dropcloud.destroyer import DestroyWorker
from dropcloud.events import DestroyRequested, DropletDestroyed
from tests.conftest import FakeGateway, make_droplet

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit"), pytest.mark.timeout(30)]


def wait_until(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture
def gateways():
    return {"tok-a": FakeGateway(), "tok-b": FakeGateway()}


@pytest.fixture
def destroyer(gateways):
    worker = DestroyWorker(gateways.__getitem__, retry_wait=0.05)
    # Keep the background thread out of single-pass tests.
    worker._ensure_started = lambda: None
    yield worker
    worker.stop(timeout=1)


class TestRequestDestroy:
    def test_dedupes_by_droplet_id(self, destroyer):
        destroyer.request_destroy("tok-a", 1)
        destroyer.request_destroy("tok-a", 1)
        destroyer.request_destroy("tok-b", 1)
        assert destroyer.pending() == [("tok-a", 1)]

    def test_emits_once(self, destroyer):
        events = []
        with use_callback(events.append):
            destroyer.request_destroy("tok-a", 1)
            destroyer.request_destroy("tok-a", 1)
        assert events == [DestroyRequested(droplet_id=1)]


class TestProcessPending:
    def test_successful_delete_is_removed(self, destroyer, gateways):
        gateways["tok-a"].add(make_droplet(1))
        destroyer.request_destroy("tok-a", 1)

        assert destroyer.process_pending()
        assert destroyer.pending() == []
        assert gateways["tok-a"].deleted == [1]

    def test_absent_droplet_removed_within_one_pass(self, destroyer, gateways):
        gw = gateways["tok-a"]
        gw.fail_delete = {5}
        destroyer.request_destroy("tok-a", 5)

        events = []
        with use_callback(events.append):
            assert destroyer.process_pending()

        assert destroyer.pending() == []
        assert events == [DropletDestroyed(droplet_id=5, already_gone=True)]

    def test_failed_delete_of_existing_droplet_stays_pending(self, destroyer, gateways):
        gw = gateways["tok-a"]
        gw.add(make_droplet(5))
        gw.fail_delete = {5}
        destroyer.request_destroy("tok-a", 5)

        assert not destroyer.process_pending()
        assert destroyer.pending() == [("tok-a", 5)]

        gw.fail_delete = set()
        assert destroyer.process_pending()
        assert destroyer.pending() == []

    def test_inventory_failure_keeps_entry(self, destroyer, gateways):
        gw = gateways["tok-a"]
        gw.fail_delete = {5}
        gw.fail_list = True
        destroyer.request_destroy("tok-a", 5)

        assert not destroyer.process_pending()
        assert destroyer.pending() == [("tok-a", 5)]

    def test_inventory_fetched_once_per_token(self, destroyer, gateways):
        gw = gateways["tok-a"]
        gw.add(make_droplet(1))
        gw.add(make_droplet(2))
        gw.fail_delete = {1, 2, 3}
        for droplet_id in (1, 2, 3):
            destroyer.request_destroy("tok-a", droplet_id)

        assert not destroyer.process_pending()

        assert gw.list_calls == 1
        assert sorted(d for _, d in destroyer.pending()) == [1, 2]

    def test_groups_by_token(self, destroyer, gateways):
        gateways["tok-a"].add(make_droplet(1))
        gateways["tok-b"].add(make_droplet(2))
        destroyer.request_destroy("tok-b", 2)
        destroyer.request_destroy("tok-a", 1)

        assert destroyer.process_pending()
        assert gateways["tok-a"].deleted == [1]
        assert gateways["tok-b"].deleted == [2]

    def test_pass_works_on_snapshot(self, destroyer, gateways):
        gw = gateways["tok-a"]
        gw.add(make_droplet(1))
        original = gw.delete_droplet

        def delete_and_enqueue(droplet_id):
            original(droplet_id)
            destroyer.request_destroy("tok-a", 99)

        gw.delete_droplet = delete_and_enqueue
        destroyer.request_destroy("tok-a", 1)

        destroyer.process_pending()
        assert destroyer.pending() == [("tok-a", 99)]


class TestBackgroundLoop:
    def test_retries_until_deleted(self, gateways):
        gw = gateways["tok-a"]
        gw.add(make_droplet(5))
        gw.fail_delete = {5}
        worker = DestroyWorker(gateways.__getitem__, retry_wait=0.05)
        try:
            worker.request_destroy("tok-a", 5)
            assert wait_until(lambda: len(gw.delete_calls) >= 2)
            assert worker.pending() == [("tok-a", 5)]

            gw.fail_delete = set()
            assert wait_until(lambda: worker.pending() == [])
            assert gw.deleted == [5]
        finally:
            worker.stop(timeout=1)

    def test_new_work_wakes_idle_loop(self, gateways):
        gw = gateways["tok-a"]
        worker = DestroyWorker(gateways.__getitem__, retry_wait=60)
        try:
            gw.add(make_droplet(1))
            worker.request_destroy("tok-a", 1)
            assert wait_until(lambda: gw.deleted == [1])

            gw.add(make_droplet(2))
            worker.request_destroy("tok-a", 2)
            assert wait_until(lambda: gw.deleted == [1, 2])
        finally:
            worker.stop(timeout=1)

    def test_stop_ends_thread(self, gateways):
        worker = DestroyWorker(gateways.__getitem__)
        gateways["tok-a"].add(make_droplet(1))
        worker.request_destroy("tok-a", 1)
        worker.stop(timeout=2)
        assert not worker.running

    def test_concurrent_requests_are_deduped(self, gateways):
        gw = gateways["tok-a"]
        gw.fail_delete = {1}
        gw.add(make_droplet(1))
        worker = DestroyWorker(gateways.__getitem__, retry_wait=60)
        try:
            threads = [threading.Thread(target=worker.request_destroy, args=("tok-a", 1)) for _ in range(16)]
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            assert worker.pending() == [("tok-a", 1)]
        finally:
            worker.stop(timeout=1)
