from unittest.mock import MagicMock

import pytest

from dropcloud.constants import DropletStatus, NetworkType
from dropcloud.host import InMemoryRegistry, file_payload, static_payload
from dropcloud.labels import matches
from dropcloud.naming import generate_droplet_name
from dropcloud.retention import RetentionMode
from dropcloud.types import Droplet, WorkerComputer, WorkerNode
from tests.conftest import FakeStream, make_config, make_droplet, make_template

pytestmark = [pytest.mark.unit, pytest.mark.xdist_group("unit")]


def make_node(**overrides) -> WorkerNode:
    fields = dict(
        name=generate_droplet_name("do1", "small"),
        cloud_name="do1",
        template_name="small",
        droplet_id=7,
        private_key="PEM",
    )
    fields.update(overrides)
    return WorkerNode(**fields)


class TestDroplet:
    def test_from_api_minimal(self):
        droplet = Droplet.from_api({"id": "12", "name": "x", "status": "ACTIVE"})
        assert droplet.id == 12
        assert droplet.status is DropletStatus.ACTIVE
        assert droplet.networks == ()
        assert droplet.image is None
        assert droplet.ip_address(NetworkType.PUBLIC) is None

    def test_image_id_when_no_slug(self):
        droplet = Droplet.from_api({"id": 1, "name": "x", "status": "new", "image": {"id": 555, "slug": None}})
        assert droplet.image == "555"

    @pytest.mark.parametrize(
        ("status", "occupies"),
        [
            (DropletStatus.NEW, True),
            (DropletStatus.ACTIVE, True),
            (DropletStatus.UNKNOWN, True),
            (DropletStatus.OFF, False),
            (DropletStatus.ARCHIVE, False),
        ],
    )
    def test_occupies_capacity(self, status, occupies):
        assert make_droplet(1, status=status).occupies_capacity is occupies


class TestSlaveTemplate:
    def test_tag_list(self):
        assert make_template(tags="ci, build  linux").tag_list == ["ci", "build", "linux"]

    def test_rejects_negative_cap(self):
        with pytest.raises(ValueError):
            make_template(instance_cap=-1)

    def test_rejects_zero_executors(self):
        with pytest.raises(ValueError):
            make_template(num_executors=0)

    def test_matches_labelless(self):
        assert make_template().matches(None, matches)
        assert not make_template(labels="linux").matches(None, matches)
        assert make_template(labels="linux", labelless_jobs_allowed=True).matches(None, matches)

    def test_matches_expression(self):
        template = make_template(labels="linux docker")
        assert template.matches("linux && !windows", matches)
        assert not template.matches("windows", matches)

    def test_cap_counts_max_of_local_and_remote(self):
        template = make_template(instance_cap=2)
        mine = generate_droplet_name("do1", "small")
        other = generate_droplet_name("do1", "large")
        droplets = [make_droplet(1, mine), make_droplet(2, other)]

        assert not template.is_instance_cap_reached("do1", [mine], droplets)
        assert template.is_instance_cap_reached("do1", [mine, generate_droplet_name("do1", "small")], droplets)

    def test_stopped_droplets_do_not_count(self):
        template = make_template(instance_cap=1)
        droplets = [make_droplet(1, generate_droplet_name("do1", "small"), status=DropletStatus.OFF)]
        assert not template.is_instance_cap_reached("do1", [], droplets)

    def test_unlimited(self):
        template = make_template(instance_cap=0)
        names = [generate_droplet_name("do1", "small") for _ in range(50)]
        assert not template.is_instance_cap_reached("do1", names, [])


class TestCloudConfig:
    def test_effective_cap_pool_only(self):
        assert make_config(instance_cap=3).effective_instance_cap == 3

    def test_effective_cap_unbounded(self):
        assert make_config().effective_instance_cap is None

    def test_effective_cap_template_sum(self):
        config = make_config(make_template("a", instance_cap=1), make_template("b", instance_cap=1), instance_cap=5)
        assert config.template_instance_cap == 2
        assert config.effective_instance_cap == 2

    def test_network_type(self):
        assert make_config().network_type is NetworkType.PUBLIC
        assert make_config(use_private_networking=True).network_type is NetworkType.PRIVATE


class TestWorkerNode:
    @pytest.mark.parametrize(
        ("minutes", "one_shot", "mode"),
        [
            (10, False, RetentionMode.IDLE_MINUTES),
            (0, False, RetentionMode.DISABLED),
            (-1, False, RetentionMode.ASAP),
            (10, True, RetentionMode.ONE_SHOT),
        ],
    )
    def test_retention_mode(self, minutes, one_shot, mode):
        assert make_node(idle_termination_minutes=minutes, one_shot=one_shot).retention_mode is mode

    def test_blank_admin_defaults_to_root(self):
        assert make_node(remote_admin="").remote_admin == "root"

    def test_is_instance_of(self):
        node = make_node()
        assert node.is_instance_of("do1")
        assert not node.is_instance_of("do2")


class TestWorkerComputer:
    def test_idle_tracking(self, clock):
        computer = WorkerComputer(make_node(), token="t", clock=clock)
        assert computer.is_idle
        assert not computer.has_run_work
        assert computer.idle_start == clock.now

        computer.task_accepted()
        assert not computer.is_idle
        assert computer.has_run_work
        clock.advance(30)
        computer.task_completed()

        assert computer.is_idle
        assert computer.idle_start == clock.now

    def test_completed_without_accept_stays_idle(self, clock):
        computer = WorkerComputer(make_node(), token="t", clock=clock)
        computer.task_completed()
        assert computer.is_idle
        assert not computer.has_run_work

    def test_temporarily_offline(self):
        computer = WorkerComputer(make_node(), token="t")
        computer.set_temporarily_offline(True, "draining")
        assert computer.is_temporarily_offline
        assert computer.offline_cause == "draining"
        computer.set_temporarily_offline(False)
        assert not computer.is_temporarily_offline

    def test_channel(self):
        computer = WorkerComputer(make_node(), token="t")
        stream = FakeStream()
        closed = []
        computer.set_channel(stream, lambda: closed.append(True))

        assert computer.is_online
        computer.close_channel()

        assert stream.closed
        assert closed == [True]
        assert computer.channel is None
        assert not computer.is_online

    def test_connect_without_launcher(self):
        with pytest.raises(RuntimeError):
            WorkerComputer(make_node(), token="t").connect()

    def test_on_removed_requests_destroy(self):
        destroyer = MagicMock()
        node = make_node()
        computer = WorkerComputer(node, token="tok", destroyer=destroyer)

        computer.on_removed()

        assert computer.node is None
        destroyer.request_destroy.assert_called_once_with("tok", 7)


class TestInMemoryRegistry:
    def test_add_get_remove(self):
        registry = InMemoryRegistry()
        destroyer = MagicMock()
        node = make_node()
        WorkerComputer(node, token="tok", destroyer=destroyer)

        registry.add_node(node)
        assert registry.get_node(node.name) is node
        assert len(registry) == 1

        registry.remove_node(node)
        assert registry.nodes() == []
        destroyer.request_destroy.assert_called_once_with("tok", 7)

    def test_double_remove_notifies_once(self):
        registry = InMemoryRegistry()
        destroyer = MagicMock()
        node = make_node()
        WorkerComputer(node, token="tok", destroyer=destroyer)
        registry.add_node(node)

        registry.remove_node(node)
        registry.remove_node(node)

        assert destroyer.request_destroy.call_count == 1

    def test_remove_without_computer(self):
        registry = InMemoryRegistry()
        node = make_node()
        registry.add_node(node)
        registry.remove_node(node)
        assert registry.get_node(node.name) is None


class TestPayloads:
    def test_static(self):
        assert static_payload(b"jar")() == b"jar"

    def test_file_read_at_call_time(self, tmp_path):
        path = tmp_path / "agent.jar"
        payload = file_payload(path)
        path.write_bytes(b"v2")
        assert payload() == b"v2"
