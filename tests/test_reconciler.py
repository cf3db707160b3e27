import dataclasses

import pytest

from factories import FakeRegistry, master, port, running_status, slave, snapshot, task
from csr.checks import CheckVar
from csr.reconciler import MigrationMarkerPresent, Reconciler, TaskNotAllowed, UnknownAgent
from csr.registry import CachedEntry, Check
from csr.runtime import RuntimeState

AGENT = "10.0.0.5"


def make(cfg, registry, **kw):
    return Reconciler(RuntimeState(), registry, cfg=cfg, **kw)


# -- hosts -------------------------------------------------------------------


def test_worker_entry(cfg, registry):
    r = make(cfg, registry)
    agents = r.register_hosts(snapshot(slaves=[slave("agent-1", "10.0.0.5", 5051, "node-5")]))

    assert agents == {"agent-1": "10.0.0.5"}
    (svc,) = registry.registered
    assert svc.id == "mesos-consul:mesos:agent-1:node-5"
    assert svc.name == "mesos"
    assert svc.tags == ["agent", "follower"]
    assert svc.port == 5051
    assert svc.address == svc.agent == "10.0.0.5"
    assert svc.check == Check(http="http://10.0.0.5:5051/slave(1)/health", interval="10s")


def test_master_tags_follow_leadership(cfg, registry):
    r = make(cfg, registry)
    r.register_hosts(snapshot(masters=[master("10.0.0.1", leader=True), master("10.0.0.2")]))

    leader, follower = registry.registered
    assert leader.tags == ["leader", "master"]
    assert leader.id == "mesos-consul:mesos:10.0.0.1:5050"
    assert leader.check.http == "http://10.0.0.1:5050/master/health"
    assert follower.tags == ["master"]


def test_host_tags_use_configured_suffixes(cfg, registry):
    r = make(dataclasses.replace(cfg, service_tags=("dc1",)), registry)
    r.register_hosts(snapshot(slaves=[slave()], masters=[master(leader=True)]))

    assert [s.tags for s in registry.registered] == [
        ["agent.dc1", "follower.dc1"],
        ["leader.dc1", "master.dc1"],
    ]


def test_host_identifiers_are_stable_across_cycles(cfg):
    snap = snapshot(slaves=[slave()], masters=[master(leader=True)])
    first, second = FakeRegistry(), FakeRegistry()
    make(cfg, first).register_hosts(snap)
    make(cfg, second).register_hosts(snap)
    assert [s.id for s in first.registered] == [s.id for s in second.registered]


# -- cache diff --------------------------------------------------------------


def test_cached_entry_with_same_tags_is_only_marked(cfg):
    registry = FakeRegistry([CachedEntry("mesos-consul:mesos:agent-1:node-5", ["follower", "agent"])])
    make(cfg, registry).register_hosts(snapshot(slaves=[slave()]))

    assert registry.mutations() == [("mark", "mesos-consul:mesos:agent-1:node-5")]
    assert registry.registered == []


def test_cached_entry_with_other_tags_is_deleted_then_registered(cfg):
    sid = "mesos-consul:mesos:10.0.0.1:5050"
    registry = FakeRegistry([CachedEntry(sid, ["master"])])
    make(cfg, registry).register_hosts(snapshot(masters=[master(leader=True)]))

    assert registry.mutations() == [("delete", sid), ("register", sid)]
    assert registry.cache[sid].tags == ["leader", "master"]


# -- tasks -------------------------------------------------------------------


def test_migration_marker_excludes_task(cfg, registry):
    r = make(cfg, registry)
    with pytest.raises(MigrationMarkerPresent, match="Application with consul label"):
        r.register_task(task(labels=[("consul", "")]), AGENT)
    assert registry.calls == []


def test_task_not_allowed(cfg, registry):
    r = make(dataclasses.replace(cfg, whitelist=("^api-",)), registry)
    with pytest.raises(TaskNotAllowed, match="not allowed"):
        r.register_task(task(), AGENT)
    assert registry.calls == []


def test_override_name_is_checked_against_allow_list(cfg, registry):
    r = make(dataclasses.replace(cfg, whitelist=("^api-",)), registry)
    (svc,) = r.register_task(task(labels=[("overrideTaskName", "API/Gateway")]), AGENT)
    assert svc.name == "api-gateway"


def test_unknown_agent_is_skipped(cfg, registry):
    with pytest.raises(UnknownAgent):
        make(cfg, registry).register_task(task(), "")
    assert registry.calls == []


def test_task_without_ports_registers_single_entry(cfg, registry):
    t = task(
        labels=[("tags", "a,b"), ("check_http", "http://{host}/ping")],
        statuses=[running_status(labels=[("Docker.NetworkSettings.IPAddress", "192.168.1.10")])],
    )
    (svc,) = make(cfg, registry).register_task(t, AGENT)

    assert svc.id == "mesos-consul:10.0.0.5:web-service-1:192.168.1.10"
    assert svc.name == "web-service-1"
    assert svc.address == "192.168.1.10"
    assert svc.agent == AGENT
    assert svc.port == 0
    assert "Port" not in svc.to_payload()
    assert svc.tags == ["a", "b"]
    assert svc.check.http == "http://192.168.1.10/ping"
    assert registry.mutations() == [("register", svc.id)]


def test_task_check_builder_receives_host_only_without_ports(cfg, registry):
    seen = []

    def builder(t, data):
        seen.append(data)
        return None

    t = task(statuses=[running_status(network_ip="192.168.1.10")])
    make(dataclasses.replace(cfg, ip_order=("netinfo",)), registry, check_builder=builder).register_task(t, AGENT)
    assert seen == [CheckVar(host="192.168.1.10")]


def test_task_with_one_named_port(cfg, registry):
    t = task(ports=[port(8080, "http", tags="edge")])
    primary, named = make(cfg, registry).register_task(t, AGENT)

    assert primary.name == "web-service-1"
    assert primary.port == 8080
    assert primary.id == "mesos-consul:10.0.0.5:web-service-1:10.0.0.5:8080"
    assert primary.tags == []

    assert named.name == "web-service-1-http"
    assert named.port == 8080
    assert named.id == "mesos-consul:10.0.0.5:web-service-1-http:10.0.0.5:8080"
    assert named.tags == ["http", "edge"]
    assert primary.id != named.id


def test_only_first_port_is_primary(cfg, registry):
    t = task(ports=[port(9000), port(8080, "http"), port(8443, "https")])
    produced = make(cfg, registry).register_task(t, AGENT)

    assert [(s.name, s.port) for s in produced] == [
        ("web-service-1", 9000),
        ("web-service-1-http", 8080),
        ("web-service-1-https", 8443),
    ]
    assert len({s.id for s in produced}) == 3


def test_named_port_entries_skip_cache_check(cfg):
    t = task(ports=[port(8080, "http")])
    primary_id = "mesos-consul:10.0.0.5:web-service-1:10.0.0.5:8080"
    named_id = "mesos-consul:10.0.0.5:web-service-1-http:10.0.0.5:8080"
    registry = FakeRegistry([CachedEntry(primary_id, []), CachedEntry(named_id, ["http"])])
    make(cfg, registry).register_task(t, AGENT)

    assert ("lookup", primary_id) in registry.calls
    assert ("lookup", named_id) not in registry.calls
    assert registry.mutations() == [("mark", primary_id), ("register", named_id)]


def test_instances_sharing_a_name_get_distinct_entries(cfg, registry):
    r = make(cfg, registry)
    for tid, ip in (("app.1", "172.17.0.2"), ("app.2", "172.17.0.3")):
        st = running_status(labels=[("Docker.NetworkSettings.IPAddress", ip)])
        r.register_task(task(tid, labels=[("overrideTaskName", "app")], ports=[port(8080, "http")], statuses=[st]), AGENT)

    assert [(s.id, s.address) for s in registry.registered] == [
        ("mesos-consul:10.0.0.5:app:172.17.0.2:8080", "172.17.0.2"),
        ("mesos-consul:10.0.0.5:app-http:172.17.0.2:8080", "172.17.0.2"),
        ("mesos-consul:10.0.0.5:app:172.17.0.3:8080", "172.17.0.3"),
        ("mesos-consul:10.0.0.5:app-http:172.17.0.3:8080", "172.17.0.3"),
    ]
    assert ("mark", "mesos-consul:10.0.0.5:app:172.17.0.2:8080") not in registry.calls


def test_invalid_port_is_skipped(cfg, registry, event_db):
    t = task(ports=[port("oops", "admin"), port(8080, "http")])
    produced = make(cfg, registry).register_task(t, AGENT)

    assert [s.name for s in produced] == ["web-service-1-http"]
    assert any("without a valid number" in e["message"] for e in event_db.latest_events())


def test_task_tag_rules_apply(cfg, registry):
    r = make(dataclasses.replace(cfg, task_tags="web:public;service:public,svc"), registry)
    (svc,) = r.register_task(task(labels=[("tags", "svc")]), AGENT)
    assert svc.tags == ["svc", "public"]


def test_ip_order_is_respected(cfg, registry):
    st = running_status(
        labels=[
            ("Docker.NetworkSettings.IPAddress", "172.17.0.2"),
            ("MesosContainerizer.NetworkSettings.IPAddress", "10.1.0.2"),
        ]
    )
    r = make(dataclasses.replace(cfg, ip_order=("mesos", "docker")), registry)
    (svc,) = r.register_task(task(statuses=[st]), AGENT)
    assert svc.address == "10.1.0.2"


# -- full cycle --------------------------------------------------------------


def test_run_cycle(cfg):
    stale = CachedEntry("mesos-consul:10.0.0.9:gone:10.0.0.9", [])
    registry = FakeRegistry([stale])
    runtime = RuntimeState()
    r = Reconciler(runtime, registry, cfg=cfg)
    snap = snapshot(
        slaves=[slave()],
        masters=[master(leader=True)],
        tasks=[
            task("web", slave_id="agent-1", ports=[port(8080, "http")]),
            task("old", slave_id="agent-1", labels=[("consul", "yes")]),
            task("finished", slave_id="agent-1", state="TASK_FINISHED"),
            task("lost", slave_id="S-unknown"),
        ],
    )
    report = r.run_cycle(snap)

    assert registry.calls[0] == ("load", "10.0.0.1", "mesos-consul")
    assert report.hosts == 2
    assert report.tasks == 3
    assert report.skipped == 2
    assert report.registered == 4
    assert report.deregistered == 1
    assert report.error is None
    assert stale.id not in registry.cache
    assert runtime.get_agents() == {"agent-1": "10.0.0.5"}

    # second pass over the same snapshot only confirms cached entries
    registry.calls.clear()
    again = r.run_cycle(snap)
    assert ("load", "10.0.0.1", "mesos-consul") not in registry.calls
    assert again.confirmed == 3
    assert again.registered == 1  # named-port entry re-registers every cycle
    assert again.deregistered == 0


def test_run_cycle_records_registry_errors(cfg):
    class Broken(FakeRegistry):
        def register(self, service):
            raise RuntimeError("registry down")

    runtime = RuntimeState()
    r = Reconciler(runtime, Broken(), cfg=cfg)
    with pytest.raises(RuntimeError):
        r.run_cycle(snapshot(slaves=[slave()]))
    assert runtime.get_report().error == "RuntimeError: registry down"


def test_entry_locks_do_not_outlive_a_cycle(cfg):
    runtime = RuntimeState()
    r = Reconciler(runtime, FakeRegistry(), cfg=cfg)
    for i in range(5):
        r.run_cycle(snapshot(slaves=[slave()], tasks=[task(f"web.{i}", slave_id="agent-1")]))
    assert len(runtime._entry_locks) == 0


def test_marks_from_a_failed_cycle_do_not_keep_stale_entries(cfg):
    class FlakySweep(FakeRegistry):
        fail = False

        def deregister(self):
            if self.fail:
                self.fail = False
                raise RuntimeError("sweep failed")
            return super().deregister()

    registry = FlakySweep()
    r = Reconciler(RuntimeState(), registry, cfg=cfg)
    web = task("web", slave_id="agent-1")
    api = task("api", slave_id="agent-1")
    r.run_cycle(snapshot(slaves=[slave()], tasks=[web, api]))

    registry.fail = True
    with pytest.raises(RuntimeError):
        r.run_cycle(snapshot(slaves=[slave()], tasks=[web, api]))

    report = r.run_cycle(snapshot(slaves=[slave()], tasks=[web]))
    assert report.deregistered == 1
    assert ("deregister", "mesos-consul:10.0.0.5:api:10.0.0.5") in registry.calls
