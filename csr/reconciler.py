from __future__ import annotations

import time
from collections.abc import Callable
from threading import Lock, Thread

from . import db
from .checks import CheckVar, build_check
from .decision import Decision, decide
from .naming import clean_name, host_id, port_id, task_id, to_ip, to_port
from .privilege import TaskPrivilege
from .registry import Check, Registry, Service
from .runtime import CycleReport, RuntimeState
from .settings import Settings, settings
from .source import MesosSource
from .state import Snapshot, Task
from .tags import agent_tags, build_task_tags, parse_tags, parse_task_tag_rules, union

HOST_CHECK_INTERVAL = "10s"


class TaskSkipped(Exception):
    """A task that is deliberately not registered; the cycle goes on."""


class MigrationMarkerPresent(TaskSkipped):
    pass


class TaskNotAllowed(TaskSkipped):
    pass


class UnknownAgent(TaskSkipped):
    pass


class Reconciler:
    """Reconciles registry entries with the cluster, one snapshot per cycle."""

    def __init__(
        self,
        runtime: RuntimeState,
        registry: Registry,
        source: MesosSource | None = None,
        cfg: Settings = settings,
        privilege: TaskPrivilege | None = None,
        check_builder: Callable[[Task, CheckVar], Check | None] = build_check,
    ):
        self.runtime = runtime
        self.registry = registry
        self.source = source
        self.cfg = cfg
        self.privilege = privilege or TaskPrivilege(cfg.whitelist, cfg.blacklist)
        self.check_builder = check_builder
        self.task_tags = parse_task_tag_rules(cfg.task_tags)
        self._cache_loaded = False
        self._cycle_lock = Lock()
        self._stop = False
        self._thr: Thread | None = None

    def start(self) -> None:
        if self._thr and self._thr.is_alive():
            return
        self._stop = False
        self._thr = Thread(target=self._loop, daemon=True)
        self._thr.start()

    def stop(self) -> None:
        self._stop = True

    def is_running(self) -> bool:
        return bool(self._thr and self._thr.is_alive())

    def _loop(self) -> None:
        db.log_event("INFO", "Reconciler started")
        while not self._stop:
            try:
                self.run_cycle()
            except Exception as e:
                db.log_event("ERROR", f"Reconcile cycle failed: {type(e).__name__}: {e}")
            time.sleep(max(1, self.cfg.refresh_s))

    # -- cycle ---------------------------------------------------------------

    def run_cycle(self, snapshot: Snapshot | None = None) -> CycleReport:
        """Register hosts, then running tasks, then sweep stale entries.

        Registry errors propagate; a skipped task does not stop the cycle.
        """
        with self._cycle_lock:
            report = CycleReport()
            agents: dict[str, str] = {}
            try:
                if snapshot is None:
                    if self.source is None:
                        raise RuntimeError("No cluster source configured")
                    snapshot = self.source.snapshot()
                if not self._cache_loaded:
                    self.load_cache(snapshot)
                self.registry.cache_reset_marks()
                agents = self.register_hosts(snapshot, report)
                for task in snapshot.state.running_tasks():
                    report.tasks += 1
                    try:
                        self.register_task(task, agents.get(task.slave_id, ""), report)
                    except TaskSkipped as e:
                        report.skipped += 1
                        db.log_event("WARN", f"Skipping task {task.id}: {e}", service_name=task.name)
                report.deregistered = len(self.registry.deregister())
            except Exception as e:
                report.error = f"{type(e).__name__}: {e}"
                raise
            finally:
                self.runtime.finish_cycle(report, agents)
            return report

    def load_cache(self, snapshot: Snapshot) -> None:
        leader = snapshot.leader
        if leader is not None:
            seed = leader.ip
        elif snapshot.masters:
            seed = snapshot.masters[0].ip
        else:
            db.log_event("WARN", "No control-plane node known, starting with an empty cache")
            self._cache_loaded = True
            return
        self.registry.cache_load(seed, self.cfg.service_id_prefix)
        self._cache_loaded = True

    # -- hosts ---------------------------------------------------------------

    def register_hosts(self, snapshot: Snapshot, report: CycleReport | None = None) -> dict[str, str]:
        """Register every worker agent and control-plane node.

        Returns the worker id -> address map that task registration needs.
        """
        cfg = self.cfg
        agents: dict[str, str] = {}

        for s in snapshot.state.slaves:
            agent = to_ip(s.host)
            port = to_port(s.port)
            agents[s.id] = agent
            self._register_with_cache(
                Service(
                    id=host_id(cfg.service_id_prefix, cfg.service_name, s.id, s.hostname),
                    name=cfg.service_name,
                    port=port,
                    address=agent,
                    agent=agent,
                    tags=agent_tags(cfg.service_tags, "agent", "follower"),
                    check=Check(http=f"http://{agent}:{port}/slave(1)/health", interval=HOST_CHECK_INTERVAL),
                ),
                report,
            )

        for m in snapshot.masters:
            if m.is_leader:
                tags = agent_tags(cfg.service_tags, "leader", "master")
            else:
                tags = agent_tags(cfg.service_tags, "master")
            self._register_with_cache(
                Service(
                    id=host_id(cfg.service_id_prefix, cfg.service_name, m.ip, m.port_string),
                    name=cfg.service_name,
                    port=m.port,
                    address=m.ip,
                    agent=m.ip,
                    tags=tags,
                    check=Check(http=f"http://{m.ip}:{m.port}/master/health", interval=HOST_CHECK_INTERVAL),
                ),
                report,
            )

        if report is not None:
            report.hosts = len(snapshot.state.slaves) + len(snapshot.masters)
        return agents

    # -- tasks ---------------------------------------------------------------

    def register_task(self, task: Task, agent: str, report: CycleReport | None = None) -> list[Service]:
        """Register the entries of one running task and return them.

        Raises a TaskSkipped subclass when the task must not be registered.
        """
        cfg = self.cfg
        if task.label(cfg.migration_label) is not None:
            raise MigrationMarkerPresent(f"Application with {cfg.migration_label} label")

        tname = clean_name(task.id, cfg.separator)
        override = task.label("overrideTaskName")
        if override:
            tname = clean_name(override, cfg.separator)
            db.log_event("DEBUG", f"Task {task.id} renamed to {tname}", service_name=tname)
        if not self.privilege.allowed(tname):
            raise TaskNotAllowed("Task not allowed to be registered")
        if not agent:
            raise UnknownAgent(f"No known agent for slave {task.slave_id!r}")

        address = task.ip(cfg.ip_order, agent)
        agent_ip = to_ip(agent)
        tags = build_task_tags(tname, parse_tags(task.label("tags")), self.task_tags)

        ports = task.discovery_ports
        if not ports:
            service = Service(
                id=task_id(cfg.service_id_prefix, agent, tname, address),
                name=tname,
                address=address,
                agent=agent_ip,
                tags=tags,
                check=self.check_builder(task, CheckVar(host=to_ip(address))),
            )
            self._register_with_cache(service, report)
            return [service]

        produced: list[Service] = []
        for index, dp in enumerate(ports):
            if dp.number <= 0:
                db.log_event("WARN", f"Task {task.id}: skipping discovery port {dp.name or index} without a valid number")
                continue
            check = self.check_builder(task, CheckVar(host=to_ip(address), port=str(dp.number)))

            # The first declared port is the task's primary service, named or not.
            if index == 0:
                service = Service(
                    id=port_id(cfg.service_id_prefix, agent, tname, address, dp.number),
                    name=tname,
                    port=dp.number,
                    address=address,
                    agent=agent_ip,
                    tags=tags,
                    check=check,
                )
                self._register_with_cache(service, report)
                produced.append(service)

            if dp.name:
                named = clean_name(f"{tname}-{dp.name}", cfg.separator)
                db.log_event("DEBUG", f"Port {dp.number} of {task.id} registered as {named}", service_name=named)
                service = Service(
                    id=port_id(cfg.service_id_prefix, agent, named, address, dp.number),
                    name=named,
                    port=dp.number,
                    address=address,
                    agent=agent_ip,
                    tags=union(tags, [dp.name], parse_tags(dp.label("tags"))),
                    check=check,
                )
                # Named-port entries skip the cache comparison.
                self._register(service, report)
                produced.append(service)
        return produced

    # -- registry writes -----------------------------------------------------

    def _register_with_cache(self, service: Service, report: CycleReport | None) -> Decision:
        with self.runtime.entry_lock(service.id):
            cached = self.registry.cache_lookup(service.id)
            decision = decide(service.tags, cached)
            if decision is Decision.CONFIRM:
                self.registry.cache_mark(service.id)
                if report is not None:
                    report.confirmed += 1
                return decision
            if decision is Decision.REPLACE:
                db.log_event(
                    "INFO",
                    f"Tags changed ({cached.tags} -> {service.tags}), re-registering",
                    service_name=service.name,
                    entry_id=service.id,
                )
                self.registry.cache_delete(service.id)
                if report is not None:
                    report.replaced += 1
            self.registry.register(service)
            if report is not None and decision is Decision.REGISTER:
                report.registered += 1
            return decision

    def _register(self, service: Service, report: CycleReport | None) -> None:
        with self.runtime.entry_lock(service.id):
            self.registry.register(service)
        if report is not None:
            report.registered += 1
