from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .naming import split_pid, to_port

TASK_RUNNING = "TASK_RUNNING"

DOCKER_IP_LABEL = "Docker.NetworkSettings.IPAddress"
MESOS_IP_LABEL = "MesosContainerizer.NetworkSettings.IPAddress"


class _Model(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Label(_Model):
    key: str
    value: str = ""


def _first(labels: Iterable[Label], key: str) -> str | None:
    for label in labels:
        if label.key == key:
            return label.value
    return None


class Labels(_Model):
    labels: list[Label] = []


class DiscoveryPort(_Model):
    number: int = 0
    name: str = ""
    protocol: str = ""
    labels: Labels = Field(default_factory=Labels)

    @field_validator("number", mode="before")
    @classmethod
    def _number(cls, v: object) -> int:
        # a malformed port number becomes 0 and is skipped at registration
        return to_port(v)  # type: ignore[arg-type]

    def label(self, key: str) -> str | None:
        return _first(self.labels.labels, key)


class DiscoveryPorts(_Model):
    ports: list[DiscoveryPort] = []


class DiscoveryInfo(_Model):
    name: str = ""
    ports: DiscoveryPorts = Field(default_factory=DiscoveryPorts)


class IPAddress(_Model):
    ip_address: str = ""


class NetworkInfo(_Model):
    ip_address: str = ""
    ip_addresses: list[IPAddress] = []


class ContainerStatus(_Model):
    network_infos: list[NetworkInfo] = []


class TaskStatus(_Model):
    state: str = ""
    timestamp: float = 0.0
    labels: list[Label] = []
    container_status: ContainerStatus = Field(default_factory=ContainerStatus)


class Task(_Model):
    id: str
    name: str = ""
    framework_id: str = ""
    slave_id: str = ""
    state: str = ""
    labels: list[Label] = []
    discovery: DiscoveryInfo = Field(default_factory=DiscoveryInfo)
    statuses: list[TaskStatus] = []

    def label(self, key: str) -> str | None:
        """Value of the first label named ``key`` (keys may repeat)."""
        return _first(self.labels, key)

    @property
    def discovery_ports(self) -> tuple[DiscoveryPort, ...]:
        return tuple(self.discovery.ports.ports)

    def _running_status(self) -> TaskStatus | None:
        running = [s for s in self.statuses if s.state == TASK_RUNNING]
        if not running:
            return None
        return max(running, key=lambda s: s.timestamp)

    def ip_candidates(self, agent: str = "") -> dict[str, str]:
        """Candidate addresses keyed by source: docker, mesos, netinfo, host."""
        out: dict[str, str] = {}
        status = self._running_status()
        if status is not None:
            for source, key in (("docker", DOCKER_IP_LABEL), ("mesos", MESOS_IP_LABEL)):
                value = _first(status.labels, key)
                if value:
                    out[source] = value
            for ni in status.container_status.network_infos:
                ip = ni.ip_addresses[0].ip_address if ni.ip_addresses else ni.ip_address
                if ip:
                    out["netinfo"] = ip
                    break
        if agent:
            out["host"] = agent
        return out

    def ip(self, order: Iterable[str], agent: str = "") -> str:
        """First candidate address following ``order``; the agent address otherwise."""
        candidates = self.ip_candidates(agent)
        for source in order:
            if candidates.get(source):
                return candidates[source]
        return agent


class Framework(_Model):
    id: str = ""
    name: str = ""
    tasks: list[Task] = []


class Slave(_Model):
    id: str
    pid: str
    hostname: str = ""

    @property
    def host(self) -> str:
        return split_pid(self.pid)[0]

    @property
    def port(self) -> str:
        return split_pid(self.pid)[1]


class State(_Model):
    leader: str = ""
    slaves: list[Slave] = []
    frameworks: list[Framework] = []

    def running_tasks(self) -> Iterator[Task]:
        for fw in self.frameworks:
            for t in fw.tasks:
                if t.state == TASK_RUNNING:
                    yield t


@dataclass(frozen=True)
class Master:
    ip: str
    port: int
    port_string: str
    is_leader: bool = False


@dataclass(frozen=True)
class Snapshot:
    """One observation of the cluster, consumed by a single reconciliation cycle."""

    state: State
    masters: tuple[Master, ...] = ()

    @property
    def leader(self) -> Master | None:
        for m in self.masters:
            if m.is_leader:
                return m
        return None
