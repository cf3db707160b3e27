from __future__ import annotations

import httpx

from . import db
from .naming import split_pid, to_ip, to_port
from .settings import Settings, settings
from .state import Master, Snapshot, State


class NoReachableMaster(Exception):
    pass


class MesosSource:
    """Fetches cluster snapshots from the configured control-plane nodes."""

    def __init__(self, cfg: Settings = settings, transport: httpx.BaseTransport | None = None):
        self.cfg = cfg
        self._client = httpx.Client(timeout=cfg.http_timeout_s, follow_redirects=True, transport=transport)

    def close(self) -> None:
        self._client.close()

    def _fetch_state(self) -> State:
        last_error: Exception | None = None
        for master in self.cfg.mesos_masters:
            try:
                resp = self._client.get(f"http://{master}/master/state")
                resp.raise_for_status()
                return State.model_validate(resp.json())
            except httpx.HTTPError as e:
                db.log_event("WARN", f"Master {master} unavailable: {type(e).__name__}: {e}")
                last_error = e
        raise NoReachableMaster(f"No reachable master in {list(self.cfg.mesos_masters)}") from last_error

    def masters(self, state: State) -> tuple[Master, ...]:
        leader_host, leader_port = split_pid(state.leader) if state.leader else ("", "")
        leader = (to_ip(leader_host), leader_port) if leader_host else None
        out: list[Master] = []
        for addr in self.cfg.mesos_masters:
            host, _, port = addr.rpartition(":")
            if not host:
                host, port = addr, "5050"
            ip = to_ip(host)
            out.append(Master(ip=ip, port=to_port(port), port_string=port, is_leader=(ip, port) == leader))
        if leader and not any(m.is_leader for m in out):
            out.append(Master(ip=leader[0], port=to_port(leader[1]), port_string=leader[1], is_leader=True))
        return tuple(out)

    def snapshot(self) -> Snapshot:
        state = self._fetch_state()
        return Snapshot(state=state, masters=self.masters(state))
