from __future__ import annotations

from collections import defaultdict
from dataclasses import asdict, dataclass, field
from threading import Lock
from typing import Any

from .db import utc_now


@dataclass
class CycleReport:
    started_at: str = field(default_factory=utc_now)
    finished_at: str | None = None
    hosts: int = 0
    tasks: int = 0
    skipped: int = 0
    registered: int = 0
    confirmed: int = 0
    replaced: int = 0
    deregistered: int = 0
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class RuntimeState:
    """In-memory state shared by the reconcile loop and the API."""

    def __init__(self) -> None:
        self.lock = Lock()
        self.last_report: CycleReport | None = None
        self.agents: dict[str, str] = {}  # node id -> address, from the last cycle
        self._entry_locks: dict[str, Lock] = defaultdict(Lock)

    def entry_lock(self, entry_id: str) -> Lock:
        """Lock serializing registry mutations for one entry id.

        Locks live for one cycle; `finish_cycle` drops them.
        """
        with self.lock:
            return self._entry_locks[entry_id]

    def finish_cycle(self, report: CycleReport, agents: dict[str, str]) -> None:
        with self.lock:
            report.finished_at = utc_now()
            self.last_report = report
            self.agents = dict(agents)
            self._entry_locks.clear()

    def get_report(self) -> CycleReport | None:
        with self.lock:
            return self.last_report

    def get_agents(self) -> dict[str, str]:
        with self.lock:
            return dict(self.agents)
