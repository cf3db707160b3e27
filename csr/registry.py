from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from threading import Lock
from typing import Any

import httpx

from . import db
from .settings import Settings, settings


@dataclass(frozen=True)
class Check:
    http: str = ""
    tcp: str = ""
    script: str = ""
    ttl: str = ""
    interval: str = ""
    timeout: str = ""

    def to_payload(self) -> dict[str, str]:
        keys = {
            "HTTP": self.http,
            "TCP": self.tcp,
            "Script": self.script,
            "TTL": self.ttl,
            "Interval": self.interval,
            "Timeout": self.timeout,
        }
        return {k: v for k, v in keys.items() if v}


@dataclass(frozen=True)
class Service:
    """A registry entry the cluster says should exist."""

    id: str
    name: str
    address: str
    agent: str
    tags: list[str] = field(default_factory=list)
    port: int = 0
    check: Check | None = None

    def to_payload(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "ID": self.id,
            "Name": self.name,
            "Tags": list(self.tags),
            "Address": self.address,
        }
        if self.port:
            body["Port"] = self.port
        if self.check is not None:
            body["Check"] = self.check.to_payload()
        return body


@dataclass
class CachedEntry:
    id: str
    tags: list[str]
    agent: str = ""
    # set once the entry is registered or confirmed during the current cycle
    seen: bool = False


class Registry(ABC):
    """What the reconciler needs from a service registry client."""

    @abstractmethod
    def cache_load(self, seed_address: str, prefix: str) -> None: ...

    @abstractmethod
    def cache_lookup(self, entry_id: str) -> CachedEntry | None: ...

    @abstractmethod
    def cache_mark(self, entry_id: str) -> None: ...

    @abstractmethod
    def cache_delete(self, entry_id: str) -> None: ...

    @abstractmethod
    def cache_reset_marks(self) -> None:
        """Forget which entries were seen; called when a cycle starts."""

    @abstractmethod
    def register(self, service: Service) -> None: ...

    @abstractmethod
    def deregister(self) -> list[str]:
        """Remove cached entries not seen this cycle; returns their ids."""


class ConsulRegistry(Registry):
    """Registry client for Consul agents, with a local cache of known entries.

    Entries are registered on the agent running next to the service
    (``Service.agent``); the cache remembers which agent owns each id so stale
    entries can be removed from the right place.
    """

    def __init__(self, cfg: Settings = settings, transport: httpx.BaseTransport | None = None):
        self.cfg = cfg
        self._lock = Lock()
        self._cache: dict[str, CachedEntry] = {}
        headers = {"X-Consul-Token": cfg.registry_token} if cfg.registry_token else {}
        self._client = httpx.Client(timeout=cfg.http_timeout_s, headers=headers, transport=transport)

    def close(self) -> None:
        self._client.close()

    def _url(self, agent: str, path: str) -> str:
        return f"{self.cfg.registry_scheme}://{agent}:{self.cfg.registry_port}{path}"

    def _get(self, agent: str, path: str) -> Any:
        resp = self._client.get(self._url(agent, path))
        resp.raise_for_status()
        return resp.json()

    def _put(self, agent: str, path: str, payload: dict[str, Any] | None = None) -> None:
        resp = self._client.put(self._url(agent, path), json=payload)
        resp.raise_for_status()

    def cache_load(self, seed_address: str, prefix: str) -> None:
        db.log_event("DEBUG", f"Populating cache from registry via {seed_address}")
        loaded: dict[str, CachedEntry] = {}
        for node in self._get(seed_address, "/v1/catalog/nodes"):
            agent = node.get("Address", "")
            if not agent:
                continue
            try:
                services = self._get(agent, "/v1/agent/services")
            except httpx.HTTPError as e:
                db.log_event("WARN", f"Skipping registry agent {agent}: {type(e).__name__}: {e}")
                continue
            for sid, svc in services.items():
                if sid.startswith(prefix):
                    loaded[sid] = CachedEntry(id=sid, tags=list(svc.get("Tags") or []), agent=agent)
        with self._lock:
            self._cache.update(loaded)
        db.log_event("INFO", f"Loaded {len(loaded)} cached entries with prefix {prefix!r}")

    def cache_lookup(self, entry_id: str) -> CachedEntry | None:
        with self._lock:
            return self._cache.get(entry_id)

    def cache_mark(self, entry_id: str) -> None:
        with self._lock:
            entry = self._cache.get(entry_id)
            if entry is not None:
                entry.seen = True

    def cache_delete(self, entry_id: str) -> None:
        with self._lock:
            self._cache.pop(entry_id, None)

    def cache_reset_marks(self) -> None:
        with self._lock:
            for entry in self._cache.values():
                entry.seen = False

    def register(self, service: Service) -> None:
        self._put(service.agent, "/v1/agent/service/register", service.to_payload())
        with self._lock:
            self._cache[service.id] = CachedEntry(id=service.id, tags=list(service.tags), agent=service.agent, seen=True)
        db.log_event("INFO", f"Registered on {service.agent}", service_name=service.name, entry_id=service.id)

    def deregister(self) -> list[str]:
        with self._lock:
            stale = [e for e in self._cache.values() if not e.seen]
        removed: list[str] = []
        for entry in stale:
            self._put(entry.agent, f"/v1/agent/service/deregister/{entry.id}")
            with self._lock:
                self._cache.pop(entry.id, None)
            removed.append(entry.id)
            db.log_event("INFO", f"Deregistered from {entry.agent}", entry_id=entry.id)
        self.cache_reset_marks()
        return removed

