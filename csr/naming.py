from __future__ import annotations

import ipaddress
import re
import socket

from . import db

# Anything outside letters, digits, '-' and '_' is replaced; clean_name then drops '_'.
_INVALID_RE = re.compile(r"[^A-Za-z0-9_-]")


def clean_name(name: str, separator: str = "-") -> str:
    """Map an arbitrary label or task id onto the registry's identifier alphabet.

    Characters outside ``[A-Za-z0-9_-]`` become ``separator``, underscores are
    dropped and the result is lower-cased, so ``clean_name`` is idempotent.
    """
    if _INVALID_RE.search(separator):
        raise ValueError(f"Invalid separator {separator!r}: use letters, digits, '-' or '_'.")
    s = _INVALID_RE.sub(separator, name)
    return s.replace("_", "").lower()


def to_ip(host: str) -> str:
    """Return ``host`` as an IP address, resolving hostnames through DNS."""
    try:
        ipaddress.ip_address(host)
        return host
    except ValueError:
        pass
    try:
        return socket.gethostbyname(host)
    except OSError as e:
        db.log_event("WARN", f"Unable to resolve {host!r}: {e}")
        return host


def to_port(raw: str | int) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        db.log_event("WARN", f"Invalid port number {raw!r}")
        return 0


def split_pid(pid: str) -> tuple[str, str]:
    """``slave(1)@10.0.0.5:5051`` -> ``("10.0.0.5", "5051")``."""
    addr = pid.rsplit("@", 1)[-1]
    host, _, port = addr.rpartition(":")
    if not host:
        return addr, ""
    return host, port


def host_id(prefix: str, service_name: str, *parts: str) -> str:
    return ":".join([prefix, service_name, *parts])


def task_id(prefix: str, agent: str, task_name: str, address: str) -> str:
    return f"{prefix}:{agent}:{task_name}:{address}"


def port_id(prefix: str, agent: str, service_name: str, address: str, port: int) -> str:
    """Id of a port-bearing entry: the primary port under the task name, a
    named port under its own ``task-portname`` service name."""
    return f"{prefix}:{agent}:{service_name}:{address}:{port}"
