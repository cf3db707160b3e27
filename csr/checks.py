from __future__ import annotations

from dataclasses import dataclass

from .registry import Check
from .state import Task

DEFAULT_INTERVAL = "10s"

_CHECK_LABELS = {
    "check_http": "http",
    "check_tcp": "tcp",
    "check_script": "script",
    "check_ttl": "ttl",
    "check_interval": "interval",
    "check_timeout": "timeout",
}


@dataclass(frozen=True)
class CheckVar:
    host: str
    port: str = ""


def _interpolate(template: str, data: CheckVar) -> str:
    return template.replace("{host}", data.host).replace("{port}", data.port)


def build_check(task: Task, data: CheckVar) -> Check | None:
    """Build a health check from the task's ``check_*`` labels.

    ``{host}`` and ``{port}`` in label values are replaced from ``data``.
    Returns None when the task declares no check.
    """
    fields: dict[str, str] = {}
    for label in task.labels:
        attr = _CHECK_LABELS.get(label.key.lower())
        if attr and attr not in fields:
            fields[attr] = _interpolate(label.value, data)

    if not any(k in fields for k in ("http", "tcp", "script", "ttl")):
        return None
    fields.setdefault("interval", DEFAULT_INTERVAL)
    return Check(**fields)
