from __future__ import annotations

import os
from dataclasses import dataclass


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: str = "") -> tuple[str, ...]:
    raw = os.getenv(name, default)
    return tuple(x.strip() for x in raw.split(",") if x.strip())


@dataclass(frozen=True)
class Settings:
    # Core
    db_path: str = os.getenv("CSR_DB_PATH", "csr.db")
    log_level: str = os.getenv("CSR_LOG_LEVEL", "INFO")
    refresh_s: int = _env_int("CSR_REFRESH_S", 30)
    http_timeout_s: int = _env_int("CSR_HTTP_TIMEOUT_S", 10)

    # Control plane
    mesos_masters: tuple[str, ...] = _env_list("CSR_MESOS_MASTERS", "127.0.0.1:5050")

    # Registry
    registry_port: int = _env_int("CSR_REGISTRY_PORT", 8500)
    registry_scheme: str = os.getenv("CSR_REGISTRY_SCHEME", "http")
    registry_token: str | None = os.getenv("CSR_REGISTRY_TOKEN")

    # Naming and tagging
    service_id_prefix: str = os.getenv("CSR_SERVICE_ID_PREFIX", "mesos-consul")
    service_name: str = os.getenv("CSR_SERVICE_NAME", "mesos")
    service_tags: tuple[str, ...] = _env_list("CSR_SERVICE_TAGS")
    separator: str = os.getenv("CSR_SEPARATOR", "-")
    # pattern:tag1,tag2;pattern2:tag3
    task_tags: str = os.getenv("CSR_TASK_TAGS", "")
    ip_order: tuple[str, ...] = _env_list("CSR_IP_ORDER", "docker,mesos,host")

    # Task privilege
    whitelist: tuple[str, ...] = _env_list("CSR_WHITELIST")
    blacklist: tuple[str, ...] = _env_list("CSR_BLACKLIST")
    # Tasks carrying this label belong to another registrar.
    migration_label: str = os.getenv("CSR_MIGRATION_LABEL", "consul")

    # API
    admin_user: str = os.getenv("CSR_ADMIN_USER", "admin")
    admin_password: str | None = os.getenv("CSR_ADMIN_PASSWORD")


settings = Settings()
