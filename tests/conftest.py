import sys

import pytest

# Ensure project root is importable (so `import csr` and `import main` work without installing)
import os as _os
_project_root = _os.path.dirname(_os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from csr import db
from factories import FakeRegistry
from csr.settings import Settings


@pytest.fixture(autouse=True)
def event_db(tmp_path, monkeypatch):
    """Point the event log at an isolated sqlite file for each test."""
    monkeypatch.setattr(db, "settings", Settings(db_path=str(tmp_path / "events.db"), log_level="DEBUG"))
    db.init_db()
    return db


@pytest.fixture
def cfg():
    return Settings(
        db_path="unused.db",
        service_id_prefix="mesos-consul",
        service_name="mesos",
        service_tags=(),
        separator="-",
        task_tags="",
        ip_order=("docker", "mesos", "host"),
        whitelist=(),
        blacklist=(),
        migration_label="consul",
        mesos_masters=("10.0.0.1:5050",),
        registry_port=8500,
        registry_scheme="http",
        registry_token=None,
    )


@pytest.fixture
def registry():
    return FakeRegistry()
