from __future__ import annotations

import secrets

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from csr import db
from csr.api_models import CycleReportOut, EventOut, StatusOut
from csr.reconciler import Reconciler
from csr.registry import ConsulRegistry
from csr.runtime import RuntimeState
from csr.settings import settings
from csr.source import MesosSource, NoReachableMaster

app = FastAPI(title="Cluster Service Registrar")
security = HTTPBasic()

runtime = RuntimeState()
reconciler = Reconciler(runtime, ConsulRegistry(settings), MesosSource(settings), settings)


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    password = settings.admin_password
    if not password or not (
        secrets.compare_digest(credentials.username, settings.admin_user)
        and secrets.compare_digest(credentials.password, password)
    ):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


@app.on_event("startup")
def startup() -> None:
    db.init_db()
    reconciler.start()


@app.on_event("shutdown")
def shutdown() -> None:
    reconciler.stop()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/status", response_model=StatusOut)
def status() -> StatusOut:
    report = runtime.get_report()
    return StatusOut(
        running=reconciler.is_running(),
        last_cycle=CycleReportOut(**report.to_dict()) if report else None,
    )


@app.get("/agents")
def agents() -> dict[str, str]:
    return runtime.get_agents()


@app.get("/events", response_model=list[EventOut])
def events(limit: int = Query(50, ge=1, le=1000)) -> list[dict]:
    return db.latest_events(limit)


@app.post("/sync", response_model=CycleReportOut)
def sync(username: str = Depends(get_current_username)) -> CycleReportOut:
    db.log_event("INFO", f"Manual sync requested by {username}")
    try:
        report = reconciler.run_cycle()
    except (httpx.HTTPError, NoReachableMaster) as e:
        db.log_event("ERROR", f"Manual sync failed: {type(e).__name__}: {e}")
        raise HTTPException(status_code=502, detail=f"{type(e).__name__}: {e}")
    return CycleReportOut(**report.to_dict())
