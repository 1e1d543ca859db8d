from __future__ import annotations

from dataclasses import asdict
from threading import Lock
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query

from lsc import db
from lsc.api_models import AppliedModel, DeployRequest, DeployResponse
from lsc.orchestrator import Orchestrator
from lsc.settings import settings
from lsc.stack import build_stack, make_orchestrator, select

app = FastAPI(title="Log Stack Converger")

# One deploy at a time: services converge strictly in sequence.
_deploy_lock = Lock()


def get_orchestrator() -> Orchestrator:
    return make_orchestrator(settings)


@app.on_event("startup")
def startup() -> None:
    db.init_db()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/services", response_model=list[AppliedModel])
def services() -> list[dict[str, Any]]:
    return [asdict(r) for r in db.list_applied()]


@app.get("/services/{name}", response_model=AppliedModel)
def service(name: str) -> dict[str, Any]:
    row = db.get_applied(name)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Service '{name}' has not been applied")
    return asdict(row)


@app.get("/events")
def events(limit: int = Query(100, ge=1, le=1000)) -> list[dict[str, Any]]:
    return db.latest_events(limit)


@app.post("/deploy", response_model=DeployResponse)
def deploy(req: DeployRequest, orch: Orchestrator = Depends(get_orchestrator)) -> dict[str, Any]:
    try:
        plan = select(build_stack(settings), req.only)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not _deploy_lock.acquire(blocking=False):
        raise HTTPException(status_code=409, detail="A deploy is already running")
    try:
        report = orch.deploy(plan)
    finally:
        _deploy_lock.release()
    return report.to_dict()
