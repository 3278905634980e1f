from __future__ import annotations

import secrets
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from redis.exceptions import RedisError

from trelay import db
from trelay.api_models import CycleReport, ServerDetail, ServerStatus, StatusInfo
from trelay.config import SourceInstance
from trelay.runtime import RelayRuntime, build_runtime, run_headless
from trelay.settings import settings

app = FastAPI(title="Traefik Relay")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Accept", "Authorization", "Content-Type"],
    max_age=300,
)
security = HTTPBasic(auto_error=False)

# Set by startup, or injected beforehand (tests).
RUNTIME: RelayRuntime | None = None
START_BACKGROUND = True


def get_runtime() -> RelayRuntime:
    if RUNTIME is None:
        raise HTTPException(status_code=503, detail="Relay is not initialised")
    return RUNTIME


def require_admin(credentials: Optional[HTTPBasicCredentials] = Depends(security)) -> str:
    if not settings.admin_password:
        return "anonymous"
    if credentials is None or not (
        secrets.compare_digest(credentials.username, settings.admin_user)
        and secrets.compare_digest(credentials.password, settings.admin_password)
    ):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


def _server_or_404(rt: RelayRuntime, name: str) -> SourceInstance:
    server = rt.cfg.find_server(name)
    if server is None:
        raise HTTPException(status_code=404, detail="Server not found")
    return server


@app.on_event("startup")
def startup() -> None:
    global RUNTIME
    if RUNTIME is None:
        RUNTIME = build_runtime()
    if START_BACKGROUND:
        RUNTIME.start(with_status=True)


@app.on_event("shutdown")
def shutdown() -> None:
    if RUNTIME is not None:
        RUNTIME.stop()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "healthy"}


@app.get("/api/v1/status", response_model=StatusInfo)
def get_status(rt: RelayRuntime = Depends(get_runtime)) -> StatusInfo:
    return rt.status.snapshot()


@app.get("/api/v1/servers", response_model=dict[str, ServerStatus])
def get_servers(rt: RelayRuntime = Depends(get_runtime)) -> dict[str, ServerStatus]:
    return rt.status.snapshot().servers


@app.get("/api/v1/servers/{name}", response_model=ServerDetail)
def get_server_detail(name: str, rt: RelayRuntime = Depends(get_runtime)) -> ServerDetail:
    return rt.status.detail(_server_or_404(rt, name))


@app.post("/api/v1/servers/{name}/refresh")
def refresh_server(
    name: str,
    rt: RelayRuntime = Depends(get_runtime),
    username: str = Depends(require_admin),
) -> dict[str, str]:
    st = rt.status.probe(_server_or_404(rt, name))
    db.log_event("INFO", f"Manual refresh by {username}", name)
    if not st.online:
        return {"status": "error", "message": st.error or "offline"}
    return {"status": "success"}


@app.get("/api/v1/config")
def get_config(rt: RelayRuntime = Depends(get_runtime)) -> dict[str, Any]:
    return rt.cfg.public_dict()


@app.put("/api/v1/config")
def update_config(username: str = Depends(require_admin)) -> None:
    # Config is loaded once at startup; changing it means restarting the relay.
    raise HTTPException(status_code=501, detail="Not implemented")


@app.get("/api/v1/redis/keys", response_model=list[str])
def get_redis_keys(rt: RelayRuntime = Depends(get_runtime)) -> list[str]:
    try:
        return rt.store.keys()
    except RedisError as e:
        raise HTTPException(status_code=500, detail=f"Failed to get Redis keys: {e}") from e


@app.post("/api/v1/redis/flush")
def flush_redis(rt: RelayRuntime = Depends(get_runtime), username: str = Depends(require_admin)) -> dict[str, Any]:
    try:
        removed = rt.store.clear_namespace()
    except RedisError as e:
        raise HTTPException(status_code=500, detail=f"Failed to flush Redis: {e}") from e
    db.log_event("WARN", f"Namespace flushed by {username} ({removed} keys)")
    return {"status": "success", "removed": removed}


@app.post("/api/v1/reconcile", response_model=CycleReport)
def reconcile_now(rt: RelayRuntime = Depends(get_runtime), username: str = Depends(require_admin)) -> CycleReport:
    db.log_event("INFO", f"Manual reconciliation requested by {username}")
    return rt.reconciler.run_cycle()


@app.get("/api/v1/events")
def get_events(
    limit: int = Query(100, ge=1, le=1000),
    server: Optional[str] = None,
    rt: RelayRuntime = Depends(get_runtime),
) -> list[dict[str, Any]]:
    return db.latest_events(limit=limit, server_name=server)


if __name__ == "__main__":
    if settings.enable_api:
        import uvicorn

        uvicorn.run(app, host="0.0.0.0", port=settings.api_port)
    else:
        run_headless(build_runtime())
