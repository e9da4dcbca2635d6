from __future__ import annotations

from fastapi import FastAPI, HTTPException

from apim.api.routers import environments, organizations
from apim.infra.audit import AuditMiddleware
from apim.infra.db import check_db_ready
from apim.infra.logging import configure_logging

configure_logging()

app = FastAPI(
    title="apim-console",
    description="Management console for organizations, environments and identity provider activations.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(organizations.router, prefix="/api/organizations", tags=["organizations"])
app.include_router(
    environments.router,
    prefix="/api/organizations/{organization_id}/environments",
    tags=["environments"],
)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    checks = {"db": "ok" if db_ok else "fail"}
    if not db_ok:
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
