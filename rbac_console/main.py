from __future__ import annotations

import logging
import os

from fastapi import FastAPI, HTTPException

from rbac_console.api.routers import auth, menus, permissions, roles, users
from rbac_console.infra.audit import AuditMiddleware
from rbac_console.infra.db import check_db_ready

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

app = FastAPI(
    title="rbac-console",
    description="Users, roles, permissions and the permission-filtered navigation menu.",
    version="0.1.0",
)

app.add_middleware(AuditMiddleware)

app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])
app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
app.include_router(users.router, prefix="/api/users", tags=["users"])
app.include_router(menus.navigation_router, prefix="/api/menus", tags=["menus"])
app.include_router(menus.router, prefix="/api/menus", tags=["menus"])


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
