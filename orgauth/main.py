from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from orgauth.api.middleware import AuthFilterChainMiddleware, security_error_response
from orgauth.api.routers import auth, depts, roles, users
from orgauth.domain.errors import SecurityError
from orgauth.infra.db import check_db_ready
from orgauth.infra.redis_state import check_redis_ready
from orgauth.services.online_user_registry import OnlineUserRegistry
from orgauth.services.permission_index_service import permission_index

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    registry = OnlineUserRegistry()
    app.state.online_users = registry
    permission_index.warm()
    logger.info("orgauth started")
    try:
        yield
    finally:
        registry.close()
        logger.info("orgauth stopped")


app = FastAPI(
    title="orgauth",
    description="Department-scoped authorization core for an administrative backend.",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(AuthFilterChainMiddleware)

app.include_router(auth.router, prefix="/api/v1/auth", tags=["auth"])
app.include_router(users.router, prefix="/api/v1/users", tags=["users"])
app.include_router(depts.router, prefix="/api/v1/depts", tags=["depts"])
app.include_router(roles.router, prefix="/api/v1/roles", tags=["roles"])


@app.exception_handler(SecurityError)
async def handle_security_error(request: Request, exc: SecurityError) -> JSONResponse:
    return security_error_response(exc)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/readyz")
def readyz() -> dict[str, object]:
    db_ok = check_db_ready()
    redis_ok = check_redis_ready()
    checks = {
        "db": "ok" if db_ok else "fail",
        "redis": "ok" if redis_ok else "fail",
    }
    if not (db_ok and redis_ok):
        raise HTTPException(
            status_code=503,
            detail={"status": "not_ready", "checks": checks},
        )
    return {"status": "ready", "checks": checks}
