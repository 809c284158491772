from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vpsdeck.config import ConfigurationError, get_settings, validate_config_on_startup
from vpsdeck.database import init_database
from vpsdeck.routers import audit, health, vps
from vpsdeck.services.ssh_client import SSHConnectionError, SSHExecutionError
from vpsdeck.services.vps import PreconditionError


logger = logging.getLogger(__name__)


settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Validate config and prepare the audit database before serving."""
    validate_config_on_startup(settings)
    init_database(settings.sqlite_db_path)
    yield


app = FastAPI(
    title="VPS Deck API",
    version="0.1.0",
    lifespan=lifespan,
)

cors_origins = [
    origin.strip()
    for origin in settings.cors_allowed_origins.split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-Admin-Key", "X-Forwarded-User", "X-Requested-With"],
)

app.include_router(health.router)
app.include_router(vps.router)
app.include_router(audit.router)


def _error_response(status_code: int, detail: str, exc: Exception, error_type: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "error": str(exc), "error_type": error_type},
    )


@app.exception_handler(PreconditionError)
async def precondition_error_handler(request: Request, exc: PreconditionError):
    return JSONResponse(status_code=400, content={"detail": str(exc), "error_type": "precondition_error"})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Configuration error: {exc}")
    return _error_response(500, "Server configuration incomplete", exc, "configuration_error")


@app.exception_handler(SSHConnectionError)
async def ssh_connection_error_handler(request: Request, exc: SSHConnectionError):
    logger.error(f"SSH connection failed: {exc}")
    return _error_response(500, "Could not connect to VPS", exc, "ssh_connection_error")


@app.exception_handler(SSHExecutionError)
async def ssh_execution_error_handler(request: Request, exc: SSHExecutionError):
    logger.error(f"SSH command failed: {exc}")
    return _error_response(500, "SSH command execution failed", exc, "ssh_execution_error")
