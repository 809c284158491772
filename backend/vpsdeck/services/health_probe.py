"""Service health checks run from inside the VPS.

Each check is one shell command ending in ``|| echo 'failed'`` and one
textual predicate on its output. The predicates are deliberately uneven:
fetcher and postgres need a positive token, while n8n and ntfy count
anything that is not the ``failed`` sentinel as healthy.
"""

from __future__ import annotations

import logging

from vpsdeck.schemas.deployment import ServiceStatus, ServiceStatuses
from vpsdeck.schemas.preflight import PortAssignment
from vpsdeck.services.bundle import DB_USER, POSTGRES_CONTAINER
from vpsdeck.services.ssh_client import SSHSession


logger = logging.getLogger(__name__)

FAILED = "failed"


def fetcher_is_healthy(body: str) -> bool:
    return "ok" in body


def ntfy_is_healthy(body: str) -> bool:
    # Loose: an empty or unparsed body still counts as healthy
    return "healthy" in body or FAILED not in body


def n8n_is_healthy(body: str) -> bool:
    # Loose: only the curl fallback sentinel marks it down
    return FAILED not in body


def postgres_is_healthy(body: str) -> bool:
    return "accepting connections" in body


def fetcher_command(port: int) -> str:
    return f"curl -s http://127.0.0.1:{port}/health 2>/dev/null || echo 'failed'"


def ntfy_command(port: int) -> str:
    return f"curl -s http://127.0.0.1:{port}/v1/health 2>/dev/null || echo 'failed'"


def n8n_command(port: int) -> str:
    return f"curl -s http://127.0.0.1:{port}/healthz 2>/dev/null || echo 'failed'"


def postgres_command() -> str:
    return f"docker exec {POSTGRES_CONTAINER} pg_isready -U {DB_USER} 2>/dev/null || echo 'failed'"


def _status(healthy: bool, url: str | None = None) -> ServiceStatus:
    return ServiceStatus(running=healthy, healthy=healthy, url=url)


def probe_services(session: SSHSession, ports: PortAssignment) -> ServiceStatuses:
    """Check all four managed services over an open session."""
    fetcher_ok = fetcher_is_healthy(session.execute(fetcher_command(ports.fetcher)))
    ntfy_ok = ntfy_is_healthy(session.execute(ntfy_command(ports.ntfy)))
    n8n_ok = n8n_is_healthy(session.execute(n8n_command(ports.n8n)))
    postgres_ok = postgres_is_healthy(session.execute(postgres_command()))

    logger.info(
        "Service health on %s: postgres=%s n8n=%s ntfy=%s fetcher=%s",
        session.host,
        postgres_ok,
        n8n_ok,
        ntfy_ok,
        fetcher_ok,
    )

    return ServiceStatuses(
        postgres=_status(postgres_ok),
        n8n=_status(n8n_ok, f"http://127.0.0.1:{ports.n8n}"),
        ntfy=_status(ntfy_ok, f"http://127.0.0.1:{ports.ntfy}"),
        fetcher=_status(fetcher_ok, f"http://127.0.0.1:{ports.fetcher}"),
    )
