from __future__ import annotations

import logging
from typing import Iterable

from vpsdeck.schemas.preflight import HostFacts, PlacementPlan, PortAssignment, ProxyKind
from vpsdeck.services.proxy_config import render_proxy_config


logger = logging.getLogger(__name__)

# Assignment order matters only for the in-plan collision check
DEFAULT_PORTS: dict[str, int] = {
    "postgres": 5432,
    "n8n": 5678,
    "ntfy": 8080,
    "fetcher": 3001,
}

PROBE_WINDOW = 100
FALLBACK_OFFSET = 1000


def find_safe_port(preferred: int, used: Iterable[int]) -> int:
    """Return ``preferred`` or the first free port in the next 99.

    If the whole window is taken, ``preferred + 1000`` is returned without
    checking it.
    """
    taken = set(used)
    if preferred not in taken:
        return preferred
    for candidate in range(preferred + 1, preferred + PROBE_WINDOW):
        if candidate not in taken:
            return candidate
    return preferred + FALLBACK_OFFSET


def assign_ports(used: Iterable[int]) -> PortAssignment:
    taken = set(used)
    assigned: dict[str, int] = {}
    for service, preferred in DEFAULT_PORTS.items():
        port = find_safe_port(preferred, taken)
        assigned[service] = port
        taken.add(port)
    return PortAssignment(**assigned)


def collect_warnings(facts: HostFacts) -> list[str]:
    used = facts.used_ports
    warnings: list[str] = []
    if 80 in used:
        warnings.append("Port 80 is in use - will bind to localhost only")
    if 443 in used:
        warnings.append("Port 443 is in use - will bind to localhost only")
    if facts.existing_services.n8n:
        warnings.append("n8n already exists - will use different container name")
    if facts.existing_services.postgres:
        warnings.append("Postgres already exists - consider reusing")
    return warnings


def build_plan(facts: HostFacts) -> PlacementPlan:
    """Derive the safe plan from one scan. Pure; recomputed on every scan."""
    ports = assign_ports(facts.used_ports)
    proxy_kind = facts.reverse_proxy.type
    plan = PlacementPlan(
        ports_to_use=ports,
        reuse_existing_proxy=proxy_kind != ProxyKind.NONE,
        proxy_config_snippet=render_proxy_config(proxy_kind, ports),
        warnings=collect_warnings(facts),
        ready_to_deploy=facts.docker.installed,
    )
    logger.info(
        "Placement plan: %s ready=%s warnings=%d",
        ports.model_dump(),
        plan.ready_to_deploy,
        len(plan.warnings),
    )
    return plan
