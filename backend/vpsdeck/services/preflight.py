"""Read-only reconnaissance of the VPS.

Every probe is a single shell command whose failure is folded into its own
output (``|| echo 'not installed'`` and friends), so a scan always completes
unless the SSH channel itself breaks.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone

from vpsdeck.schemas.preflight import (
    ContainerInfo,
    DockerInventory,
    ExistingServices,
    HostFacts,
    ListeningPort,
    OSInfo,
    ProxyKind,
    ReverseProxyInfo,
    ResourceSnapshot,
)
from vpsdeck.services.ssh_client import SSHSession


logger = logging.getLogger(__name__)

# sshd allows 10 channels per connection by default
MAX_CONCURRENT_PROBES = 8

NOT_INSTALLED = "not installed"

CMD_DISTRO = "cat /etc/os-release | grep PRETTY_NAME | cut -d= -f2 | tr -d '\"'"
CMD_KERNEL = "uname -r"
CMD_HOSTNAME = "hostname"
CMD_PORTS = "ss -tlnp 2>/dev/null || netstat -tlnp 2>/dev/null"
CMD_DOCKER_VERSION = "docker --version 2>/dev/null || echo 'not installed'"
CMD_COMPOSE_VERSION = (
    "docker compose version 2>/dev/null || docker-compose --version 2>/dev/null || echo 'not installed'"
)
CMD_CONTAINERS = 'docker ps -a --format "{{.Names}}|{{.Image}}|{{.Status}}|{{.Ports}}"'
CMD_NETWORKS = "docker network ls --format '{{.Name}}'"
CMD_VOLUMES = "docker volume ls --format '{{.Name}}'"
CMD_NGINX = (
    "which nginx 2>/dev/null && nginx -t 2>&1 || "
    "docker ps --filter name=nginx --format '{{.Names}}' 2>/dev/null"
)
CMD_CADDY = "which caddy 2>/dev/null || docker ps --filter name=caddy --format '{{.Names}}' 2>/dev/null"
CMD_TRAEFIK = "docker ps --filter name=traefik --format '{{.Names}}' 2>/dev/null"
CMD_DISK = "df -h / | tail -1 | awk '{print $4\"|\"$2}'"
CMD_MEMORY = "free -h | grep Mem | awk '{print $4\"|\"$2}'"

PROXY_CONFIG_PATHS: dict[ProxyKind, str | None] = {
    ProxyKind.NGINX: "/etc/nginx/sites-available/",
    ProxyKind.CADDY: "/etc/caddy/Caddyfile",
    ProxyKind.TRAEFIK: None,
}

# Container-name fragments identifying an existing instance of each service
SERVICE_NAME_FRAGMENTS: dict[str, tuple[str, ...]] = {
    "n8n": ("n8n",),
    "postgres": ("postgres", "postgresql"),
    "ntfy": ("ntfy",),
    "playwright": ("playwright", "fetcher"),
}

PORT_SUFFIX = re.compile(r":(\d+)$")
SS_PROCESS = re.compile(r'"([^"]+)"')


def _transport(token: str) -> str | None:
    lowered = token.lower()
    if lowered.startswith(("tcp", "udp")):
        return lowered
    return None


def _process_name(token: str) -> str:
    # ss: users:(("sshd",pid=812,fd=3))   netstat: 812/sshd
    match = SS_PROCESS.search(token)
    if match:
        return match.group(1)
    if "/" in token:
        name = token.split("/", 1)[1]
        if name:
            return name
    return "unknown"


def parse_listening_ports(raw: str) -> list[ListeningPort]:
    """Parse ``ss -tlnp`` or ``netstat -tlnp`` output.

    The header line is dropped; lines that do not look like a socket entry are
    skipped rather than failing the scan.
    """
    ports: list[ListeningPort] = []
    for line in raw.strip().splitlines()[1:]:
        parts = line.split()
        if len(parts) < 4:
            continue

        match = PORT_SUFFIX.search(parts[3])
        if not match and len(parts) > 4:
            match = PORT_SUFFIX.search(parts[4])
        if not match:
            continue

        protocol = _transport(parts[0])
        if protocol:
            # netstat: Proto Recv-Q Send-Q Local Foreign State PID/Program
            state = parts[5] if len(parts) > 5 and parts[5].isalpha() else "LISTEN"
        else:
            # ss: State Recv-Q Send-Q Local:Port Peer:Port Process
            protocol = "tcp"
            state = parts[0] if parts[0].isalpha() else "LISTEN"

        process = _process_name(parts[-1]) if len(parts) > 5 else "unknown"

        ports.append(
            ListeningPort(
                port=int(match.group(1)),
                protocol=protocol,
                process=process,
                state=state,
            )
        )
    return ports


def parse_containers(raw: str) -> list[ContainerInfo]:
    containers: list[ContainerInfo] = []
    for line in raw.strip().splitlines():
        if not line.strip():
            continue
        fields = line.split("|")
        fields += [""] * (4 - len(fields))
        name, image, status, ports = fields[:4]
        containers.append(ContainerInfo(name=name, image=image, status=status, ports=ports))
    return containers


def parse_names(raw: str) -> list[str]:
    return [line.strip() for line in raw.strip().splitlines() if line.strip()]


def parse_free_total(raw: str) -> tuple[str, str]:
    free, _, total = raw.strip().partition("|")
    return free.strip() or "unknown", total.strip() or "unknown"


def detect_reverse_proxy(nginx_output: str, caddy_output: str, traefik_output: str) -> ReverseProxyInfo:
    """First positive probe wins, in nginx, caddy, traefik order."""
    for kind, output in (
        (ProxyKind.NGINX, nginx_output),
        (ProxyKind.CADDY, caddy_output),
        (ProxyKind.TRAEFIK, traefik_output),
    ):
        if output.strip():
            return ReverseProxyInfo(detected=True, type=kind, config_path=PROXY_CONFIG_PATHS[kind])
    return ReverseProxyInfo()


def detect_existing_services(containers: list[ContainerInfo]) -> ExistingServices:
    names = [container.name.lower() for container in containers]
    flags = {
        service: any(fragment in name for name in names for fragment in fragments)
        for service, fragments in SERVICE_NAME_FRAGMENTS.items()
    }
    return ExistingServices(**flags)


async def _gather_all(*probes):
    """Await every probe, then raise the first failure.

    Probes run in worker threads that cannot be cancelled, so the session must
    stay open until all of them have returned.
    """
    results = await asyncio.gather(*probes, return_exceptions=True)
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results


async def collect_host_facts(session: SSHSession) -> HostFacts:
    """Run the preflight probe battery against an open session."""
    semaphore = asyncio.Semaphore(MAX_CONCURRENT_PROBES)

    async def run(command: str) -> str:
        async with semaphore:
            return await asyncio.to_thread(session.execute, command)

    (
        distro,
        kernel,
        hostname,
        ports_raw,
        docker_version,
        compose_version,
        nginx_check,
        caddy_check,
        traefik_check,
        disk_raw,
        memory_raw,
    ) = await _gather_all(
        run(CMD_DISTRO),
        run(CMD_KERNEL),
        run(CMD_HOSTNAME),
        run(CMD_PORTS),
        run(CMD_DOCKER_VERSION),
        run(CMD_COMPOSE_VERSION),
        run(CMD_NGINX),
        run(CMD_CADDY),
        run(CMD_TRAEFIK),
        run(CMD_DISK),
        run(CMD_MEMORY),
    )

    docker_installed = NOT_INSTALLED not in docker_version
    containers: list[ContainerInfo] = []
    networks: list[str] = []
    volumes: list[str] = []
    if docker_installed:
        containers_raw, networks_raw, volumes_raw = await _gather_all(
            run(CMD_CONTAINERS),
            run(CMD_NETWORKS),
            run(CMD_VOLUMES),
        )
        containers = parse_containers(containers_raw)
        networks = parse_names(networks_raw)
        volumes = parse_names(volumes_raw)
    else:
        logger.info("Docker not installed on %s, skipping container inventory", session.host)

    disk_free, disk_total = parse_free_total(disk_raw)
    memory_free, memory_total = parse_free_total(memory_raw)
    reverse_proxy = detect_reverse_proxy(nginx_check, caddy_check, traefik_check)
    ports = parse_listening_ports(ports_raw)

    logger.info(
        "Preflight scan of %s: %d listening ports, docker=%s, %d containers, proxy=%s",
        session.host,
        len(ports),
        docker_installed,
        len(containers),
        reverse_proxy.type.value,
    )

    return HostFacts(
        timestamp=datetime.now(timezone.utc).isoformat(),
        os_info=OSInfo(distro=distro.strip(), kernel=kernel.strip(), hostname=hostname.strip()),
        ports=ports,
        docker=DockerInventory(
            installed=docker_installed,
            version=docker_version.strip() if docker_installed else None,
            compose_version=compose_version.strip() if NOT_INSTALLED not in compose_version else None,
            containers=containers,
            networks=networks,
            volumes=volumes,
        ),
        reverse_proxy=reverse_proxy,
        existing_services=detect_existing_services(containers),
        resources=ResourceSnapshot(
            disk_free=disk_free,
            disk_total=disk_total,
            memory_free=memory_free,
            memory_total=memory_total,
        ),
    )
