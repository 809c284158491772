from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class OSInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    distro: str = ""
    kernel: str = ""
    hostname: str = ""


class ListeningPort(BaseModel):
    model_config = ConfigDict(frozen=True)

    port: int
    protocol: str = "tcp"
    process: str = "unknown"
    state: str = "LISTEN"


class ContainerInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = ""
    image: str = ""
    status: str = ""
    ports: str = ""


class DockerInventory(BaseModel):
    model_config = ConfigDict(frozen=True)

    installed: bool = False
    version: str | None = None
    compose_version: str | None = None
    containers: tuple[ContainerInfo, ...] = ()
    networks: tuple[str, ...] = ()
    volumes: tuple[str, ...] = ()


class ProxyKind(str, Enum):
    NONE = "none"
    NGINX = "nginx"
    CADDY = "caddy"
    TRAEFIK = "traefik"


class ReverseProxyInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    detected: bool = False
    type: ProxyKind = ProxyKind.NONE
    config_path: str | None = None


class ExistingServices(BaseModel):
    model_config = ConfigDict(frozen=True)

    n8n: bool = False
    postgres: bool = False
    ntfy: bool = False
    playwright: bool = False


class ResourceSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Kept as the human-readable strings df/free print (e.g. "12G", "1.5Gi")
    disk_free: str = "unknown"
    disk_total: str = "unknown"
    memory_free: str = "unknown"
    memory_total: str = "unknown"


class HostFacts(BaseModel):
    """Snapshot of one preflight scan. Replaced wholesale by the next scan."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    os_info: OSInfo = Field(default_factory=OSInfo)
    ports: tuple[ListeningPort, ...] = ()
    docker: DockerInventory = Field(default_factory=DockerInventory)
    reverse_proxy: ReverseProxyInfo = Field(default_factory=ReverseProxyInfo)
    existing_services: ExistingServices = Field(default_factory=ExistingServices)
    resources: ResourceSnapshot = Field(default_factory=ResourceSnapshot)

    @property
    def used_ports(self) -> set[int]:
        return {entry.port for entry in self.ports}


class PortAssignment(BaseModel):
    postgres: int
    n8n: int
    ntfy: int
    fetcher: int


class PlacementPlan(BaseModel):
    ports_to_use: PortAssignment
    reuse_existing_proxy: bool = False
    proxy_config_snippet: str | None = None
    warnings: list[str] = Field(default_factory=list)
    ready_to_deploy: bool = False


class PreflightResult(BaseModel):
    facts: HostFacts
    safe_plan: PlacementPlan


class ProxyConfigResponse(BaseModel):
    proxy_type: ProxyKind
    config_snippet: str | None = None
