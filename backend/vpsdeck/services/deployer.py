from __future__ import annotations

import logging
import time

from vpsdeck.schemas.deployment import DeploymentOutcome, ServiceStatuses
from vpsdeck.schemas.preflight import PortAssignment
from vpsdeck.services.bundle import (
    COMPOSE_PATH,
    ENV_EXAMPLE_PATH,
    ENV_PATH,
    README_PATH,
    REMOTE_ROOT,
    fetcher_files,
    render_compose,
    render_env_example,
    render_env_file,
    render_readme,
)
from vpsdeck.services.health_probe import probe_services
from vpsdeck.services.ssh_client import SSHSession


logger = logging.getLogger(__name__)


def env_file_exists(session: SSHSession) -> bool:
    output = session.execute(f"test -f {ENV_PATH} && echo 'exists' || echo 'missing'")
    return output.strip() != "missing"


def deploy_stack(
    session: SSHSession,
    ports: PortAssignment,
    *,
    settle_seconds: float = 10.0,
) -> DeploymentOutcome:
    """Upload the service bundle and start it.

    Steps run strictly in order. Any failure stops the run, closes the
    session and reports every service as down, even ones that may already
    have started.
    """
    logs: list[str] = ["Connected to VPS"]

    try:
        logs.append("Creating directory structure...")
        session.execute(f"mkdir -p {REMOTE_ROOT}/fetcher {REMOTE_ROOT}/logs")

        logs.append("Uploading docker-compose.yml...")
        session.upload(render_compose(ports), COMPOSE_PATH)

        logs.append("Uploading .env.example...")
        session.upload(render_env_example(), ENV_EXAMPLE_PATH)

        # Never overwrite existing secrets
        if env_file_exists(session):
            logs.append(".env already exists, keeping existing configuration")
        else:
            logs.append("Creating .env with generated secrets...")
            session.upload(render_env_file(), ENV_PATH)

        logs.append("Uploading fetcher service...")
        for remote_path, content in fetcher_files().items():
            session.upload(content, remote_path)

        logs.append("Creating README...")
        session.upload(render_readme(ports), README_PATH)

        logs.append("Starting Docker Compose stack...")
        logs.append(session.execute(f"cd {REMOTE_ROOT} && docker compose up -d --build 2>&1"))

        logs.append("Waiting for services to start...")
        time.sleep(settle_seconds)

        logs.append("Checking service health...")
        logs.append(
            session.execute(
                f"cd {REMOTE_ROOT} && docker compose ps --format json 2>/dev/null || docker compose ps"
            )
        )

        services = probe_services(session, ports)
    except Exception as exc:  # noqa: BLE001
        logger.error("Deployment to %s failed: %s", session.host, exc)
        session.close()
        logs.append(f"Error: {exc}")
        return DeploymentOutcome(
            success=False,
            message=str(exc),
            logs=logs,
            services=ServiceStatuses.all_down(),
        )

    logger.info("Deployment to %s completed", session.host)
    return DeploymentOutcome(
        success=True,
        message="Deployment completed successfully",
        logs=logs,
        services=services,
    )
