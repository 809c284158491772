from functools import lru_cache
import logging
import os
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = "http://localhost:5173,http://localhost:3000"


class ConfigurationError(RuntimeError):
    """Settings are missing or invalid; nothing remote was attempted."""


class Settings(BaseSettings):
    """Dashboard settings, read from the environment or a .env file."""

    # Target VPS
    vps_host: str = ""
    vps_user: str = ""
    vps_port: int = 22
    # Either the PEM text of the key or a path to a key file
    vps_ssh_private_key: str | None = None
    vps_key_path: str = ""
    ssh_known_hosts: str | None = None
    ssh_accept_unknown_hosts: bool = False
    ssh_timeout: int = 30
    log_ssh_commands: bool = True

    # Pause between `docker compose up` and the first health probe
    deploy_settle_seconds: float = 10.0

    # Audit trail
    sqlite_db_path: str = "vpsdeck.db"
    audit_max_output_length: int = 10000

    # Comma-separated origins for the dashboard frontend
    cors_allowed_origins: str = DEFAULT_CORS_ORIGINS
    environment: str = "development"

    # Admin key expected in the X-Admin-Key header
    admin_api_key: str | None = None
    require_auth: bool = False

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def ssh_credential(self) -> str:
        return self.vps_ssh_private_key or os.path.expanduser(self.vps_key_path.strip())

    def missing_ssh_settings(self) -> list[str]:
        missing: list[str] = []
        if not self.vps_host:
            missing.append("VPS_HOST")
        if not self.vps_user:
            missing.append("VPS_USER")
        if not self.vps_ssh_private_key and not self.vps_key_path:
            missing.append("VPS_SSH_PRIVATE_KEY")
        return missing

    @property
    def secrets_configured(self) -> bool:
        return not self.missing_ssh_settings()

    def _key_file_errors(self) -> list[str]:
        # An inline key needs no file on disk
        if self.vps_ssh_private_key or not self.vps_key_path:
            return []
        key_path = os.path.expanduser(self.vps_key_path.strip())
        if not os.path.exists(key_path):
            return [f"SSH key file not found: {key_path}"]
        if not os.access(key_path, os.R_OK):
            return [f"SSH key file not readable: {key_path}"]
        return []

    def _cors_errors(self) -> list[str]:
        if not self.is_production:
            return []
        if self.cors_allowed_origins == DEFAULT_CORS_ORIGINS:
            return ["CORS_ALLOWED_ORIGINS still has the default localhost origins in production"]
        if self.cors_allowed_origins.strip() == "*":
            return ["CORS_ALLOWED_ORIGINS is '*' in production; list the dashboard origin(s) instead"]
        return []

    def validate_required(self) -> list[str]:
        """Validate settings and return hard errors.

        Missing SSH credentials are only warned about: the dashboard still
        starts and reports them through ``secrets_configured``, and each remote
        operation refuses to run until they are set.
        """
        missing = self.missing_ssh_settings()
        if missing:
            logger.warning("SSH settings not configured: %s", ", ".join(missing))
        if self.is_production and not self.require_auth:
            logger.warning("REQUIRE_AUTH is off in production; anyone reaching the API can deploy")

        errors = self._key_file_errors() + self._cors_errors()
        if self.require_auth and not self.admin_api_key:
            errors.append("REQUIRE_AUTH is enabled but ADMIN_API_KEY is not set")
        return errors


def validate_config_on_startup(settings: Settings) -> None:
    errors = settings.validate_required()
    if errors:
        for error in errors:
            logger.error("Invalid configuration: %s", error)
        raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}")
    logger.info("Configuration validated for %s", settings.vps_host or "an unconfigured host")


def require_ssh_credentials(settings: Settings) -> None:
    """Fail fast, before any remote attempt, when SSH credentials are absent."""
    missing = settings.missing_ssh_settings()
    if missing:
        raise ConfigurationError(f"Missing required secrets: {', '.join(missing)}")


@lru_cache
def get_settings() -> Settings:
    return Settings()
