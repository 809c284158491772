"""Files uploaded to the VPS by a deployment.

Everything here is static apart from the chosen ports and, for the real
``.env``, freshly generated secrets.
"""

from __future__ import annotations

import secrets
from datetime import datetime, timezone
from typing import Any

import yaml

from vpsdeck.schemas.preflight import PortAssignment


REMOTE_ROOT = "/opt/rentalmonitor"
COMPOSE_PATH = f"{REMOTE_ROOT}/docker-compose.yml"
ENV_EXAMPLE_PATH = f"{REMOTE_ROOT}/.env.example"
ENV_PATH = f"{REMOTE_ROOT}/.env"
FETCHER_DIR = f"{REMOTE_ROOT}/fetcher"
README_PATH = f"{REMOTE_ROOT}/README.md"

POSTGRES_CONTAINER = "rentalmonitor_postgres"
DB_USER = "rentalmonitor"


def _healthcheck(test: list[str], interval: str = "30s", timeout: str = "10s", retries: int = 3) -> dict[str, Any]:
    return {"test": test, "interval": interval, "timeout": timeout, "retries": retries}


def compose_manifest(ports: PortAssignment) -> dict[str, Any]:
    return {
        "services": {
            "postgres": {
                "image": "postgres:15-alpine",
                "container_name": POSTGRES_CONTAINER,
                "restart": "unless-stopped",
                "environment": {
                    "POSTGRES_USER": DB_USER,
                    "POSTGRES_PASSWORD": "${POSTGRES_PASSWORD}",
                    "POSTGRES_DB": DB_USER,
                },
                "volumes": ["rentalmonitor_postgres_data:/var/lib/postgresql/data"],
                "networks": ["rentalmonitor_net"],
                "healthcheck": _healthcheck(
                    ["CMD-SHELL", f"pg_isready -U {DB_USER}"], interval="10s", timeout="5s", retries=5
                ),
            },
            "n8n": {
                "image": "n8nio/n8n:latest",
                "container_name": "rentalmonitor_n8n",
                "restart": "unless-stopped",
                "ports": [f"127.0.0.1:{ports.n8n}:5678"],
                "environment": [
                    "N8N_BASIC_AUTH_ACTIVE=true",
                    "N8N_BASIC_AUTH_USER=${N8N_USER}",
                    "N8N_BASIC_AUTH_PASSWORD=${N8N_PASSWORD}",
                    "N8N_ENCRYPTION_KEY=${N8N_ENCRYPTION_KEY}",
                    "DB_TYPE=postgresdb",
                    "DB_POSTGRESDB_HOST=postgres",
                    "DB_POSTGRESDB_PORT=5432",
                    f"DB_POSTGRESDB_DATABASE={DB_USER}",
                    f"DB_POSTGRESDB_USER={DB_USER}",
                    "DB_POSTGRESDB_PASSWORD=${POSTGRES_PASSWORD}",
                    "GENERIC_TIMEZONE=Europe/Amsterdam",
                    "N8N_HOST=${N8N_HOST}",
                    "N8N_PROTOCOL=https",
                    "WEBHOOK_URL=${WEBHOOK_URL}",
                ],
                "volumes": ["rentalmonitor_n8n_data:/home/node/.n8n"],
                "networks": ["rentalmonitor_net"],
                "depends_on": {"postgres": {"condition": "service_healthy"}},
                "healthcheck": _healthcheck(["CMD", "wget", "--spider", "-q", "http://localhost:5678/healthz"]),
            },
            "ntfy": {
                "image": "binwiederhier/ntfy:latest",
                "container_name": "rentalmonitor_ntfy",
                "restart": "unless-stopped",
                "ports": [f"127.0.0.1:{ports.ntfy}:80"],
                "command": ["serve"],
                "volumes": [
                    "rentalmonitor_ntfy_cache:/var/cache/ntfy",
                    "rentalmonitor_ntfy_data:/var/lib/ntfy",
                ],
                "networks": ["rentalmonitor_net"],
                "healthcheck": _healthcheck(["CMD", "wget", "--spider", "-q", "http://localhost:80/v1/health"]),
            },
            "fetcher": {
                "build": {"context": "./fetcher", "dockerfile": "Dockerfile"},
                "container_name": "rentalmonitor_fetcher",
                "restart": "unless-stopped",
                "ports": [f"127.0.0.1:{ports.fetcher}:3001"],
                "environment": ["X_FETCHER_SECRET=${FETCHER_SECRET}", "PORT=3001"],
                "networks": ["rentalmonitor_net"],
                "healthcheck": _healthcheck(
                    [
                        "CMD",
                        "python",
                        "-c",
                        "import urllib.request; urllib.request.urlopen('http://localhost:3001/health')",
                    ]
                ),
            },
        },
        "volumes": {
            "rentalmonitor_postgres_data": None,
            "rentalmonitor_n8n_data": None,
            "rentalmonitor_ntfy_cache": None,
            "rentalmonitor_ntfy_data": None,
        },
        "networks": {
            "rentalmonitor_net": {"name": "rentalmonitor_net", "driver": "bridge"},
        },
    }


def render_compose(ports: PortAssignment) -> str:
    return yaml.safe_dump(compose_manifest(ports), sort_keys=False, default_flow_style=False)


ENV_EXAMPLE = """# LivingRental Alert - Environment Configuration
# Copy this to .env and fill in real values

# Postgres
POSTGRES_PASSWORD=your_secure_postgres_password

# n8n Configuration
N8N_USER=admin
N8N_PASSWORD=your_secure_n8n_password
N8N_ENCRYPTION_KEY=your_32_char_encryption_key_here
N8N_HOST=n8n.yourdomain.com
WEBHOOK_URL=https://n8n.yourdomain.com

# Fetcher Service
FETCHER_SECRET=your_fetcher_api_secret_here
"""


def render_env_example() -> str:
    return ENV_EXAMPLE


def render_env_file() -> str:
    """Real ``.env`` with new random secrets. Only uploaded when none exists."""
    generated_at = datetime.now(timezone.utc).isoformat()
    return f"""# LivingRental Alert - Environment Configuration
# Generated: {generated_at}

# Postgres
POSTGRES_PASSWORD={secrets.token_urlsafe(24)}

# n8n Configuration
N8N_USER=admin
N8N_PASSWORD={secrets.token_urlsafe(18)}
N8N_ENCRYPTION_KEY={secrets.token_urlsafe(24)}
N8N_HOST=localhost
WEBHOOK_URL=http://localhost:5678

# Fetcher Service
FETCHER_SECRET={secrets.token_urlsafe(24)}
"""


FETCHER_DOCKERFILE = """FROM mcr.microsoft.com/playwright/python:v1.40.0-jammy

WORKDIR /app

COPY requirements.txt ./
RUN pip install --no-cache-dir -r requirements.txt

COPY . .

EXPOSE 3001

CMD ["sh", "-c", "uvicorn main:app --host 0.0.0.0 --port ${PORT:-3001}"]
"""

FETCHER_REQUIREMENTS = """fastapi>=0.110
uvicorn[standard]>=0.27
httpx>=0.27
playwright==1.40.0
"""

FETCHER_SOURCE = r'''"""Fetch microservice: plain HTTP or headless-browser page retrieval."""

from __future__ import annotations

import base64
import os
import re
import time
from datetime import datetime, timezone
from typing import Literal

import httpx
from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

FETCHER_SECRET = os.environ.get("X_FETCHER_SECRET", "")
ALLOWED_URL_PREFIXES = [
    prefix.strip()
    for prefix in os.environ.get("ALLOWED_URL_PREFIXES", "").split(",")
    if prefix.strip()
] or None
USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

app = FastAPI(title="rentalmonitor-fetcher")


class FetchError(Exception):
    def __init__(self, status_code: int, error: str, **extra):
        super().__init__(error)
        self.status_code = status_code
        self.body = {"error": error, **extra}


@app.exception_handler(FetchError)
async def fetch_error_handler(request: Request, exc: FetchError):
    # Clients read a top-level "error" key
    return JSONResponse(status_code=exc.status_code, content=exc.body)


class FetchRequest(BaseModel):
    url: str | None = None
    mode: Literal["http", "browser"] = "http"
    timeout: int = 30000
    waitForSelector: str | None = None
    screenshot: bool = False


def check_secret(secret: str | None) -> None:
    if not FETCHER_SECRET:
        raise FetchError(500, "FETCHER_SECRET not configured - access denied")
    if not secret or secret != FETCHER_SECRET:
        raise FetchError(401, "Unauthorized - invalid or missing secret")


def url_allowed(url: str) -> bool:
    if not ALLOWED_URL_PREFIXES:
        return True
    return any(url.startswith(prefix) for prefix in ALLOWED_URL_PREFIXES)


def html_to_text(html: str) -> str:
    return re.sub(r"\s+", " ", re.sub(r"<[^>]*>", " ", html)).strip()


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@app.get("/health")
async def health():
    return {"status": "ok", "timestamp": now_iso(), "service": "rentalmonitor-fetcher"}


async def fetch_http(request: FetchRequest) -> dict:
    async with httpx.AsyncClient(
        follow_redirects=True,
        timeout=request.timeout / 1000,
        headers={"User-Agent": USER_AGENT},
    ) as client:
        response = await client.get(request.url)
    html = response.text
    return {"status": response.status_code, "finalUrl": str(response.url), "html": html, "text": html_to_text(html)}


async def fetch_browser(request: FetchRequest) -> dict:
    from playwright.async_api import async_playwright

    async with async_playwright() as playwright:
        browser = await playwright.chromium.launch(headless=True)
        try:
            context = await browser.new_context(user_agent=USER_AGENT)
            page = await context.new_page()
            response = await page.goto(request.url, wait_until="networkidle", timeout=request.timeout)
            if request.waitForSelector:
                await page.wait_for_selector(request.waitForSelector, timeout=request.timeout / 2)
            result = {
                "status": response.status if response else 200,
                "finalUrl": page.url,
                "html": await page.content(),
                "text": await page.evaluate("() => document.body.innerText"),
            }
            if request.screenshot:
                image = await page.screenshot(full_page=True)
                result["screenshotBase64"] = base64.b64encode(image).decode()
            return result
        finally:
            await browser.close()


@app.post("/fetch")
async def fetch(request: FetchRequest, x_fetcher_secret: str | None = Header(None)):
    check_secret(x_fetcher_secret)
    started = time.monotonic()

    if not request.url:
        raise FetchError(400, "url is required")
    if not url_allowed(request.url):
        raise FetchError(403, "URL not in allowed prefixes list")

    try:
        if request.mode == "browser":
            result = await fetch_browser(request)
        else:
            result = await fetch_http(request)
    except Exception as exc:
        raise FetchError(
            500,
            str(exc),
            fetchedAt=now_iso(),
            durationMs=int((time.monotonic() - started) * 1000),
        ) from exc

    result["fetchedAt"] = now_iso()
    result["durationMs"] = int((time.monotonic() - started) * 1000)
    return result
'''


def fetcher_files() -> dict[str, str]:
    """Remote path -> content for the fetcher build context."""
    return {
        f"{FETCHER_DIR}/Dockerfile": FETCHER_DOCKERFILE,
        f"{FETCHER_DIR}/requirements.txt": FETCHER_REQUIREMENTS,
        f"{FETCHER_DIR}/main.py": FETCHER_SOURCE,
    }


def render_readme(ports: PortAssignment) -> str:
    generated_at = datetime.now(timezone.utc).isoformat()
    return f"""# LivingRental Alert - VPS Infrastructure

## Services

| Service | Local Port | Description |
|---------|------------|-------------|
| Postgres | Internal | Database for n8n workflows |
| n8n | {ports.n8n} | Workflow automation |
| ntfy | {ports.ntfy} | Push notifications |
| Fetcher | {ports.fetcher} | Web fetch microservice |

## Quick Start

1. Configure your reverse proxy (see config snippet in dashboard)
2. Test ntfy: `curl -d "Hello" http://127.0.0.1:{ports.ntfy}/strijps`
3. Subscribe on iPhone/iPad: ntfy app -> Add topic -> "strijps"
4. Access n8n: http://127.0.0.1:{ports.n8n} (user: admin)

## Fetcher API

```bash
# Health check
curl http://127.0.0.1:{ports.fetcher}/health

# Fetch with HTTP
curl -X POST http://127.0.0.1:{ports.fetcher}/fetch \\
  -H "Content-Type: application/json" \\
  -H "X-Fetcher-Secret: YOUR_SECRET" \\
  -d '{{"url": "https://example.com", "mode": "http"}}'

# Fetch with browser (Playwright)
curl -X POST http://127.0.0.1:{ports.fetcher}/fetch \\
  -H "Content-Type: application/json" \\
  -H "X-Fetcher-Secret: YOUR_SECRET" \\
  -d '{{"url": "https://example.com", "mode": "browser", "screenshot": true}}'
```

## Logs

```bash
cd {REMOTE_ROOT}
docker compose logs -f
```

## Stop/Start

```bash
cd {REMOTE_ROOT}
docker compose stop
docker compose start
```

Generated: {generated_at}
"""
