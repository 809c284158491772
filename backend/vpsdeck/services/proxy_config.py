from __future__ import annotations

import logging

from vpsdeck.schemas.preflight import PortAssignment, ProxyKind


logger = logging.getLogger(__name__)

SERVER_NAME = "rentalert.sellsiren.com"

NGINX_TEMPLATE = """# LivingRental Alert - Nginx reverse proxy configuration
# Add this to /etc/nginx/sites-available/rentalmonitor.conf
# Then: sudo ln -s /etc/nginx/sites-available/rentalmonitor.conf /etc/nginx/sites-enabled/
# And: sudo nginx -t && sudo systemctl reload nginx

server {{
    listen 80;
    server_name {server_name};

    # n8n workflow automation
    location /n8n/ {{
        proxy_pass http://127.0.0.1:{n8n}/;
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
    }}

    # ntfy push notifications
    location /ntfy/ {{
        proxy_pass http://127.0.0.1:{ntfy}/;
        proxy_http_version 1.1;
        proxy_set_header Upgrade $http_upgrade;
        proxy_set_header Connection "upgrade";
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
    }}

    # Fetcher microservice (protected by the X-Fetcher-Secret header)
    location /fetcher/ {{
        proxy_pass http://127.0.0.1:{fetcher}/;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
    }}
}}
"""

CADDY_TEMPLATE = """# LivingRental Alert - Caddy reverse proxy configuration
# Add this to your Caddyfile

{server_name} {{
    # n8n workflow automation
    handle_path /n8n/* {{
        reverse_proxy 127.0.0.1:{n8n}
    }}

    # ntfy push notifications
    handle_path /ntfy/* {{
        reverse_proxy 127.0.0.1:{ntfy}
    }}

    # Fetcher microservice
    handle_path /fetcher/* {{
        reverse_proxy 127.0.0.1:{fetcher}
    }}
}}
"""


def render_nginx(ports: PortAssignment) -> str:
    return NGINX_TEMPLATE.format(
        server_name=SERVER_NAME, n8n=ports.n8n, ntfy=ports.ntfy, fetcher=ports.fetcher
    )


def render_caddy(ports: PortAssignment) -> str:
    return CADDY_TEMPLATE.format(
        server_name=SERVER_NAME, n8n=ports.n8n, ntfy=ports.ntfy, fetcher=ports.fetcher
    )


def render_proxy_config(kind: ProxyKind, ports: PortAssignment) -> str | None:
    """Render a snippet for the detected proxy.

    Traefik is detected but has no renderer; it gets ``None`` like no proxy.
    """
    if kind == ProxyKind.NGINX:
        return render_nginx(ports)
    if kind == ProxyKind.CADDY:
        return render_caddy(ports)
    if kind == ProxyKind.TRAEFIK:
        logger.info("Traefik detected; no config snippet is generated for it")
    return None
