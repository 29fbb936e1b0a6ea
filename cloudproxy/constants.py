"""Defaults shared by the CLI, config and orchestrator."""

from __future__ import annotations

from typing import Final

# =============================================================================
# Fleet
# =============================================================================

SAFETY_CAP: Final = 50
DEFAULT_COUNT: Final = 5
DEFAULT_NAME_PREFIX: Final = "cloud-proxy"
DEFAULT_REGIONS: Final = "*"
DEFAULT_PACKAGES: Final = ("nmap",)
DEFAULT_OUTPUT: Final = "out-{{index}}.xml"

# =============================================================================
# DigitalOcean
# =============================================================================

DEFAULT_SIZE: Final = "s-1vcpu-512mb-10gb"
DEFAULT_IMAGE: Final = "debian-12-x64"
TOKEN_ENV_VARS: Final = ("DOTOKEN", "DIGITALOCEAN_TOKEN")

# =============================================================================
# SSH
# =============================================================================

DEFAULT_KEY_LOCATION: Final = "~/.ssh/id_rsa"
DEFAULT_USER: Final = "root"
SSH_PORT: Final = 22

# Timeouts and intervals (in seconds)
POLL_INTERVAL: Final = 5.0
CONNECT_BACKOFF: Final = 10.0
CONNECT_TIMEOUT: Final = 30.0

# =============================================================================
# Proxy mode
# =============================================================================

PROXY_START_PORT: Final = 55555
PROXY_LISTEN_HOST: Final = "127.0.0.1"
