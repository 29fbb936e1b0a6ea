"""Run configuration.

A single immutable RunConfig is built once at startup and shared by the
orchestrator and every worker. Defaults can come from TOML files:
``~/.cloud-proxy/defaults.toml`` (global) and ``cloud-proxy.toml`` (project),
merged with the project file winning. Keys live under ``[defaults]`` and use
RunConfig field names::

    [defaults]
    count = 10
    regions = "nyc1,sfo3"
    packages = ["nmap", "masscan"]
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, TypeAlias

from cloudproxy import constants
from cloudproxy.exceptions import ConfigurationError, SafetyCapExceededError, TemplateError
from cloudproxy.ports import split_contiguous
from cloudproxy.template import check as check_template
from cloudproxy.template import names as template_names

RawConfig: TypeAlias = dict[str, Any]

GLOBAL_CONFIG_PATH = Path.home() / ".cloud-proxy" / "defaults.toml"
PROJECT_CONFIG_NAME = "cloud-proxy.toml"

# Output paths are fixed before any address or port bucket exists.
OUTPUT_VARIABLES = frozenset({"index", "name"})


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Everything one run needs. Never mutated after construction."""

    count: int = constants.DEFAULT_COUNT
    name_prefix: str = constants.DEFAULT_NAME_PREFIX
    regions: str = constants.DEFAULT_REGIONS
    command: str = ""
    packages: tuple[str, ...] = constants.DEFAULT_PACKAGES
    ports: str = ""
    output: str = constants.DEFAULT_OUTPUT
    key_location: str = constants.DEFAULT_KEY_LOCATION
    force: bool = False
    token: str | None = None

    size: str = constants.DEFAULT_SIZE
    image: str = constants.DEFAULT_IMAGE
    user: str = constants.DEFAULT_USER

    poll_interval: float = constants.POLL_INTERVAL
    connect_backoff: float = constants.CONNECT_BACKOFF
    connect_timeout: float = constants.CONNECT_TIMEOUT

    keep_alive: bool = True
    forward_stdin: bool = False
    proxy: bool = False
    proxy_start_port: int = constants.PROXY_START_PORT
    safety_cap: int = constants.SAFETY_CAP

    def validate(self) -> None:
        """Reject settings that must fail before any droplet is created.

        Raises:
            SafetyCapExceededError: ``count`` above the cap without ``force``.
            ConfigurationError: Any other inconsistency.
            TemplateError: Unrenderable command or output template.
            PortSpecError: Bad port spec, or fewer ports than droplets.
        """
        if self.count < 1:
            raise ConfigurationError(f"count must be at least 1, got {self.count}")
        if self.count > self.safety_cap and not self.force:
            raise SafetyCapExceededError(self.count, self.safety_cap)
        if self.poll_interval < 0 or self.connect_backoff < 0:
            raise ConfigurationError("poll interval and connect backoff must not be negative")

        if self.proxy:
            last_port = self.proxy_start_port + self.count - 1
            if self.proxy_start_port < 1 or last_port > 65535:
                raise ConfigurationError(
                    f"Proxy ports {self.proxy_start_port}-{last_port} out of range"
                )
            return

        if not self.command.strip():
            raise ConfigurationError("--cmd required (or use --proxy)")
        check_template(self.command)
        unsupported = template_names(self.output) - OUTPUT_VARIABLES
        if unsupported:
            raise TemplateError(
                "--out may only use {{index}} and {{name}}, got: "
                + ", ".join(sorted(unsupported))
            )
        if self.distribute_ports:
            split_contiguous(self.ports, self.count)

    @property
    def distribute_ports(self) -> bool:
        return bool(self.ports.strip())


def resolve_token(explicit: str | None, environ: Mapping[str, str] = os.environ) -> str:
    """``explicit`` or the first of DOTOKEN / DIGITALOCEAN_TOKEN that is set."""
    if explicit:
        return explicit
    for var in constants.TOKEN_ENV_VARS:
        if value := environ.get(var):
            return value
    raise ConfigurationError(
        f"--token required (or set {' or '.join(constants.TOKEN_ENV_VARS)})"
    )


# =============================================================================
# TOML defaults
# =============================================================================


def _deep_merge(base: RawConfig, override: RawConfig) -> RawConfig:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _read_toml(path: Path) -> RawConfig:
    if not path.is_file():
        return {}
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigurationError(f"Invalid config file {path}: {e}") from e


def load_defaults(
    *,
    project_dir: Path | None = None,
    global_path: Path | None = None,
) -> RawConfig:
    """Merged ``[defaults]`` table from the global and project files.

    Raises:
        ConfigurationError: On unparseable TOML or unknown keys.
    """
    global_cfg = _read_toml(global_path or GLOBAL_CONFIG_PATH)
    project_cfg = _read_toml((project_dir or Path.cwd()) / PROJECT_CONFIG_NAME)
    merged = _deep_merge(global_cfg, project_cfg).get("defaults", {})

    known = {f.name for f in fields(RunConfig)}
    unknown = sorted(set(merged) - known)
    if unknown:
        raise ConfigurationError(f"Unknown config keys: {', '.join(unknown)}")

    if isinstance(merged.get("packages"), str):
        merged["packages"] = split_packages(merged["packages"])
    elif "packages" in merged:
        merged["packages"] = tuple(merged["packages"])
    return merged


def split_packages(raw: str) -> tuple[str, ...]:
    return tuple(p.strip() for p in raw.split(",") if p.strip())


__all__ = [
    "GLOBAL_CONFIG_PATH",
    "PROJECT_CONFIG_NAME",
    "RunConfig",
    "load_defaults",
    "resolve_token",
    "split_packages",
]
