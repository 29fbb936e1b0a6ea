"""Exception hierarchy for cloud-proxy.

All cloud-proxy exceptions inherit from CloudProxyError, so the CLI can
catch every expected failure with a single except clause.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloudproxy.providers.protocols import InstanceRecord


class CloudProxyError(Exception):
    """Base exception for all cloud-proxy errors."""


class ConfigurationError(CloudProxyError):
    """Raised for invalid configuration or missing required settings."""


class SafetyCapExceededError(ConfigurationError):
    """Raised when the requested fleet is larger than the safety cap."""

    def __init__(self, count: int, cap: int) -> None:
        self.count = count
        self.cap = cap
        super().__init__(
            f"Refusing to create {count} droplets (cap is {cap}). Use --force to override."
        )


class NoEligibleRegionsError(ConfigurationError):
    """Raised when no available region matches the region selector."""

    def __init__(self, selector: str) -> None:
        self.selector = selector
        super().__init__(f"There are no regions to use (selector: {selector!r})")


class TemplateError(ConfigurationError):
    """Raised when a command or output template cannot be rendered."""


class PortSpecError(ConfigurationError):
    """Raised for an unparseable port spec or an impossible split."""


class CredentialError(ConfigurationError):
    """Raised when the SSH private key cannot be loaded."""


class ProviderError(CloudProxyError):
    """Raised when a cloud provider API call fails.

    ``created`` holds droplets a batched create managed to make before
    failing, so the caller can still tear them down.
    """

    def __init__(self, message: str, created: list[InstanceRecord] | None = None) -> None:
        self.created = list(created or [])
        super().__init__(message)


class ProvisioningError(CloudProxyError):
    """Raised when fleet creation fails partway. The fleet has been torn down."""


class TransportError(CloudProxyError):
    """Raised when an SSH connection cannot be established or is lost."""


class CommandError(CloudProxyError):
    """Raised when a remote command exits with a non-zero status."""

    def __init__(self, command: str, exit_status: int | None, detail: str = "") -> None:
        self.command = command
        self.exit_status = exit_status
        message = f"Command {command!r} exited with status {exit_status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
