"""Protocol definitions for cloud providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

__all__ = ["CloudProvider", "InstanceRecord"]


@dataclass(frozen=True, slots=True)
class InstanceRecord:
    """A droplet as the provider reports it.

    ``address`` is the public IPv4, empty until the provider assigns one.
    """

    id: int
    name: str
    region: str = ""
    address: str = ""


@runtime_checkable
class CloudProvider(Protocol):
    """What the orchestrator needs from a cloud provider.

    Implementations must tolerate concurrent calls from many workers.
    Every method raises ProviderError on failure.
    """

    async def list_regions(self) -> list[str]:
        """Region slugs droplets can currently be created in."""
        ...

    async def create_instances(
        self,
        prefix: str,
        region: str,
        fingerprint: str,
        count: int,
        *,
        sink: list[InstanceRecord] | None = None,
    ) -> list[InstanceRecord]:
        """Create ``count`` droplets named ``<prefix>-<suffix>`` in ``region``.

        Every acknowledged batch is appended to ``sink`` before the next
        request, so a caller cancelled mid-call still sees what exists.
        """
        ...

    async def get_instance(self, instance_id: int) -> InstanceRecord:
        """Current view of one droplet."""
        ...

    async def delete_instance(self, instance_id: int) -> None:
        """Destroy one droplet."""
        ...
