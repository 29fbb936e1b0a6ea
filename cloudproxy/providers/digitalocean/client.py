"""Async DigitalOcean provider using pydo.aio."""

from __future__ import annotations

import random
import string
from dataclasses import dataclass, field
from typing import Any

from loguru import logger
from pydo.aio import Client as PyDOClient

from cloudproxy.constants import DEFAULT_IMAGE, DEFAULT_NAME_PREFIX, DEFAULT_SIZE
from cloudproxy.exceptions import ProviderError
from cloudproxy.providers.protocols import InstanceRecord

# DigitalOcean accepts at most this many names per multi-create request.
MAX_DROPLETS_PER_REQUEST = 10

NAME_SUFFIX_LENGTH = 8


def random_name(prefix: str) -> str:
    """``<prefix>-<8 random letters>``."""
    suffix = "".join(random.choices(string.ascii_letters, k=NAME_SUFFIX_LENGTH))
    return f"{prefix}-{suffix}"


def get_public_ip(droplet: dict[str, Any]) -> str:
    """Public IPv4 of a droplet payload, or ``""`` while unassigned."""
    for network in droplet.get("networks", {}).get("v4", []):
        if network.get("type") == "public":
            return network.get("ip_address", "")
    return ""


def _to_record(droplet: dict[str, Any], region: str = "") -> InstanceRecord:
    region_slug = (droplet.get("region") or {}).get("slug") or region
    return InstanceRecord(
        id=int(droplet["id"]),
        name=droplet.get("name", ""),
        region=region_slug,
        address=get_public_ip(droplet),
    )


@dataclass
class DigitalOceanProvider:
    """DigitalOcean droplets behind the CloudProvider protocol.

    Example:
        >>> async with DigitalOceanProvider(token="...") as provider:
        ...     regions = await provider.list_regions()
    """

    token: str
    size: str = DEFAULT_SIZE
    image: str = DEFAULT_IMAGE
    tags: tuple[str, ...] = (DEFAULT_NAME_PREFIX,)

    _client: PyDOClient | None = field(default=None, init=False, repr=False)

    async def __aenter__(self) -> DigitalOceanProvider:
        self._client = PyDOClient(token=self.token)
        return self

    async def __aexit__(self, *_: object) -> None:
        if self._client:
            await self._client.close()
            self._client = None

    @property
    def client(self) -> PyDOClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        return self._client

    # -------------------------------------------------------------------------
    # Regions
    # -------------------------------------------------------------------------

    async def list_regions(self) -> list[str]:
        """Slugs of regions that currently accept new droplets."""
        slugs: list[str] = []
        page = 1
        try:
            while True:
                result = await self.client.regions.list(page=page, per_page=200)
                regions = result.get("regions", [])
                slugs.extend(r["slug"] for r in regions if r.get("available", True))
                pages = result.get("links", {}).get("pages", {})
                if not regions or not pages.get("next"):
                    break
                page += 1
        except Exception as e:
            raise ProviderError(f"Failed to list regions: {e}") from e
        return slugs

    # -------------------------------------------------------------------------
    # Droplets
    # -------------------------------------------------------------------------

    async def create_instances(
        self,
        prefix: str,
        region: str,
        fingerprint: str,
        count: int,
        *,
        sink: list[InstanceRecord] | None = None,
    ) -> list[InstanceRecord]:
        """Create ``count`` droplets in ``region``, ten names per request.

        If a request fails after earlier ones succeeded, the raised
        ProviderError carries the droplets that do exist. Each batch also
        lands in ``sink`` as soon as DigitalOcean acknowledges it.
        """
        created: list[InstanceRecord] = []
        remaining = count

        while remaining > 0:
            batch = min(remaining, MAX_DROPLETS_PER_REQUEST)
            body: dict[str, Any] = {
                "names": [random_name(prefix) for _ in range(batch)],
                "region": region,
                "size": self.size,
                "image": self.image,
                "ssh_keys": [fingerprint],
                "backups": False,
                "ipv6": False,
                "monitoring": False,
                "tags": list(self.tags),
            }
            try:
                result = await self.client.droplets.create(body=body)
            except Exception as e:
                raise ProviderError(
                    f"Failed to create droplets in {region}: {e}", created=created
                ) from e

            droplets = result.get("droplets", [])
            if not droplets:
                raise ProviderError(
                    f"Failed to create droplets in {region}: empty response", created=created
                )

            batch_records = [_to_record(d, region) for d in droplets]
            created.extend(batch_records)
            if sink is not None:
                sink.extend(batch_records)
            remaining -= batch
            logger.debug(f"DigitalOcean: created {len(droplets)} droplets in {region}")

        return created

    async def get_instance(self, instance_id: int) -> InstanceRecord:
        try:
            result = await self.client.droplets.get(droplet_id=instance_id)
        except Exception as e:
            raise ProviderError(f"Failed to get droplet {instance_id}: {e}") from e

        droplet = result.get("droplet")
        if not droplet:
            raise ProviderError(f"Droplet {instance_id} not found")
        return _to_record(droplet)

    async def delete_instance(self, instance_id: int) -> None:
        try:
            await self.client.droplets.destroy(droplet_id=instance_id)
        except Exception as e:
            raise ProviderError(f"Failed to delete droplet {instance_id}: {e}") from e


__all__ = [
    "MAX_DROPLETS_PER_REQUEST",
    "DigitalOceanProvider",
    "get_public_ip",
    "random_name",
]
