"""DigitalOcean provider for cloud-proxy.

Example:
    from cloudproxy.providers.digitalocean import DigitalOceanProvider

    async with DigitalOceanProvider(token=token) as provider:
        droplets = await provider.create_instances("scan", "nyc3", fingerprint, 3)
"""

from cloudproxy.providers.digitalocean.client import DigitalOceanProvider

__all__ = ["DigitalOceanProvider"]
