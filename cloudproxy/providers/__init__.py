"""Cloud provider integrations."""

from cloudproxy.providers.protocols import CloudProvider, InstanceRecord

__all__ = ["CloudProvider", "InstanceRecord"]
