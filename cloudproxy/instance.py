"""Runtime record of one provisioned droplet."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from cloudproxy.providers.protocols import InstanceRecord
    from cloudproxy.transport import Session

__all__ = [
    "Instance",
    "InstanceState",
    "instances_from_records",
    "zero_pad",
]


class InstanceState(StrEnum):
    """Where a droplet's session worker currently is."""

    WAITING_FOR_ADDRESS = "waiting-for-address"
    CONNECTING = "connecting"
    INSTALLING = "installing"
    RUNNING = "running"
    PROXYING = "proxying"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (InstanceState.COMPLETED, InstanceState.FAILED)


def zero_pad(total: int, index: int) -> str:
    """Pad ``index`` with zeros to the width of ``total``.

    >>> zero_pad(120, 7)
    '007'
    """
    return str(index).zfill(len(str(total)))


@dataclass(eq=False)
class Instance:
    """A droplet plus the state its session worker derives for it.

    The orchestrator fills in identity, index, template and output path;
    after handoff only the owning worker touches ``session``, ``ports``,
    ``proxy_port`` and ``state``.
    """

    id: int
    name: str
    region: str = ""
    index: int = 0
    label: str = ""
    template: str = ""
    ports: str = ""
    output_path: Path | None = None
    proxy_port: int | None = None
    state: InstanceState = InstanceState.WAITING_FOR_ADDRESS
    session: Session | None = field(default=None, repr=False)
    _address: str = field(default="", repr=False)

    @property
    def address(self) -> str:
        return self._address

    @address.setter
    def address(self, value: str) -> None:
        if self._address and value != self._address:
            raise ValueError(
                f"Droplet {self.id} address already set to {self._address}, refusing {value}"
            )
        self._address = value

    @property
    def ready(self) -> bool:
        """True once the provider has reported an address."""
        return self._address != ""

    @property
    def prefix(self) -> str:
        """Console prefix, ``name (index):``."""
        return f"{self.name} ({self.label or self.index}):"

    @classmethod
    def from_record(cls, record: InstanceRecord) -> Instance:
        instance = cls(id=record.id, name=record.name, region=record.region)
        if record.address:
            instance.address = record.address
        return instance


def instances_from_records(records: Iterable[InstanceRecord]) -> list[Instance]:
    """Build instances in provider-return order with contiguous 1-based indices."""
    records = list(records)
    instances = [Instance.from_record(r) for r in records]
    for i, instance in enumerate(instances, start=1):
        instance.index = i
        instance.label = zero_pad(len(instances), i)
    return instances
