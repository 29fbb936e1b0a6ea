from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import replace
from pathlib import Path
from typing import BinaryIO

import pytest

from cloudproxy.config import RunConfig
from cloudproxy.credentials import Credential
from cloudproxy.exceptions import ProviderError, TransportError
from cloudproxy.providers.protocols import InstanceRecord


class FakeProvider:
    """In-memory CloudProvider that records every call.

    Droplet ids start at 1 and droplet ``n`` gets address ``10.0.0.n``.
    """

    def __init__(
        self,
        regions: tuple[str, ...] = ("nyc1", "sfo2"),
        *,
        fail_create_on: int | None = None,
        hang_create_on: int | None = None,
        created_before_failure: int = 0,
        pending_polls: int = 0,
        fail_delete: tuple[int, ...] = (),
        delete_delay: float = 0,
    ) -> None:
        self.regions = list(regions)
        self.fail_create_on = fail_create_on
        self.hang_create_on = hang_create_on
        self.create_hanging = asyncio.Event()
        self.created_before_failure = created_before_failure
        self.pending_polls = pending_polls
        self.fail_delete = set(fail_delete)
        self.delete_delay = delete_delay

        self.records: dict[int, InstanceRecord] = {}
        self.create_calls: list[tuple[str, int]] = []
        self.delete_calls: list[int] = []
        self.deleted: list[int] = []
        self.polls: Counter[int] = Counter()
        self.list_calls = 0
        self._next_id = 0

    def _new(self, prefix: str, region: str) -> InstanceRecord:
        self._next_id += 1
        record = InstanceRecord(
            id=self._next_id, name=f"{prefix}-{self._next_id:04d}", region=region
        )
        self.records[record.id] = record
        return record

    @property
    def calls(self) -> int:
        return self.list_calls + len(self.create_calls) + len(self.delete_calls) + sum(
            self.polls.values()
        )

    async def list_regions(self) -> list[str]:
        self.list_calls += 1
        return list(self.regions)

    async def create_instances(
        self, prefix: str, region: str, fingerprint: str, count: int, *, sink=None
    ) -> list[InstanceRecord]:
        self.create_calls.append((region, count))
        sink = sink if sink is not None else []
        call = len(self.create_calls)

        if call in (self.fail_create_on, self.hang_create_on):
            partial = [self._new(prefix, region) for _ in range(self.created_before_failure)]
            sink.extend(partial)
            if call == self.hang_create_on:
                self.create_hanging.set()
                await asyncio.Event().wait()
            raise ProviderError("quota exceeded", created=partial)

        records = [self._new(prefix, region) for _ in range(count)]
        sink.extend(records)
        return records

    async def get_instance(self, instance_id: int) -> InstanceRecord:
        self.polls[instance_id] += 1
        record = self.records[instance_id]
        if self.polls[instance_id] <= self.pending_polls:
            return record
        return replace(record, address=f"10.0.0.{instance_id}")

    async def delete_instance(self, instance_id: int) -> None:
        self.delete_calls.append(instance_id)
        if self.delete_delay:
            await asyncio.sleep(self.delete_delay)
        if instance_id in self.fail_delete:
            raise ProviderError(f"Failed to delete droplet {instance_id}: 500")
        self.deleted.append(instance_id)


class FakeSession:
    def __init__(self, address: str, transport: FakeTransport) -> None:
        self.address = address
        self.transport = transport
        self.closed = False

    async def exec(self, command: str) -> tuple[int | None, str]:
        self.transport.executed.append((self.address, command))
        return self.transport.exec_status, self.transport.exec_stderr

    async def run(self, command, stdout: BinaryIO, on_stderr, stdin=None) -> int | None:
        self.transport.ran.append((self.address, command))
        if stdin is not None:
            received = b"".join([await anext(stdin) for _ in range(self.transport.read_stdin)])
            self.transport.stdin_received[self.address] = received
        stdout.write(self.transport.stdout)
        for line in self.transport.stderr_lines:
            on_stderr(line)
        if self.address in self.transport.failing:
            return 1
        return self.transport.run_status

    async def forward_socks(self, host: str, port: int) -> None:
        self.transport.proxies.append((self.address, host, port))

    async def close(self) -> None:
        self.closed = True


class FakeTransport:
    """Transport whose sessions succeed unless told otherwise.

    ``fail_connects`` maps an address to how many attempts fail before one
    succeeds. Commands run on a ``failing`` address exit with status 1.
    With forwarded stdin, each command reads ``read_stdin`` keystrokes first.
    """

    def __init__(
        self,
        *,
        fail_connects: dict[str, int] | None = None,
        exec_status: int = 0,
        exec_stderr: str = "",
        run_status: int = 0,
        failing: tuple[str, ...] = (),
        stdout: bytes = b"<nmaprun/>\n",
        stderr_lines: tuple[str, ...] = (),
        read_stdin: int = 0,
    ) -> None:
        self.fail_connects = dict(fail_connects or {})
        self.exec_status = exec_status
        self.exec_stderr = exec_stderr
        self.run_status = run_status
        self.failing = set(failing)
        self.stdout = stdout
        self.stderr_lines = stderr_lines
        self.read_stdin = read_stdin
        self.stdin_received: dict[str, bytes] = {}

        self.attempts: Counter[str] = Counter()
        self.sessions: list[FakeSession] = []
        self.executed: list[tuple[str, str]] = []
        self.ran: list[tuple[str, str]] = []
        self.proxies: list[tuple[str, str, int]] = []

    async def connect(self, address: str, credential: Credential) -> FakeSession:
        self.attempts[address] += 1
        if self.attempts[address] <= self.fail_connects.get(address, 0):
            raise TransportError(f"{address}:22: Connection refused")
        session = FakeSession(address, self)
        self.sessions.append(session)
        return session


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def credential(tmp_path: Path) -> Credential:
    return Credential(path=tmp_path / "id_rsa", key=None, fingerprint="aa:bb:cc:dd")


@pytest.fixture
def make_config(tmp_path: Path):
    """RunConfig with no waiting, no packages and output under tmp_path."""

    def make(**overrides) -> RunConfig:
        settings = {
            "count": 3,
            "command": "nmap -oX - {{address}}",
            "packages": (),
            "output": str(tmp_path / "out-{{index}}.xml"),
            "poll_interval": 0,
            "connect_backoff": 0,
            "keep_alive": False,
        }
        settings.update(overrides)
        return RunConfig(**settings)

    return make
