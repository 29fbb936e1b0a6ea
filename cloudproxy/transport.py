"""AsyncSSH transport for droplet sessions.

Service class pattern: connection settings are bound at construction,
``connect()`` returns a session bound to one droplet.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from typing import BinaryIO, Protocol, TypeAlias

import asyncssh

from cloudproxy.constants import CONNECT_TIMEOUT, DEFAULT_USER, SSH_PORT
from cloudproxy.credentials import Credential
from cloudproxy.exceptions import TransportError

LineHandler: TypeAlias = Callable[[str], None]

READ_CHUNK = 65536


# =============================================================================
# Protocols
# =============================================================================


class Session(Protocol):
    """An open shell session on one droplet."""

    async def exec(self, command: str) -> tuple[int | None, str]:
        """Run ``command`` to completion; return (exit status, stderr)."""
        ...

    async def run(
        self,
        command: str,
        stdout: BinaryIO,
        on_stderr: LineHandler,
        stdin: AsyncIterator[bytes] | None = None,
    ) -> int | None:
        """Run ``command`` streaming stdout into ``stdout`` and stderr lines
        into ``on_stderr``; return the exit status."""
        ...

    async def forward_socks(self, host: str, port: int) -> None:
        """Start a local SOCKS listener on ``host:port`` tunnelled through
        this session. It lives until the session is closed."""
        ...

    async def close(self) -> None: ...


class Transport(Protocol):
    async def connect(self, address: str, credential: Credential) -> Session: ...


# =============================================================================
# SSH Transport
# =============================================================================


@dataclass
class SSHSession:
    """Session over one asyncssh connection."""

    address: str
    _conn: asyncssh.SSHClientConnection = field(repr=False)
    pty: bool = False

    async def exec(self, command: str) -> tuple[int | None, str]:
        try:
            result = await self._conn.run(command, check=False)
        except (OSError, asyncssh.Error) as e:
            raise TransportError(f"{self.address}: {e}") from e
        return result.exit_status, str(result.stderr or "")

    async def run(
        self,
        command: str,
        stdout: BinaryIO,
        on_stderr: LineHandler,
        stdin: AsyncIterator[bytes] | None = None,
    ) -> int | None:
        # A PTY lets interactive programs see forwarded keystrokes; it also
        # merges remote stderr into stdout.
        options: dict[str, object] = {"encoding": None}
        if self.pty:
            options.update(term_type="xterm", term_size=(80, 40))

        try:
            async with self._conn.create_process(command, **options) as proc:
                feeder = asyncio.create_task(_feed(proc, stdin)) if stdin is not None else None
                try:
                    await asyncio.gather(
                        _copy(proc.stdout, stdout),
                        _lines(proc.stderr, on_stderr),
                    )
                    result = await proc.wait(check=False)
                finally:
                    if feeder is not None:
                        feeder.cancel()
                        with contextlib.suppress(asyncio.CancelledError):
                            await feeder
        except (OSError, asyncssh.Error) as e:
            raise TransportError(f"{self.address}: {e}") from e

        return result.exit_status

    async def forward_socks(self, host: str, port: int) -> None:
        try:
            await self._conn.forward_socks(host, port)
        except (OSError, asyncssh.Error) as e:
            raise TransportError(f"{self.address}: cannot listen on {host}:{port}: {e}") from e

    async def close(self) -> None:
        self._conn.close()
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(self._conn.wait_closed(), timeout=5.0)


@dataclass(frozen=True, slots=True)
class SSHTransport:
    """Opens SSH sessions to freshly booted droplets.

    Host keys are not checked: every droplet is a first-contact host.

    Example:
        >>> transport = SSHTransport(user="root")
        >>> session = await transport.connect("203.0.113.7", credential)
        >>> status, _ = await session.exec("uname -a")
    """

    user: str = DEFAULT_USER
    port: int = SSH_PORT
    connect_timeout: float = CONNECT_TIMEOUT
    pty: bool = False

    async def connect(self, address: str, credential: Credential) -> SSHSession:
        """Single connection attempt. Retrying is the caller's business."""
        try:
            conn = await asyncssh.connect(
                address,
                port=self.port,
                username=self.user,
                client_keys=[credential.key],
                known_hosts=None,
                connect_timeout=self.connect_timeout,
            )
        except (OSError, asyncssh.Error, TimeoutError) as e:
            raise TransportError(f"{address}:{self.port}: {e}") from e
        return SSHSession(address=address, _conn=conn, pty=self.pty)


# =============================================================================
# Stream pumps
# =============================================================================


async def _copy(reader: asyncssh.SSHReader[bytes], sink: BinaryIO) -> None:
    while chunk := await reader.read(READ_CHUNK):
        sink.write(chunk)
        sink.flush()


async def _lines(reader: asyncssh.SSHReader[bytes], handler: LineHandler) -> None:
    async for line in reader:
        text = line.decode(errors="replace").rstrip("\r\n")
        if text:
            handler(text)


async def _feed(proc: asyncssh.SSHClientProcess[bytes], stdin: AsyncIterator[bytes]) -> None:
    async for data in stdin:
        proc.stdin.write(data)


__all__ = ["LineHandler", "SSHSession", "SSHTransport", "Session", "Transport"]
