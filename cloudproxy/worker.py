"""Per-droplet session worker.

Drives one droplet from "created" to a terminal state::

    WAITING_FOR_ADDRESS -> CONNECTING -> [INSTALLING] -> RUNNING -> COMPLETED
                                                      -> PROXYING -> COMPLETED

Address polling and connecting retry forever on a fixed interval; only
cancellation (the operator interrupt) ends them early. Every other error is
attributed to this droplet and ends the worker in FAILED without touching
its siblings.
"""

from __future__ import annotations

import contextlib
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_fixed

from cloudproxy.constants import PROXY_LISTEN_HOST
from cloudproxy.exceptions import CloudProxyError, CommandError, ProviderError, TransportError
from cloudproxy.instance import Instance, InstanceState
from cloudproxy.logging import instance_logger
from cloudproxy.template import TemplateVars, render

if TYPE_CHECKING:
    from cloudproxy.broadcast import Subscription
    from cloudproxy.config import RunConfig
    from cloudproxy.credentials import Credential
    from cloudproxy.providers.protocols import CloudProvider
    from cloudproxy.transport import Session, Transport

APT_ENV = "DEBIAN_FRONTEND=noninteractive"


class _AddressPending(Exception):
    """Droplet has no public address yet - retry."""


@dataclass(frozen=True, slots=True)
class WorkerResult:
    """How a worker ended."""

    instance: Instance
    state: InstanceState
    exit_status: int | None = None
    error: str | None = None
    output_path: Path | None = None
    connect_attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.state is InstanceState.COMPLETED


class SessionWorker:
    """Owns one Instance after the orchestrator hands it over."""

    def __init__(
        self,
        instance: Instance,
        config: RunConfig,
        provider: CloudProvider,
        transport: Transport,
        credential: Credential,
        *,
        ports: str = "",
        stdin: Subscription | None = None,
    ) -> None:
        self.instance = instance
        self.config = config
        self.provider = provider
        self.transport = transport
        self.credential = credential
        self.stdin = stdin
        self.log = instance_logger(instance)
        self.connect_attempts = 0
        self._ports = ports

    @property
    def session(self) -> Session:
        if self.instance.session is None:
            raise TransportError(f"{self.instance.prefix} not connected")
        return self.instance.session

    def _enter(self, state: InstanceState) -> None:
        self.log.debug(f"{self.instance.state} -> {state}")
        self.instance.state = state

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def run(self) -> WorkerResult:
        """Run the state machine to a terminal state. Never raises except on cancellation."""
        exit_status: int | None = None
        keep_session = False
        try:
            await self.wait_for_address()
            await self.connect()

            if self.config.proxy:
                await self.start_proxy()
                keep_session = True
            else:
                if self.config.packages:
                    await self.install_packages()
                exit_status = await self.run_command()

        except (CloudProxyError, OSError) as e:
            self.log.error(f"{type(e).__name__}: {e}")
            self._enter(InstanceState.FAILED)
            return self._result(exit_status=getattr(e, "exit_status", None), error=str(e))
        except Exception as e:
            self.log.exception(f"Unexpected error: {e}")
            self._enter(InstanceState.FAILED)
            return self._result(error=f"{type(e).__name__}: {e}")
        finally:
            if self.stdin is not None:
                self.stdin.close()
            if not keep_session:
                await self._close_session()

        self._enter(InstanceState.COMPLETED)
        return self._result(exit_status=exit_status)

    def _result(self, exit_status: int | None = None, error: str | None = None) -> WorkerResult:
        return WorkerResult(
            instance=self.instance,
            state=self.instance.state,
            exit_status=exit_status,
            error=error,
            output_path=self.instance.output_path,
            connect_attempts=self.connect_attempts,
        )

    async def _close_session(self) -> None:
        session, self.instance.session = self.instance.session, None
        if session is None:
            return
        try:
            await session.close()
        except (OSError, TransportError) as e:
            self.log.debug(f"Error closing SSH session: {e}")

    # -------------------------------------------------------------------------
    # States
    # -------------------------------------------------------------------------

    async def wait_for_address(self) -> None:
        """Poll the provider until the droplet reports a public IPv4."""
        self._enter(InstanceState.WAITING_FOR_ADDRESS)
        interval = self.config.poll_interval

        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            if isinstance(error, ProviderError):
                self.log.warning(f"Error getting the IPv4 address of droplet: {error}")
            else:
                self.log.warning(f"Droplet not ready yet, sleeping {interval:g}s")

        async for attempt in AsyncRetrying(
            wait=wait_fixed(interval),
            retry=retry_if_exception_type((_AddressPending, ProviderError)),
            before_sleep=before_sleep,
        ):
            with attempt:
                record = await self.provider.get_instance(self.instance.id)
                if not record.address:
                    raise _AddressPending()
                self.instance.address = record.address

        self.log.info(f"IPv4 Address: {self.instance.address}")
        self.log.success("Droplet ready")

    async def connect(self) -> None:
        """Open the SSH session, retrying forever on a fixed backoff."""
        self._enter(InstanceState.CONNECTING)
        backoff = self.config.connect_backoff

        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            self.log.warning(
                f"Error establishing SSH connection ({error}), retrying in {backoff:g}s..."
            )

        async for attempt in AsyncRetrying(
            wait=wait_fixed(backoff),
            retry=retry_if_exception_type(TransportError),
            before_sleep=before_sleep,
        ):
            with attempt:
                self.connect_attempts = attempt.retry_state.attempt_number
                self.instance.session = await self.transport.connect(
                    self.instance.address, self.credential
                )

        self.log.success("SSH connection established.")

    async def install_packages(self) -> None:
        """``apt-get update`` then ``apt-get install``; either failing fails the droplet."""
        self._enter(InstanceState.INSTALLING)
        packages = " ".join(shlex.quote(p) for p in self.config.packages)
        self.log.info(f"Installing packages: {packages}")

        for command in (
            f"{APT_ENV} apt-get update",
            f"{APT_ENV} apt-get install -y {packages}",
        ):
            status, stderr = await self.session.exec(command)
            if status != 0:
                lines = stderr.strip().splitlines()
                raise CommandError(command, status, lines[-1] if lines else "")

        self.log.info("Packages installed")

    async def run_command(self) -> int | None:
        """Render and run the command; stdout goes to the output file."""
        self._enter(InstanceState.RUNNING)
        self.instance.ports = self._ports
        command = render(self.instance.template, TemplateVars.for_instance(self.instance))

        output_path = self.instance.output_path
        if output_path is None:
            raise CommandError(command, None, "no output path assigned")
        output_path.parent.mkdir(parents=True, exist_ok=True)

        self.log.info(f"Running command: {command}")
        with output_path.open("wb") as sink:
            status = await self.session.run(
                command,
                sink,
                lambda line: self.log.info(f"2>: {line}"),
                stdin=self.stdin,
            )

        self.log.info(f"Results: {output_path}")
        if status != 0:
            raise CommandError(command, status)

        self.log.success("Done.")
        return status

    async def start_proxy(self) -> None:
        """Open a local SOCKS listener tunnelled through this droplet."""
        self._enter(InstanceState.PROXYING)
        port = self.config.proxy_start_port + self.instance.index - 1
        await self.session.forward_socks(PROXY_LISTEN_HOST, port)
        self.instance.proxy_port = port
        self.log.success(f"SOCKS proxy listening on {PROXY_LISTEN_HOST}:{port}")


async def close_quietly(session: Session | None) -> None:
    """Close ``session`` ignoring errors; used when the fleet is going away."""
    if session is None:
        return
    with contextlib.suppress(OSError, TransportError):
        await session.close()


__all__ = ["SessionWorker", "WorkerResult", "close_quietly"]
