"""Fleet orchestration: create droplets, run one worker per droplet, tear down.

Flow:
    validate config -> list regions -> allocate -> create per region
    -> install interrupt handler -> index + port buckets -> workers (joined)
    -> summary -> hold until interrupt (or destroy at once) -> teardown

Teardown always covers every droplet the provider created, including
droplets from a batch that failed halfway, and never stops at the first
failed delete.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from loguru import logger
from rich.console import Console

from cloudproxy import report
from cloudproxy.broadcast import Broadcaster, read_keystrokes
from cloudproxy.exceptions import ProvisioningError
from cloudproxy.instance import Instance, instances_from_records
from cloudproxy.logging import instance_logger
from cloudproxy.ports import split_contiguous
from cloudproxy.regions import allocate
from cloudproxy.template import TemplateVars, render
from cloudproxy.worker import SessionWorker, WorkerResult, close_quietly

if TYPE_CHECKING:
    from cloudproxy.config import RunConfig
    from cloudproxy.credentials import Credential
    from cloudproxy.providers.protocols import CloudProvider, InstanceRecord
    from cloudproxy.transport import Transport

INTERRUPT_SIGNALS = (signal.SIGINT, signal.SIGTERM)


# =============================================================================
# Teardown
# =============================================================================


@dataclass(frozen=True, slots=True)
class TeardownReport:
    """Outcome of deleting a fleet."""

    deleted: tuple[Instance, ...] = ()
    failed: tuple[tuple[Instance, str], ...] = ()

    @property
    def ok(self) -> bool:
        return not self.failed


async def teardown(provider: CloudProvider, instances: Sequence[Instance]) -> TeardownReport:
    """Delete every droplet in ``instances`` concurrently.

    A failed delete is logged and recorded; it never stops the others.
    An empty fleet makes no provider calls.
    """
    if not instances:
        return TeardownReport()

    async def destroy(instance: Instance) -> str | None:
        try:
            await provider.delete_instance(instance.id)
        except Exception as e:
            logger.error(f"Could not delete droplet name: {instance.name} ({e})")
            return str(e) or type(e).__name__
        logger.success(f"Deleted droplet name: {instance.name}")
        return None

    errors = await asyncio.gather(*(destroy(inst) for inst in instances))

    return TeardownReport(
        deleted=tuple(inst for inst, err in zip(instances, errors) if err is None),
        failed=tuple((inst, err) for inst, err in zip(instances, errors) if err is not None),
    )


# =============================================================================
# Orchestrator
# =============================================================================


class FleetOrchestrator:
    """Runs one fleet from creation to teardown.

    Example:
        >>> async with DigitalOceanProvider(token=token) as provider:
        ...     orchestrator = FleetOrchestrator(config, provider, SSHTransport(), credential)
        ...     status = await orchestrator.run()
    """

    def __init__(
        self,
        config: RunConfig,
        provider: CloudProvider,
        transport: Transport,
        credential: Credential,
        *,
        interrupt: asyncio.Event | None = None,
        console: Console | None = None,
        keystrokes: TextIO | None = None,
    ) -> None:
        self.config = config
        self.provider = provider
        self.transport = transport
        self.credential = credential
        self.interrupt = interrupt or asyncio.Event()
        self.console = console or Console(stderr=True)
        self.keystrokes = keystrokes
        self.fleet: list[Instance] = []
        self.results: list[WorkerResult] = []
        self._teardown: TeardownReport | None = None
        self._signals_installed: list[signal.Signals] = []

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def run(self) -> int:
        """Run the fleet; return the process exit status.

        Raises:
            ConfigurationError: Before any droplet is created.
            ProvisioningError: A create call failed; the partial fleet is gone.
        """
        self.config.validate()

        self.fleet = await self.provision()
        logger.info("Droplets deployed.")

        self._install_signal_handlers()
        try:
            self._prepare(self.fleet)
            results = await self._run_workers()
            if results is None:
                return 0

            self.results = results
            self._summarise(results)

            if self.config.keep_alive and not self.interrupt.is_set():
                logger.info("Please CTRL-C to destroy droplets")
                await self.interrupt.wait()
            return 0
        finally:
            # signal handlers must outlive teardown
            try:
                await self.destroy()
            finally:
                self._remove_signal_handlers()

    # -------------------------------------------------------------------------
    # Provisioning
    # -------------------------------------------------------------------------

    async def provision(self) -> list[Instance]:
        """Create the fleet region by region.

        The first failing create stops provisioning; every droplet created so
        far is deleted and ProvisioningError raised. The provider appends each
        acknowledged batch to ``created``, so cancellation mid-region still
        tears down every droplet that exists.
        """
        available = await self.provider.list_regions()
        plan = allocate(available, self.config.regions, self.config.count)

        logger.info(f"creating {self.config.count} droplets")
        created: list[InstanceRecord] = []

        try:
            for region, count in plan.items():
                logger.info(f"Creating {count} droplets in region {region}")
                try:
                    await self.provider.create_instances(
                        self.config.name_prefix,
                        region,
                        self.credential.fingerprint,
                        count,
                        sink=created,
                    )
                except Exception as e:
                    logger.error(f"There was an error creating the droplets: {e}")
                    await self._abort(created)
                    raise ProvisioningError(
                        f"Creating droplets in {region} failed after {len(created)} "
                        f"were created: {e}"
                    ) from e
        except asyncio.CancelledError:
            logger.warning("Interrupted while creating droplets")
            await self._abort(created)
            raise

        return instances_from_records(created)

    async def _abort(self, created: Sequence[InstanceRecord]) -> None:
        logger.warning("Attempting cleanup...")
        self.fleet = instances_from_records(created)
        result = await self.destroy()
        if not result.ok:
            logger.error("You may need to do some manual clean up!")

    def _prepare(self, instances: Sequence[Instance]) -> None:
        """Fix template and output path per droplet before any worker starts."""
        for inst in instances:
            inst.template = self.config.command
            if not self.config.proxy:
                variables = TemplateVars(index=inst.label, address="", name=inst.name)
                inst.output_path = Path(render(self.config.output, variables))

    # -------------------------------------------------------------------------
    # Workers
    # -------------------------------------------------------------------------

    def _workers(self) -> tuple[list[SessionWorker], Broadcaster | None]:
        buckets = [""] * len(self.fleet)
        if self.config.distribute_ports:
            buckets = split_contiguous(self.config.ports, len(self.fleet))

        broadcaster = Broadcaster() if self.config.forward_stdin and not self.config.proxy else None

        workers = [
            SessionWorker(
                inst,
                self.config,
                self.provider,
                self.transport,
                self.credential,
                ports=bucket,
                stdin=broadcaster.subscribe(inst.name) if broadcaster else None,
            )
            for inst, bucket in zip(self.fleet, buckets)
        ]
        return workers, broadcaster

    async def _join(self, workers: Sequence[SessionWorker]) -> list[WorkerResult]:
        async with asyncio.TaskGroup() as tg:
            tasks = [
                tg.create_task(w.run(), name=f"worker-{w.instance.label}") for w in workers
            ]
        return [t.result() for t in tasks]

    async def _run_workers(self) -> list[WorkerResult] | None:
        """Run every worker to a terminal state; None if interrupted first."""
        workers, broadcaster = self._workers()
        logger.info("Establishing SSH connections...")

        join = asyncio.create_task(self._join(workers), name="join")
        interrupted = asyncio.create_task(self.interrupt.wait(), name="interrupt")
        keys = (
            asyncio.create_task(
                read_keystrokes(broadcaster, self.keystrokes or sys.stdin), name="stdin"
            )
            if broadcaster is not None
            else None
        )

        try:
            await asyncio.wait({join, interrupted}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if keys is not None and keys.done() and not keys.cancelled() and keys.exception():
                logger.warning(f"Keystroke forwarding stopped: {keys.exception()}")
            # join is still running only when the interrupt (or an outer
            # cancellation) came first
            for task in (keys, interrupted, join):
                if task is not None and not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

        if join.cancelled():
            return None
        return join.result()

    def _summarise(self, results: Sequence[WorkerResult]) -> None:
        failed = [r for r in results if not r.ok]
        for r in failed:
            instance_logger(r.instance).error(f"Failed: {r.error}")

        report.print_results(results, self.console)
        if self.config.proxy:
            report.print_proxy_config([r.instance for r in results if r.ok])
            logger.info(f"{len(results) - len(failed)} proxies up.")
        else:
            logger.info("Done. All commands have been run.")

    # -------------------------------------------------------------------------
    # Teardown & signals
    # -------------------------------------------------------------------------

    async def destroy(self) -> TeardownReport:
        """Tear the fleet down once; later calls return the first report."""
        if self._teardown is not None:
            return self._teardown

        if self.fleet:
            logger.info("Terminating droplets...")
        for inst in self.fleet:
            await close_quietly(inst.session)

        self._teardown = await teardown(self.provider, self.fleet)
        report.print_teardown(self._teardown, self.console)
        return self._teardown

    def _on_signal(self, sig: signal.Signals) -> None:
        if self.interrupt.is_set():
            logger.warning(f"{sig.name} received again; teardown already in progress")
            return
        logger.info(f"{sig.name} received")
        self.interrupt.set()

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in INTERRUPT_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError, ValueError):
                # No loop signal support here (Windows, non-main thread).
                continue
            self._signals_installed.append(sig)

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals_installed:
            loop.remove_signal_handler(sig)
        self._signals_installed.clear()


__all__ = ["FleetOrchestrator", "TeardownReport", "teardown"]
