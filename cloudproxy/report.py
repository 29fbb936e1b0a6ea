"""Operator-facing summaries printed with rich."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import TYPE_CHECKING

from rich.console import Console
from rich.table import Table
from rich.text import Text

from cloudproxy.constants import PROXY_LISTEN_HOST
from cloudproxy.instance import Instance, InstanceState

if TYPE_CHECKING:
    from cloudproxy.orchestrator import TeardownReport
    from cloudproxy.worker import WorkerResult

GREEN = "green"
YELLOW = "yellow"
RED = "red"

_STATE_STYLE = {
    InstanceState.COMPLETED: GREEN,
    InstanceState.FAILED: RED,
}


def results_table(results: Sequence[WorkerResult]) -> Table:
    """One row per droplet, in index order."""
    table = Table(title="Droplets", title_justify="left", header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("name")
    table.add_column("region")
    table.add_column("address")
    table.add_column("state")
    table.add_column("exit", justify="right")
    table.add_column("output / proxy")

    for r in sorted(results, key=lambda r: r.instance.index):
        inst = r.instance
        target = ""
        if inst.proxy_port is not None:
            target = f"socks5://{PROXY_LISTEN_HOST}:{inst.proxy_port}"
        elif r.output_path is not None:
            target = str(r.output_path)
        table.add_row(
            inst.label,
            inst.name,
            inst.region,
            inst.address or "-",
            Text(str(r.state), style=_STATE_STYLE.get(r.state, YELLOW)),
            "" if r.exit_status is None else str(r.exit_status),
            target,
        )
    return table


def teardown_table(report: TeardownReport) -> Table:
    """Droplets that failed to delete and may need manual cleanup."""
    table = Table(
        title="Droplets that may need manual clean up",
        title_justify="left",
        title_style=RED,
        header_style="bold",
    )
    table.add_column("id", justify="right")
    table.add_column("name")
    table.add_column("error")
    for inst, error in report.failed:
        table.add_row(str(inst.id), inst.name, error)
    return table


def proxychains(instances: Sequence[Instance]) -> str:
    """``[ProxyList]`` entries for proxychains.conf."""
    lines = ["[ProxyList]"]
    lines.extend(
        f"socks5 {PROXY_LISTEN_HOST} {inst.proxy_port}"
        for inst in instances
        if inst.proxy_port is not None
    )
    return "\n".join(lines)


def socksd(instances: Sequence[Instance]) -> str:
    """``"upstreams"`` block for a socksd configuration."""
    upstreams = [
        {"type": "socks5", "address": f"{PROXY_LISTEN_HOST}:{inst.proxy_port}"}
        for inst in instances
        if inst.proxy_port is not None
    ]
    return f'"upstreams": {json.dumps(upstreams, indent=2)}'


def print_results(results: Sequence[WorkerResult], console: Console | None = None) -> None:
    console = console or Console(stderr=True)
    console.print(results_table(results))


def print_proxy_config(instances: Sequence[Instance], console: Console | None = None) -> None:
    console = console or Console()
    console.print(proxychains(instances), markup=False, highlight=False)
    console.print()
    console.print(socksd(instances), markup=False, highlight=False)


def print_teardown(report: TeardownReport, console: Console | None = None) -> None:
    if not report.failed:
        return
    console = console or Console(stderr=True)
    console.print(teardown_table(report))


__all__ = [
    "print_proxy_config",
    "print_results",
    "print_teardown",
    "proxychains",
    "results_table",
    "socksd",
    "teardown_table",
]
