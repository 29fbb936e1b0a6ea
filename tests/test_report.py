import io
import json
from pathlib import Path

import pytest
from rich.console import Console

from cloudproxy import report
from cloudproxy.instance import Instance, InstanceState
from cloudproxy.orchestrator import TeardownReport
from cloudproxy.worker import WorkerResult

pytestmark = [pytest.mark.unit]


def _proxied(index: int, port: int | None) -> Instance:
    return Instance(id=index, name=f"p{index}", index=index, label=str(index), proxy_port=port)


def _console() -> tuple[Console, io.StringIO]:
    buffer = io.StringIO()
    return Console(file=buffer, width=160, color_system=None), buffer


class TestProxyConfig:
    def test_proxychains(self):
        instances = [_proxied(1, 55555), _proxied(2, 55556), _proxied(3, None)]
        assert report.proxychains(instances) == (
            "[ProxyList]\nsocks5 127.0.0.1 55555\nsocks5 127.0.0.1 55556"
        )

    def test_socksd(self):
        text = report.socksd([_proxied(1, 55555)])
        assert text.startswith('"upstreams": ')
        upstreams = json.loads(text.removeprefix('"upstreams": '))
        assert upstreams == [{"type": "socks5", "address": "127.0.0.1:55555"}]


class TestTables:
    def test_results_table_sorted_by_index(self):
        results = [
            WorkerResult(instance=_proxied(2, None), state=InstanceState.FAILED, error="boom"),
            WorkerResult(
                instance=_proxied(1, None),
                state=InstanceState.COMPLETED,
                exit_status=0,
                output_path=Path("out-1.xml"),
            ),
        ]
        table = report.results_table(results)
        assert table.row_count == 2

        console, buffer = _console()
        console.print(table)
        output = buffer.getvalue()
        assert output.index("p1") < output.index("p2")
        assert "out-1.xml" in output

    def test_teardown_printed_only_on_failure(self):
        instance = _proxied(1, None)
        console, buffer = _console()

        report.print_teardown(TeardownReport(deleted=(instance,)), console)
        assert buffer.getvalue() == ""

        report.print_teardown(TeardownReport(failed=((instance, "500 Internal"),)), console)
        assert "500 Internal" in buffer.getvalue()
