"""Parsing and contiguous splitting of nmap-style port lists."""

from __future__ import annotations

from cloudproxy.exceptions import PortSpecError

MIN_PORT = 1
MAX_PORT = 65535


def _parse_port(token: str, spec: str) -> int:
    try:
        port = int(token)
    except ValueError:
        raise PortSpecError(f"Invalid port {token!r} in {spec!r}") from None
    if not MIN_PORT <= port <= MAX_PORT:
        raise PortSpecError(f"Port {port} out of range {MIN_PORT}-{MAX_PORT} in {spec!r}")
    return port


def parse_ports(spec: str) -> list[int]:
    """Expand ``"22,80,1000-2000"`` into a sorted list of unique ports.

    Open-ended ranges follow nmap: ``"-1024"`` starts at 1 and ``"60000-"``
    runs to 65535.
    """
    ports: set[int] = set()
    for item in spec.split(","):
        item = item.strip()
        if not item:
            continue
        if "-" in item:
            lo_raw, _, hi_raw = item.partition("-")
            lo = _parse_port(lo_raw.strip(), spec) if lo_raw.strip() else MIN_PORT
            hi = _parse_port(hi_raw.strip(), spec) if hi_raw.strip() else MAX_PORT
            if lo > hi:
                raise PortSpecError(f"Descending range {item!r} in {spec!r}")
            ports.update(range(lo, hi + 1))
        else:
            ports.add(_parse_port(item, spec))

    if not ports:
        raise PortSpecError(f"No ports in {spec!r}")
    return sorted(ports)


def format_ports(ports: list[int]) -> str:
    """Collapse sorted ports back into the shortest comma/range form."""
    if not ports:
        return ""

    runs: list[str] = []
    start = prev = ports[0]
    for port in ports[1:]:
        if port == prev + 1:
            prev = port
            continue
        runs.append(str(start) if start == prev else f"{start}-{prev}")
        start = prev = port
    runs.append(str(start) if start == prev else f"{start}-{prev}")
    return ",".join(runs)


def split_contiguous(spec: str, n: int) -> list[str]:
    """Split ``spec`` into ``n`` buckets of consecutive ports.

    Buckets follow ascending port order and their sizes differ by at most
    one; earlier buckets take the extra ports. ``"1-100"`` into 4 gives
    ``["1-25", "26-50", "51-75", "76-100"]``.

    Raises:
        PortSpecError: If the spec is invalid or holds fewer than ``n`` ports.
    """
    if n < 1:
        raise PortSpecError(f"Cannot split ports into {n} buckets")

    ports = parse_ports(spec)
    if n > len(ports):
        raise PortSpecError(f"Cannot split {len(ports)} ports into {n} buckets")

    size, extra = divmod(len(ports), n)
    buckets: list[str] = []
    start = 0
    for i in range(n):
        end = start + size + (1 if i < extra else 0)
        buckets.append(format_ports(ports[start:end]))
        start = end
    return buckets


__all__ = ["MAX_PORT", "MIN_PORT", "format_ports", "parse_ports", "split_contiguous"]
