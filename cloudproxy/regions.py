"""Distribution of a droplet count across regions."""

from __future__ import annotations

from collections.abc import Iterable

from cloudproxy.exceptions import NoEligibleRegionsError

ALL_REGIONS = "*"


def eligible_regions(available: Iterable[str], selector: str, limit: int) -> list[str]:
    """Regions of ``available`` matching ``selector``, at most ``limit`` of them.

    Order follows ``available``; duplicates are dropped.
    """
    if selector.strip() == ALL_REGIONS:
        allowed = None
    else:
        allowed = {s.strip() for s in selector.split(",") if s.strip()}

    eligible: list[str] = []
    for region in available:
        if len(eligible) == limit:
            break
        if region in eligible:
            continue
        if allowed is None or region in allowed:
            eligible.append(region)
    return eligible


def allocate(available: Iterable[str], selector: str, total: int) -> dict[str, int]:
    """Spread ``total`` droplets as evenly as possible over eligible regions.

    Args:
        available: Region slugs the provider can create droplets in.
        selector: ``"*"`` for every region, or a comma-separated allow-list.
        total: Number of droplets to place.

    Returns:
        Mapping of region slug to droplet count. Counts sum to ``total`` and
        differ by at most one; the first ``total % len(regions)`` regions in
        iteration order receive the extra droplet.

    Raises:
        ValueError: If ``total`` is not positive.
        NoEligibleRegionsError: If no available region matches ``selector``.
    """
    if total < 1:
        raise ValueError(f"total must be positive, got {total}")

    regions = eligible_regions(available, selector, total)
    if not regions:
        raise NoEligibleRegionsError(selector)

    base, remainder = divmod(total, len(regions))
    return {region: base + (1 if i < remainder else 0) for i, region in enumerate(regions)}


__all__ = ["ALL_REGIONS", "allocate", "eligible_regions"]
