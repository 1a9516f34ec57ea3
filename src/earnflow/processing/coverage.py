"""Data-quality coverage of a day's snapshot and the publish gate."""

from __future__ import annotations

from collections.abc import Collection, Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import Any

from earnflow.core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Coverage:
    """Percent (0-100, rounded) of rows with each kind of data populated."""

    schedule: int = 0
    price: int = 0
    eps_rev: int = 0

    def to_dict(self) -> dict[str, int]:
        data = asdict(self)
        data["epsRev"] = data.pop("eps_rev")
        return data


@dataclass(frozen=True)
class CoverageThresholds:
    schedule: int = 0
    price: int = 98
    eps_rev: int = 10


def _percent(part: int, total: int) -> int:
    return round(part / total * 100) if total else 0


def compute_coverage(
    rows: Sequence[Mapping[str, Any]],
    exclude: Collection[str] = (),
) -> Coverage:
    """Coverage over ``rows``, ignoring tickers in ``exclude``.

    - schedule: a session timing is known
    - price: a current price is present
    - eps_rev: some EPS figure and some revenue figure are present
    """
    valid = [row for row in rows if row.get("ticker") not in exclude]
    total = len(valid)
    with_schedule = sum(1 for row in valid if row.get("report_time"))
    with_price = sum(1 for row in valid if row.get("current_price") is not None)
    with_eps_rev = sum(
        1
        for row in valid
        if (row.get("eps_estimate") is not None or row.get("eps_actual") is not None)
        and (row.get("revenue_estimate") is not None or row.get("revenue_actual") is not None)
    )
    return Coverage(
        schedule=_percent(with_schedule, total),
        price=_percent(with_price, total),
        eps_rev=_percent(with_eps_rev, total),
    )


def passes_gate(coverage: Coverage, thresholds: CoverageThresholds) -> bool:
    passes = (
        coverage.schedule >= thresholds.schedule
        and coverage.price >= thresholds.price
        and coverage.eps_rev >= thresholds.eps_rev
    )
    logger.debug(
        "Coverage gate checked",
        schedule=coverage.schedule,
        price=coverage.price,
        eps_rev=coverage.eps_rev,
        passes=passes,
    )
    return passes
