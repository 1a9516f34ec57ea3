"""Guidance surprise calculation and release reconciliation.

A surprise is only ever computed between figures describing the same fiscal
period and year. Basis selection order:

1. ``consensus``: provider-supplied guide-vs-consensus percentage
2. ``estimate``: (guidance - estimate) / |estimate| * 100, when accounting
   methods are compatible
3. ``previous_mid``: guidance vs the midpoint of the previous guidance range

Near-zero denominators and non-finite inputs give ``None``, never inf/NaN.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

from earnflow.models import (
    EarningsRecord,
    FiscalPeriod,
    GuidanceRecord,
    normalize_fiscal_period,
    release_rank,
)

Basis = Literal["consensus", "estimate", "previous_mid"]

EPSILON = 1e-6
DEFAULT_EXTREME_PCT = 300.0

GAAP_METHODS = frozenset({"gaap", "reported", "reported_gaap"})
NON_GAAP_METHODS = frozenset(
    {"non-gaap", "non_gaap", "adj", "adjusted", "operating", "pro_forma"}
)


@dataclass(frozen=True)
class SurpriseResult:
    value: float | None = None
    basis: Basis | None = None
    extreme: bool = False


NO_SURPRISE = SurpriseResult()


def normalize_period(value: str | int | FiscalPeriod | None) -> FiscalPeriod | None:
    if isinstance(value, FiscalPeriod):
        return value
    return normalize_fiscal_period(value)


def periods_match(
    period_a: str | FiscalPeriod | None,
    year_a: int | None,
    period_b: str | FiscalPeriod | None,
    year_b: int | None,
) -> bool:
    """Exact match on normalized period and year. Unknown never matches."""
    a = normalize_period(period_a)
    b = normalize_period(period_b)
    if a is None or b is None or year_a is None or year_b is None:
        return False
    return a == b and year_a == year_b


def _method_family(method: str | None) -> str | None:
    if method is None or not method.strip():
        return None
    key = method.strip().lower()
    if key in GAAP_METHODS:
        return "gaap"
    if key in NON_GAAP_METHODS:
        return "non_gaap"
    return key


def methods_compatible(method_a: str | None, method_b: str | None) -> bool:
    """Same accounting family. Unknown on either side counts as compatible."""
    family_a = _method_family(method_a)
    family_b = _method_family(method_b)
    if family_a is None or family_b is None:
        return True
    return family_a == family_b


def pct_diff(value: float | None, base: float | None, eps: float = EPSILON) -> float | None:
    if value is None or base is None:
        return None
    if not math.isfinite(value) or not math.isfinite(base) or abs(base) < eps:
        return None
    result = (value - base) / base * 100
    return result if math.isfinite(result) else None


def midpoint(low: float | None, high: float | None) -> float | None:
    if low is None or high is None:
        return None
    return (low + high) / 2


def compute_surprise(
    guide: float | None,
    *,
    guide_period: str | FiscalPeriod | None,
    guide_year: int | None,
    estimate_period: str | FiscalPeriod | None,
    estimate_year: int | None,
    consensus_pct: float | None = None,
    estimate: float | None = None,
    previous_min: float | None = None,
    previous_max: float | None = None,
    guide_method: str | None = None,
    estimate_method: str | None = None,
    extreme_threshold: float = DEFAULT_EXTREME_PCT,
) -> SurpriseResult:
    """Surprise of a guidance figure, tagged with the basis used."""
    if not periods_match(guide_period, guide_year, estimate_period, estimate_year):
        return NO_SURPRISE

    def tagged(value: float | None, basis: Basis) -> SurpriseResult:
        if value is None or not math.isfinite(value):
            return NO_SURPRISE
        return SurpriseResult(value=value, basis=basis, extreme=abs(value) > extreme_threshold)

    if consensus_pct is not None:
        return tagged(consensus_pct, "consensus")

    if (
        guide is not None
        and estimate is not None
        and methods_compatible(guide_method, estimate_method)
    ):
        value = pct_diff(guide, estimate)
        if value is not None:
            return tagged(value, "estimate")

    mid = midpoint(previous_min, previous_max)
    if guide is not None and mid is not None:
        return tagged(pct_diff(guide, mid), "previous_mid")

    return NO_SURPRISE


def apply_surprises(
    guidance: GuidanceRecord,
    earnings: EarningsRecord | None,
    extreme_threshold: float = DEFAULT_EXTREME_PCT,
) -> GuidanceRecord:
    """Return a copy of ``guidance`` with EPS and revenue surprises filled in."""
    period = earnings.fiscal_period if earnings else None
    year = earnings.fiscal_year if earnings else None

    eps = compute_surprise(
        guidance.estimated_eps_guidance,
        guide_period=guidance.fiscal_period,
        guide_year=guidance.fiscal_year,
        estimate_period=period,
        estimate_year=year,
        consensus_pct=guidance.eps_guide_vs_consensus_pct,
        estimate=earnings.eps_estimate if earnings else None,
        previous_min=guidance.previous_min_eps_guidance,
        previous_max=guidance.previous_max_eps_guidance,
        guide_method=guidance.eps_method,
        extreme_threshold=extreme_threshold,
    )
    revenue = compute_surprise(
        _as_float(guidance.estimated_revenue_guidance),
        guide_period=guidance.fiscal_period,
        guide_year=guidance.fiscal_year,
        estimate_period=period,
        estimate_year=year,
        consensus_pct=guidance.revenue_guide_vs_consensus_pct,
        estimate=_as_float(earnings.revenue_estimate) if earnings else None,
        previous_min=_as_float(guidance.previous_min_revenue_guidance),
        previous_max=_as_float(guidance.previous_max_revenue_guidance),
        guide_method=guidance.revenue_method,
        extreme_threshold=extreme_threshold,
    )
    return guidance.model_copy(
        update={
            "eps_guide_surprise": eps.value,
            "eps_guide_basis": eps.basis,
            "eps_guide_extreme": eps.extreme,
            "revenue_guide_surprise": revenue.value,
            "revenue_guide_basis": revenue.basis,
            "revenue_guide_extreme": revenue.extreme,
        }
    )


def _authority(record: GuidanceRecord) -> tuple[int, datetime, str]:
    return (release_rank(record.release_type), record.last_updated, record.provider_id or "")


def reconcile_guidance(records: Iterable[GuidanceRecord]) -> list[GuidanceRecord]:
    """Keep the most authoritative release per (ticker, fiscal_period, fiscal_year).

    Authority: release rank (final > revised/update > preliminary), then the
    most recent ``last_updated``, then the greatest provider id.
    """
    best: dict[tuple[str, FiscalPeriod, int], GuidanceRecord] = {}
    for record in records:
        key = (record.ticker, record.fiscal_period, record.fiscal_year)
        current = best.get(key)
        if current is None or _authority(record) > _authority(current):
            best[key] = record
    return list(best.values())


def _as_float(value: int | float | None) -> float | None:
    return None if value is None else float(value)
