"""Price and market-cap calculator with sanity validation.

Pure functions only: no I/O, no shared state. Bad inputs never raise; they
produce a result with ``is_valid=False`` and every violated constraint listed.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from earnflow.core.constants import (
    LARGE_CAP_THRESHOLD,
    MEGA_CAP_THRESHOLD,
    MID_CAP_THRESHOLD,
)
from earnflow.models import SizeClass


@dataclass(frozen=True)
class PriceThresholds:
    """Sanity ceilings. Defaults match the documented configuration defaults."""

    max_price: float = 10_000.0
    max_shares_outstanding: float = 100_000_000_000.0
    max_price_change_pct: float = 50.0
    max_market_cap_change_pct: float = 100.0


DEFAULT_THRESHOLDS = PriceThresholds()


@dataclass(frozen=True)
class PriceCalculationResult:
    ticker: str
    price_change_percent: float | None = None
    market_cap: int | None = None
    market_cap_diff_percent: float | None = None
    market_cap_diff_billions: float | None = None
    size_class: SizeClass | None = None
    is_valid: bool = False
    validation_errors: list[str] = field(default_factory=list)


def size_class_for(market_cap: int | float | None) -> SizeClass | None:
    """Step function: Mega >= 100B, Large >= 10B, Mid >= 2B, else Small."""
    if market_cap is None:
        return None
    if market_cap >= MEGA_CAP_THRESHOLD:
        return SizeClass.MEGA
    if market_cap >= LARGE_CAP_THRESHOLD:
        return SizeClass.LARGE
    if market_cap >= MID_CAP_THRESHOLD:
        return SizeClass.MID
    return SizeClass.SMALL


def validate_inputs(
    current_price: float | None,
    previous_close: float | None,
    shares_outstanding: int | float | None,
    thresholds: PriceThresholds = DEFAULT_THRESHOLDS,
) -> list[str]:
    """Every violated input constraint, empty when inputs are usable."""
    errors: list[str] = []
    for name, value in (("current_price", current_price), ("previous_close", previous_close)):
        if value is None or not math.isfinite(value):
            errors.append(f"{name} is missing")
        elif value <= 0:
            errors.append(f"{name} must be positive: {value}")
        elif value > thresholds.max_price:
            errors.append(f"{name} exceeds {thresholds.max_price}: {value}")

    if shares_outstanding is None or not math.isfinite(shares_outstanding):
        errors.append("shares_outstanding is missing")
    elif shares_outstanding <= 0:
        errors.append(f"shares_outstanding must be positive: {shares_outstanding}")
    elif shares_outstanding > thresholds.max_shares_outstanding:
        errors.append(
            f"shares_outstanding exceeds {thresholds.max_shares_outstanding:.0f}: "
            f"{shares_outstanding}"
        )
    return errors


def price_change_percent(current_price: float, previous_close: float) -> float | None:
    if previous_close <= 0:
        return None
    value = (current_price - previous_close) / previous_close * 100
    return value if math.isfinite(value) else None


def calculate(
    current_price: float | None,
    previous_close: float | None,
    shares_outstanding: int | float | None,
    ticker: str,
    thresholds: PriceThresholds = DEFAULT_THRESHOLDS,
) -> PriceCalculationResult:
    """Compute price change, market cap, market-cap delta and size class.

    - Invalid inputs: nothing derived, every violation listed.
    - Extreme price move: percent and deltas nulled, market cap and size kept.
    - Extreme market-cap move only: percent kept, deltas nulled.

    Both caps use the same share count, so the market-cap delta equals the
    price move. The market-cap ceiling only rejects anything when it is set
    below ``max_price_change_pct``.
    """
    errors = validate_inputs(current_price, previous_close, shares_outstanding, thresholds)
    if errors:
        return PriceCalculationResult(ticker=ticker, validation_errors=errors)

    # validate_inputs guarantees these are positive finite numbers
    assert current_price is not None and previous_close is not None
    assert shares_outstanding is not None

    market_cap = round(current_price * shares_outstanding)
    size = size_class_for(market_cap)

    change = price_change_percent(current_price, previous_close)
    if change is None or abs(change) > thresholds.max_price_change_pct:
        shown = "non-finite" if change is None else f"{change:.2f}%"
        return PriceCalculationResult(
            ticker=ticker,
            market_cap=market_cap,
            size_class=size,
            validation_errors=[f"Extreme price change: {shown}"],
        )

    previous_cap = previous_close * shares_outstanding
    cap_diff = (current_price - previous_close) * shares_outstanding
    cap_diff_percent = cap_diff / previous_cap * 100
    if not math.isfinite(cap_diff_percent) or (
        abs(cap_diff_percent) > thresholds.max_market_cap_change_pct
    ):
        return PriceCalculationResult(
            ticker=ticker,
            price_change_percent=change,
            market_cap=market_cap,
            size_class=size,
            validation_errors=[f"Extreme market cap change: {cap_diff_percent:.2f}%"],
        )

    return PriceCalculationResult(
        ticker=ticker,
        price_change_percent=change,
        market_cap=market_cap,
        market_cap_diff_percent=cap_diff_percent,
        market_cap_diff_billions=cap_diff / 1_000_000_000,
        size_class=size,
        is_valid=True,
    )
