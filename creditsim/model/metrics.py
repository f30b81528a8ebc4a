"""
metrics.py
----------
Ratio helpers shared by the projection engine and every downstream
analysis.  A ratio that cannot be computed (no debt outstanding, zero
interest, no collateral) is reported as NOT_APPLICABLE rather than
NaN or infinity, so callers cannot mistake it for a numeric breach.
"""

from typing import Iterable, Union


class _NotApplicable:
    """Singleton sentinel for an undefined ratio."""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "N/A"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self):
        return (_NotApplicable, ())


NOT_APPLICABLE = _NotApplicable()

Ratio = Union[float, _NotApplicable]


def is_applicable(value) -> bool:
    return value is not NOT_APPLICABLE and value is not None


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    if denominator == 0:
        return default
    return numerator / denominator


def ratio_or_na(numerator: float, denominator: float) -> Ratio:
    if denominator == 0:
        return NOT_APPLICABLE
    return numerator / denominator


# ---------------------------------------------------------------------------
# Credit ratios
# ---------------------------------------------------------------------------

def dscr(cfads: float, debt_service: float, debt_outstanding: float) -> Ratio:
    """CFADS / total debt service."""
    if debt_outstanding <= 0 or debt_service <= 0:
        return NOT_APPLICABLE
    return cfads / debt_service


def icr(earnings: float, interest: float, debt_outstanding: float) -> Ratio:
    """EBITDA (or EBIT) / interest expense."""
    if debt_outstanding <= 0 or interest <= 0:
        return NOT_APPLICABLE
    return earnings / interest


def net_leverage(net_debt: float, ebitda: float, debt_outstanding: float) -> Ratio:
    """Net debt / EBITDA. Undefined when EBITDA is not positive."""
    if debt_outstanding <= 0 or ebitda <= 0:
        return NOT_APPLICABLE
    return net_debt / ebitda


def loan_to_value(debt: float, collateral_value: float, debt_outstanding: float) -> Ratio:
    if debt_outstanding <= 0 or collateral_value <= 0:
        return NOT_APPLICABLE
    return debt / collateral_value


# ---------------------------------------------------------------------------
# Aggregation over applicable values
# ---------------------------------------------------------------------------

def _applicable(values: Iterable[Ratio]) -> list:
    return [v for v in values if is_applicable(v)]


def mean_ratio(values: Iterable[Ratio]) -> Ratio:
    vals = _applicable(values)
    if not vals:
        return NOT_APPLICABLE
    return sum(vals) / len(vals)


def min_ratio(values: Iterable[Ratio]) -> Ratio:
    vals = _applicable(values)
    return min(vals) if vals else NOT_APPLICABLE


def max_ratio(values: Iterable[Ratio]) -> Ratio:
    vals = _applicable(values)
    return max(vals) if vals else NOT_APPLICABLE


def as_float(value: Ratio, default: float = float("nan")) -> float:
    """Convert for display tables only (pandas wants NaN)."""
    return value if is_applicable(value) else default
