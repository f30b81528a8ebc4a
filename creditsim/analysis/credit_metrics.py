"""
credit_metrics.py
-----------------
Covenant compliance testing on the projected capital structure.

Tested by year (when debt is outstanding):
  - DSCR      = CFADS / total debt service         (>= min DSCR)
  - ICR       = EBITDA or EBIT / interest expense  (>= target ICR)
  - Leverage  = Net Debt / EBITDA                  (<= max leverage)
  - LTV       = Debt / collateral value            (<= max LTV, optional)

Each check is PASS, MARGINAL (passes but within the marginal band of the
threshold; informational only) or BREACH.  Years with no debt outstanding
are excluded from testing entirely, and an undefined ratio skips that check.

Also generates a covenant-headroom DataFrame for display.
"""

from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

import pandas as pd

from creditsim.model.assumptions import CovenantSet
from creditsim.model.metrics import is_applicable
from creditsim.model.projection import ProjectionYear


class CovenantKind(str, Enum):
    DSCR     = "DSCR"
    ICR      = "ICR"
    LEVERAGE = "Net Debt / EBITDA"
    LTV      = "LTV"


class CovenantStatus(str, Enum):
    PASS     = "PASS"
    MARGINAL = "MARGINAL"
    BREACH   = "BREACH"


@dataclass(frozen=True)
class BreachRecord:
    """One covenant test for one year (named for its main use: breaches)."""
    year: int
    kind: CovenantKind
    actual: float
    threshold: float
    direction: str        # ">=" higher is safer, "<=" lower is safer
    cushion: float        # signed; positive = on the safe side
    status: CovenantStatus = CovenantStatus.BREACH

    @property
    def is_breach(self) -> bool:
        return self.status == CovenantStatus.BREACH


@dataclass(frozen=True)
class CovenantReport:
    checks: tuple[BreachRecord, ...]
    excluded_years: tuple[int, ...]

    @property
    def breaches(self) -> tuple[BreachRecord, ...]:
        return tuple(c for c in self.checks if c.status == CovenantStatus.BREACH)

    @property
    def marginal(self) -> tuple[BreachRecord, ...]:
        return tuple(c for c in self.checks if c.status == CovenantStatus.MARGINAL)

    @property
    def has_breaches(self) -> bool:
        return bool(self.breaches)

    @property
    def total_breaches(self) -> int:
        return len(self.breaches)

    def breach_counts(self) -> dict[CovenantKind, int]:
        return dict(Counter(b.kind for b in self.breaches))

    def breached_years(self) -> tuple[int, ...]:
        return tuple(sorted({b.year for b in self.breaches}))

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([{
            "Year":      c.year,
            "Covenant":  c.kind.value,
            "Actual":    round(c.actual, 2),
            "Threshold": c.threshold,
            "Test":      c.direction,
            "Headroom":  round(c.cushion, 2),
            "Status":    c.status.value,
        } for c in self.checks])


def _check(year: int, kind: CovenantKind, actual: float, threshold: float,
           direction: str, band: float) -> BreachRecord:
    if direction == ">=":
        cushion  = actual - threshold
        breach   = actual < threshold
        marginal = actual < threshold * (1 + band)
    else:
        cushion  = threshold - actual
        breach   = actual > threshold
        marginal = actual > threshold * (1 - band)

    if breach:
        status = CovenantStatus.BREACH
    elif marginal:
        status = CovenantStatus.MARGINAL
    else:
        status = CovenantStatus.PASS
    return BreachRecord(year, kind, actual, threshold, direction, cushion, status)


def evaluate_covenants(years: Sequence[ProjectionYear],
                       covenants: CovenantSet) -> CovenantReport:
    """
    Parameters
    ----------
    years     : projection output
    covenants : thresholds, static for the run

    Returns
    -------
    CovenantReport with every check plus the years excluded for having no debt
    """
    band = covenants.marginal_band
    tests = [
        (CovenantKind.DSCR,     "dscr",     covenants.min_dscr,     ">="),
        (CovenantKind.ICR,      "icr",      covenants.target_icr,   ">="),
        (CovenantKind.LEVERAGE, "leverage", covenants.max_leverage, "<="),
    ]
    if covenants.max_ltv is not None:
        tests.append((CovenantKind.LTV, "ltv", covenants.max_ltv, "<="))

    checks, excluded = [], []
    for y in years:
        if not y.has_debt:
            excluded.append(y.year_index)
            continue
        for kind, attr, threshold, direction in tests:
            actual = getattr(y, attr)
            if not is_applicable(actual):
                continue
            checks.append(_check(y.year_index, kind, actual, threshold, direction, band))

    return CovenantReport(checks=tuple(checks), excluded_years=tuple(excluded))


def check_covenant_breaches(report: CovenantReport) -> dict[str, list]:
    """Years in breach, grouped by covenant (keys: dscr, icr, leverage, ltv)."""
    out = {"dscr": [], "icr": [], "leverage": [], "ltv": []}
    keys = {CovenantKind.DSCR: "dscr", CovenantKind.ICR: "icr",
            CovenantKind.LEVERAGE: "leverage", CovenantKind.LTV: "ltv"}
    for b in report.breaches:
        out[keys[b.kind]].append(b.year)
    return out
