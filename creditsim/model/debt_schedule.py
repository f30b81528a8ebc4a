"""
debt_schedule.py
----------------
Combines per-tranche amortization schedules into one annual debt-service
schedule for the whole stack.

Key mechanics:
  - Schedules of different lengths are aligned by year; a matured tranche
    contributes zero thereafter
  - Year 1 blended rate = sum(principal x rate) / sum(principal)
  - Pure reduce over tranches: inputs are never modified

Returns a DebtStackSchedule with per-year totals and per-tranche detail,
plus summary / per-tranche DataFrames.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import pandas as pd

from creditsim.model.amortization import AmortizationSchedule, build_amortization_schedule
from creditsim.model.assumptions import DebtStack

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrancheYear:
    name: str
    beginning_balance: float
    principal: float         # includes balloon
    interest: float
    ending_balance: float


@dataclass(frozen=True)
class DebtServiceYear:
    year: int
    beginning_balance: float
    interest: float
    principal: float          # scheduled amortization + balloon
    balloon: float
    ending_balance: float
    by_tranche: tuple[TrancheYear, ...] = ()

    @property
    def total_debt_service(self) -> float:
        return self.interest + self.principal


@dataclass(frozen=True)
class DebtStackSchedule:
    years: tuple[DebtServiceYear, ...]
    tranche_schedules: tuple[AmortizationSchedule, ...]
    blended_rate: float

    def __len__(self) -> int:
        return len(self.years)

    def year(self, yr: int) -> DebtServiceYear:
        """Aggregate row for a year; zero row beyond the last maturity."""
        if 1 <= yr <= len(self.years):
            return self.years[yr - 1]
        return DebtServiceYear(yr, 0.0, 0.0, 0.0, 0.0, 0.0, ())

    @property
    def total_debt_service(self) -> float:
        return sum(y.total_debt_service for y in self.years)

    def summary_df(self) -> pd.DataFrame:
        rows = []
        for y in self.years:
            row = {
                "Year":               y.year,
                "Beginning Debt":     round(y.beginning_balance, 2),
                "Principal":          round(y.principal - y.balloon, 2),
                "Balloon":            round(y.balloon, 2),
                "Interest":           round(y.interest, 2),
                "Total Debt Service": round(y.total_debt_service, 2),
                "Ending Debt":        round(y.ending_balance, 2),
            }
            for t in y.by_tranche:
                row[f"{t.name} Balance"] = round(t.ending_balance, 2)
            rows.append(row)
        return pd.DataFrame(rows)

    def tranche_dfs(self) -> dict[str, pd.DataFrame]:
        return {s.tranche.name: s.to_frame() for s in self.tranche_schedules}


def aggregate_debt_schedules(
    schedules: Sequence[AmortizationSchedule],
    horizon: Optional[int] = None,
) -> DebtStackSchedule:
    """
    Parameters
    ----------
    schedules : per-tranche schedules (any lengths)
    horizon   : number of years to report; defaults to the longest schedule

    Returns
    -------
    DebtStackSchedule
    """
    n = horizon if horizon is not None else max((len(s) for s in schedules), default=0)

    total_principal = sum(s.tranche.principal for s in schedules)
    blended = (sum(s.tranche.principal * s.tranche.rate for s in schedules) / total_principal
               if total_principal > 0 else 0.0)

    years = []
    for yr in range(1, n + 1):
        detail = []
        for s in schedules:
            p = s.period(yr)
            detail.append(TrancheYear(
                name=s.tranche.name,
                beginning_balance=p.beginning_balance,
                principal=p.total_principal,
                interest=p.interest,
                ending_balance=p.ending_balance,
            ))
        years.append(DebtServiceYear(
            year=yr,
            beginning_balance=sum(t.beginning_balance for t in detail),
            interest=sum(t.interest for t in detail),
            principal=sum(t.principal for t in detail),
            balloon=sum(s.period(yr).balloon for s in schedules),
            ending_balance=sum(t.ending_balance for t in detail),
            by_tranche=tuple(detail),
        ))

    return DebtStackSchedule(
        years=tuple(years),
        tranche_schedules=tuple(schedules),
        blended_rate=blended,
    )


def build_debt_stack_schedule(stack: DebtStack,
                              horizon: Optional[int] = None) -> DebtStackSchedule:
    """Build every tranche schedule, then aggregate."""
    schedules = [build_amortization_schedule(t, horizon) for t in stack]
    result = aggregate_debt_schedules(schedules, horizon)
    logger.debug("debt stack: %d tranches, total %.2f, blended rate %.4f",
                 len(stack), stack.total_debt, result.blended_rate)
    return result

