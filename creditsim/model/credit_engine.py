"""
credit_engine.py
----------------
Master orchestrator: runs the full projection for a given set of
assumptions, debt stack and covenants, and returns every output in a
single ProjectionResult.

Pipeline:
  - Apply stress scenario (optional, via builder functions)
  - Validate inputs; invalid inputs return an invalid result, never raise
  - Per-tranche amortization → aggregated debt schedule
  - Projected IS / CFS / debt position (Year 1..N)
  - Covenant evaluation and summary credit statistics
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from creditsim.analysis.credit_metrics import BreachRecord, CovenantReport, evaluate_covenants
from creditsim.model.assumptions import (
    BalanceSheetSeed, CovenantSet, DebtStack, FinancialAssumptions,
    StressScenario, apply_scenario,
)
from creditsim.model.debt_schedule import DebtStackSchedule, build_debt_stack_schedule
from creditsim.model.projection import (
    ProjectionYear, build_projection, projection_df, summarize_credit_stats,
)
from creditsim.model.validation import ValidationResult, check_input_types, validate_inputs

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProjectionResult:
    assumptions: FinancialAssumptions
    debt_stack: DebtStack
    covenants: CovenantSet
    seed: BalanceSheetSeed
    validation: ValidationResult
    scenario_name: Optional[str] = None
    years: tuple[ProjectionYear, ...] = ()
    debt_schedule: Optional[DebtStackSchedule] = None
    covenant_report: CovenantReport = field(default_factory=lambda: CovenantReport((), ()))
    credit_stats: dict = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return self.validation.is_valid

    @property
    def breaches(self) -> tuple[BreachRecord, ...]:
        return self.covenant_report.breaches

    @property
    def first_year(self) -> Optional[ProjectionYear]:
        return self.years[0] if self.years else None

    @property
    def last_year(self) -> Optional[ProjectionYear]:
        return self.years[-1] if self.years else None

    def raise_for_errors(self) -> None:
        self.validation.raise_for_errors()

    def to_frame(self) -> pd.DataFrame:
        return projection_df(self.years)


def run_projection(
    assumptions: FinancialAssumptions,
    debt_stack: DebtStack,
    covenants: Optional[CovenantSet] = None,
    scenario: Optional[StressScenario] = None,
    seed: Optional[BalanceSheetSeed] = None,
) -> ProjectionResult:
    """
    Run the full projection.

    Parameters
    ----------
    assumptions : FinancialAssumptions (unshocked)
    debt_stack  : DebtStack
    covenants   : CovenantSet (defaults apply when None)
    scenario    : optional StressScenario applied before running
    seed        : opening cash / working capital / PP&E

    Returns
    -------
    ProjectionResult; check .is_valid before reading .years
    """
    covenants = covenants or CovenantSet()
    seed      = seed or BalanceSheetSeed()
    name      = scenario.name if scenario is not None else None

    validation = check_input_types(assumptions, debt_stack, covenants, seed=seed)
    if validation.is_valid:
        if scenario is not None:
            assumptions, debt_stack = apply_scenario(assumptions, debt_stack, scenario)
        validation = validate_inputs(assumptions, debt_stack, covenants)
    if not validation.is_valid:
        logger.warning("projection%s rejected: %s",
                       f" [{name}]" if name else "", "; ".join(validation.errors))
        return ProjectionResult(assumptions, debt_stack, covenants, seed,
                                validation, scenario_name=name)

    horizon  = assumptions.projection_years
    schedule = build_debt_stack_schedule(debt_stack, horizon)
    years    = build_projection(assumptions, schedule, seed, covenants.icr_basis)
    report   = evaluate_covenants(years, covenants)
    stats    = summarize_credit_stats(years)

    logger.debug("projection%s: %d years, %d breaches",
                 f" [{name}]" if name else "", len(years), report.total_breaches)

    return ProjectionResult(
        assumptions=assumptions,
        debt_stack=debt_stack,
        covenants=covenants,
        seed=seed,
        validation=validation,
        scenario_name=name,
        years=years,
        debt_schedule=schedule,
        covenant_report=report,
        credit_stats=stats,
    )
