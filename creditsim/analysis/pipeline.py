"""
pipeline.py
-----------
Runs every analysis for one deal and memoizes the result per model.

run_full_analysis(config) → DealAnalysis
    projection → covenant report → debt capacity + alternative structures
    → stress suite → valuation

DealSession wraps run_full_analysis with a ResultCache keyed by the
session's model key: a run with unchanged inputs returns the cached
analysis; a run with changed inputs recomputes and notifies every
subscribed listener with the new DealAnalysis.
"""

import logging
from dataclasses import dataclass, replace
from typing import Callable, Optional

import pandas as pd

from creditsim.analysis.debt_capacity import (
    CapitalStructure, DebtCapacityResult, analyze_debt_capacity,
    current_structure, generate_alternative_structures,
)
from creditsim.analysis.scenarios import StressResult, run_stress_suite, stress_comparison_df
from creditsim.analysis.valuation import ValuationResult, run_valuation
from creditsim.model.assumptions import DealConfig
from creditsim.model.credit_engine import ProjectionResult, run_projection
from creditsim.model.metrics import is_applicable
from creditsim.model.validation import ValidationResult, validate_historical_data
from creditsim.utils.cache import ResultCache, input_fingerprint
from creditsim.utils.formatting import fmt_currency, fmt_multiple, fmt_pct

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DealAnalysis:
    config: DealConfig
    fingerprint: str
    projection: ProjectionResult
    capacity: Optional[DebtCapacityResult] = None
    current: Optional[CapitalStructure] = None
    alternatives: Optional[dict[str, CapitalStructure]] = None
    stress: Optional[dict[str, StressResult]] = None
    valuation: Optional[ValuationResult] = None

    @property
    def is_valid(self) -> bool:
        return self.projection.is_valid

    @property
    def validation(self) -> ValidationResult:
        """Input errors and warnings, including history data-quality warnings."""
        return self.projection.validation

    def summary_df(self) -> pd.DataFrame:
        p, c, v = self.projection, self.capacity, self.valuation
        stats = p.credit_stats
        rows = [
            ("Total Debt",           fmt_currency(p.debt_stack.total_debt)),
            ("Min DSCR",             fmt_multiple(stats.get("min_dscr"))),
            ("Min ICR",              fmt_multiple(stats.get("min_icr"))),
            ("Max Net Leverage",     fmt_multiple(stats.get("max_leverage"))),
            ("Covenant Breaches",    p.covenant_report.total_breaches),
            ("Max Sustainable Debt", fmt_currency(c.max_sustainable_debt) if c else "N/A"),
            ("Utilization",          fmt_pct(c.utilization_pct / 100) if c else "N/A"),
            ("Recommendation",       c.recommendation.value if c else "N/A"),
            ("Equity Value",         fmt_currency(v.equity_value) if v and v.is_valid else "N/A"),
        ]
        return pd.DataFrame(rows, columns=["Metric", "Value"]).set_index("Metric")

    def stress_df(self) -> Optional[pd.DataFrame]:
        return stress_comparison_df(self.stress) if self.stress else None


def run_full_analysis(config: DealConfig, parallel: bool = True) -> DealAnalysis:
    """
    Run projection, capacity, stress and valuation for one deal.
    An invalid projection short-circuits: only the projection (with its
    validation errors) is returned.
    """
    fingerprint = input_fingerprint(config)
    projection  = run_projection(config.assumptions, config.debt_stack,
                                 config.covenants, seed=config.seed)
    if config.history is not None:
        history_check = validate_historical_data(config.history)
        projection = replace(projection,
                             validation=projection.validation.merge(history_check))
    if not projection.is_valid:
        return DealAnalysis(config=config, fingerprint=fingerprint, projection=projection)

    capacity = analyze_debt_capacity(config.assumptions, projection,
                                     config.covenants, config.capacity)
    equity   = config.valuation.equity_contribution
    current  = current_structure(config.assumptions, capacity, config.covenants, equity)
    alts     = generate_alternative_structures(config.assumptions, capacity,
                                               config.covenants, equity, config.capacity)
    stress   = run_stress_suite(config.assumptions, config.debt_stack,
                                config.scenario_table(), config.history,
                                covenants=config.covenants, seed=config.seed,
                                parallel=parallel)
    valuation = run_valuation(projection, config.valuation)

    logger.info("%s: %s, min DSCR %s, %d/%d stress scenarios with breaches",
                config.name, capacity.recommendation.value,
                fmt_multiple(projection.credit_stats["min_dscr"]),
                sum(1 for s in stress.values() if s.total_breaches), len(stress))

    return DealAnalysis(
        config=config,
        fingerprint=fingerprint,
        projection=projection,
        capacity=capacity,
        current=current,
        alternatives=alts,
        stress=stress,
        valuation=valuation,
    )


AnalysisListener = Callable[[DealAnalysis], None]


class DealSession:
    """
    Memoized analysis for one logical model, with typed listeners.

        session = DealSession("deal-42")
        unsubscribe = session.subscribe(on_update)
        session.analyze(config)     # computes, notifies on_update
        session.analyze(config)     # cached, no notification
    """

    def __init__(self, model_key: str, cache: Optional[ResultCache] = None,
                 parallel: bool = True):
        self.model_key = model_key
        self.cache     = cache if cache is not None else ResultCache()
        self.parallel  = parallel
        self._listeners: list[AnalysisListener] = []

    def subscribe(self, listener: AnalysisListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)
        return unsubscribe

    def analyze(self, config: DealConfig) -> DealAnalysis:
        fingerprint = input_fingerprint(config)
        analysis, recomputed = self.cache.get_or_compute(
            self.model_key, fingerprint,
            lambda: run_full_analysis(config, parallel=self.parallel),
        )
        if recomputed:
            self._notify(analysis)
        return analysis

    def invalidate(self) -> None:
        self.cache.invalidate(self.model_key)

    def _notify(self, analysis: DealAnalysis) -> None:
        for listener in list(self._listeners):
            try:
                listener(analysis)
            except Exception:
                # a failing consumer must not block the others
                logger.exception("listener %r failed for %s", listener, self.model_key)


def recommended_structure(analysis: DealAnalysis) -> Optional[CapitalStructure]:
    """First covenant-compliant alternative with the most debt, if any."""
    if not analysis.alternatives:
        return None
    compliant = [s for s in analysis.alternatives.values()
                 if s.covenant_compliant and is_applicable(s.dscr)]
    return max(compliant, key=lambda s: s.debt, default=None)
