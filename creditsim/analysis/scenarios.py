"""
scenarios.py
------------
Runs the credit model under a table of named stress scenarios.

Each scenario shocks the base assumptions (revenue, margins, rates,
working capital), re-runs the full projection and covenant tests, and adds:
  - Liquidity runway (months of cash under the scenario's burn rate)
  - Refinancing risk for balloon structures
  - A composite 0-100 risk score mapped to LOW / MODERATE / ELEVATED / HIGH

Scenarios are independent, so the batch is a thread-pool map gathered by
scenario key.  A scenario that fails is replaced by a flagged, zeroed
result; the rest of the batch still completes.

Returns {scenario_key: StressResult} plus a comparison DataFrame helper.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

import numpy as np
import pandas as pd

from creditsim.model.assumptions import (
    BalanceSheetSeed, CovenantSet, DebtStack, FinancialAssumptions,
    HistoricalContext, StressScenario,
)
from creditsim.model.credit_engine import ProjectionResult, run_projection
from creditsim.model.metrics import NOT_APPLICABLE, Ratio, is_applicable, safe_divide
from creditsim.utils.formatting import fmt_months, fmt_multiple, fmt_ratio

logger = logging.getLogger(__name__)


MAX_RUNWAY_MONTHS = 36.0


class RiskLevel(str, Enum):
    LOW      = "LOW"
    MODERATE = "MODERATE"
    ELEVATED = "ELEVATED"
    HIGH     = "HIGH"

    def bumped(self) -> "RiskLevel":
        order = list(RiskLevel)
        return order[min(order.index(self) + 1, len(order) - 1)]


# ---------------------------------------------------------------------------
# Default scenario table
# ---------------------------------------------------------------------------

DEFAULT_STRESS_SCENARIOS: dict[str, StressScenario] = {
    "base": StressScenario("Base Case", "Management projections"),
    "revenue_down_10": StressScenario("Revenue -10%", "Moderate revenue decline",
                                      revenue_shock=-0.10),
    "revenue_down_20": StressScenario("Revenue -20%", "Significant revenue decline",
                                      revenue_shock=-0.20, severity_factor=0.9),
    "revenue_down_30": StressScenario("Revenue -30%", "Severe revenue decline",
                                      revenue_shock=-0.30, severity_factor=0.8),
    "margin_compression": StressScenario("Margin Compression", "COGS +5%, OpEx +3%",
                                         cogs_shock=0.05, opex_shock=0.03),
    "rate_hike_200": StressScenario("Rate +200bps", "200 bps rate shock", rate_shock=0.02),
    "rate_hike_300": StressScenario("Rate +300bps", "300 bps rate shock", rate_shock=0.03),
    "rate_hike_500": StressScenario("Rate +500bps", "500 bps rate shock", rate_shock=0.05,
                                    refinancing_stress=True),
    "working_capital": StressScenario("WC Stress", "Working capital +5% of revenue",
                                      wc_shock=0.05),
    "mild_recession": StressScenario("Mild Recession", "Revenue -15%, COGS +2%, Rate +1%",
                                     revenue_shock=-0.15, cogs_shock=0.02, rate_shock=0.01,
                                     severity_factor=0.9),
    "severe_recession": StressScenario("Severe Recession", "Revenue -25%, COGS +5%, Rate +2%",
                                       revenue_shock=-0.25, cogs_shock=0.05, rate_shock=0.02,
                                       refinancing_stress=True, severity_factor=0.75),
}


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RefinancingAssessment:
    balloon_year: int
    balloon_amount: float
    cash_at_balloon: float
    coverage: float
    stressed_leverage: Ratio
    stressed_min_dscr: Ratio
    level: RiskLevel


@dataclass(frozen=True)
class StressResult:
    key: str
    name: str
    description: str
    projection: Optional[ProjectionResult]
    min_dscr: Ratio
    min_icr: Ratio
    max_leverage: Ratio
    total_breaches: int
    runway_months: float
    refinancing: Optional[RefinancingAssessment]
    risk_score: int
    risk_level: RiskLevel
    failed: bool = False
    error: Optional[str] = None

    @classmethod
    def failed_result(cls, key: str, scenario: StressScenario, error: str) -> "StressResult":
        return cls(
            key=key, name=scenario.name, description=scenario.description,
            projection=None,
            min_dscr=0.0, min_icr=0.0, max_leverage=0.0,
            total_breaches=0, runway_months=0.0, refinancing=None,
            risk_score=100, risk_level=RiskLevel.HIGH,
            failed=True, error=error,
        )


# ---------------------------------------------------------------------------
# Historical context
# ---------------------------------------------------------------------------

def historical_metrics(history: Optional[HistoricalContext]) -> dict:
    """Revenue CAGR, growth volatility, average EBITDA margin and burn volatility."""
    out = {
        "revenue_cagr":        NOT_APPLICABLE,
        "revenue_volatility":  NOT_APPLICABLE,
        "volatility_level":    None,
        "avg_ebitda_margin":   NOT_APPLICABLE,
        "burn_volatility":     NOT_APPLICABLE,
    }
    if history is None:
        return out

    years = [h for h in history.years if h.revenue > 0]
    if len(years) >= 2:
        first, last = years[0], years[-1]
        n = last.year - first.year
        if n > 0:
            out["revenue_cagr"] = (last.revenue / first.revenue) ** (1 / n) - 1
        growth = [(b.revenue - a.revenue) / a.revenue for a, b in zip(years, years[1:])]
        vol = float(np.std(growth))
        out["revenue_volatility"] = vol
        out["volatility_level"] = "Low" if vol < 0.05 else "Moderate" if vol < 0.15 else "High"
    if years:
        out["avg_ebitda_margin"] = sum(h.ebitda / h.revenue for h in years) / len(years)

    burns = [abs(cf) for cf in history.monthly_operating_cash_flows if cf < 0]
    if len(burns) >= 2:
        mean = float(np.mean(burns))
        out["burn_volatility"] = float(np.std(burns)) / mean if mean > 0 else 0.0
    return out


# ---------------------------------------------------------------------------
# Per-scenario assessments
# ---------------------------------------------------------------------------

def liquidity_runway(projection: ProjectionResult, scenario: StressScenario,
                     burn_volatility: Ratio = NOT_APPLICABLE) -> float:
    """
    Months of cash at the scenario's burn rate, from average annual operating
    cash flow before debt service.  Non-negative cash flow = capped maximum.
    """
    years = projection.years
    if not years:
        return 0.0
    avg_ocf = sum(y.operating_cash_flow for y in years) / len(years)
    if avg_ocf >= 0:
        return MAX_RUNWAY_MONTHS

    cash = projection.seed.opening_cash
    if cash <= 0:
        return 0.0
    monthly_burn = abs(avg_ocf) / 12
    runway = cash / monthly_burn * scenario.severity_factor
    if is_applicable(burn_volatility):
        runway = runway / (1 + burn_volatility)
    return round(min(runway, MAX_RUNWAY_MONTHS), 1)


def assess_refinancing_risk(projection: ProjectionResult,
                            scenario: StressScenario) -> Optional[RefinancingAssessment]:
    """
    Coverage of balloon maturities by accumulated cash.  None when no
    tranche carries an effective balloon.
    """
    balloons = [t for t in projection.debt_stack if t.balloon_applies]
    if not balloons or not projection.years:
        return None

    cov   = projection.covenants
    stats = projection.credit_stats
    lev   = stats["max_leverage"]
    dscr  = stats["min_dscr"]

    worst = None
    for t in balloons:
        year   = min(t.tenor_years, len(projection.years))
        cash   = projection.years[year - 1].cash_balance
        amount = t.balloon_amount
        coverage = safe_divide(max(0.0, cash), amount)
        if worst is None or coverage < worst[2]:
            worst = (t.tenor_years, amount, coverage, cash)
    balloon_year, amount, coverage, cash = worst

    over_lev  = is_applicable(lev) and lev > cov.max_leverage
    weak_dscr = is_applicable(dscr) and dscr < 1.0
    soft_dscr = is_applicable(dscr) and dscr < cov.min_dscr

    if coverage < 0.5 or (coverage < 1.0 and (over_lev or weak_dscr)):
        level = RiskLevel.HIGH
    elif coverage < 1.0 or over_lev:
        level = RiskLevel.ELEVATED
    elif coverage < 1.5 or soft_dscr:
        level = RiskLevel.MODERATE
    else:
        level = RiskLevel.LOW

    if scenario.refinancing_stress:
        level = level.bumped()

    return RefinancingAssessment(
        balloon_year=balloon_year,
        balloon_amount=amount,
        cash_at_balloon=cash,
        coverage=coverage,
        stressed_leverage=lev,
        stressed_min_dscr=dscr,
        level=level,
    )


def composite_risk_score(projection: ProjectionResult, runway_months: float,
                         volatility_level: Optional[str] = None) -> tuple[int, RiskLevel]:
    """Weighted 0-100 score over breaches, runway, cushions and volatility."""
    cov   = projection.covenants
    stats = projection.credit_stats
    score = 0

    # Covenant breaches / DSCR cushion (0-40)
    dscr_cushion = (stats["min_dscr"] - cov.min_dscr
                    if is_applicable(stats["min_dscr"]) else math.inf)
    if projection.covenant_report.has_breaches:
        score += 40
    elif dscr_cushion < 0.2:
        score += 20
    elif dscr_cushion < 0.5:
        score += 10

    # Liquidity runway (0-30)
    if runway_months < 3:
        score += 30
    elif runway_months < 6:
        score += 20
    elif runway_months < 12:
        score += 10

    # Leverage cushion (0-15)
    lev_cushion = (cov.max_leverage - stats["max_leverage"]
                   if is_applicable(stats["max_leverage"]) else math.inf)
    if lev_cushion < 0:
        score += 15
    elif lev_cushion < 0.5:
        score += 10

    # Interest coverage cushion (0-10)
    icr_cushion = (stats["min_icr"] - cov.target_icr
                   if is_applicable(stats["min_icr"]) else math.inf)
    if icr_cushion < 0:
        score += 10
    elif icr_cushion < 0.5:
        score += 5

    # Historical volatility (0-10)
    if volatility_level == "High":
        score += 10

    # Floating rate exposure (0-5)
    if projection.debt_stack.has_floating_exposure:
        score += 5

    score = min(score, 100)
    if score >= 60:
        level = RiskLevel.HIGH
    elif score >= 40:
        level = RiskLevel.ELEVATED
    elif score >= 20:
        level = RiskLevel.MODERATE
    else:
        level = RiskLevel.LOW
    return score, level


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def run_stress_scenario(
    key: str,
    scenario: StressScenario,
    assumptions: FinancialAssumptions,
    debt_stack: DebtStack,
    covenants: CovenantSet,
    seed: BalanceSheetSeed,
    history: Optional[dict] = None,
) -> StressResult:
    history = history or historical_metrics(None)
    projection = run_projection(assumptions, debt_stack, covenants, scenario=scenario, seed=seed)
    if not projection.is_valid:
        return StressResult.failed_result(key, scenario, "; ".join(projection.validation.errors))

    runway = liquidity_runway(projection, scenario, history["burn_volatility"])
    refi   = assess_refinancing_risk(projection, scenario)
    score, level = composite_risk_score(projection, runway, history["volatility_level"])
    stats  = projection.credit_stats

    return StressResult(
        key=key,
        name=scenario.name,
        description=scenario.description,
        projection=projection,
        min_dscr=stats["min_dscr"],
        min_icr=stats["min_icr"],
        max_leverage=stats["max_leverage"],
        total_breaches=projection.covenant_report.total_breaches,
        runway_months=runway,
        refinancing=refi,
        risk_score=score,
        risk_level=level,
    )


def _run_isolated(args) -> StressResult:
    key, scenario = args[0], args[1]
    try:
        return run_stress_scenario(*args)
    except Exception as exc:
        logger.warning("stress scenario '%s' failed: %s", key, exc, exc_info=True)
        return StressResult.failed_result(key, scenario, f"{type(exc).__name__}: {exc}")


def run_stress_suite(
    assumptions: FinancialAssumptions,
    debt_stack: DebtStack,
    scenario_table: Optional[Mapping[str, StressScenario]] = None,
    historical_context: Optional[HistoricalContext] = None,
    covenants: Optional[CovenantSet] = None,
    seed: Optional[BalanceSheetSeed] = None,
    parallel: bool = True,
    max_workers: Optional[int] = None,
) -> dict[str, StressResult]:
    """
    Run every scenario in the table.

    Returns
    -------
    {scenario_key: StressResult}, in table order
    """
    table     = dict(scenario_table if scenario_table is not None else DEFAULT_STRESS_SCENARIOS)
    covenants = covenants or CovenantSet()
    seed      = seed or BalanceSheetSeed()
    history   = historical_metrics(historical_context)

    tasks = [(key, sc, assumptions, debt_stack, covenants, seed, history)
             for key, sc in table.items()]

    if parallel and len(tasks) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            results = list(pool.map(_run_isolated, tasks))
    else:
        results = [_run_isolated(t) for t in tasks]

    failed = [r.key for r in results if r.failed]
    if failed:
        logger.warning("%d of %d stress scenarios failed: %s",
                       len(failed), len(results), ", ".join(failed))
    return {r.key: r for r in results}


# ---------------------------------------------------------------------------
# Breaking points
# ---------------------------------------------------------------------------

def _first_breach_shock(assumptions, debt_stack, covenants, seed, make_scenario, shocks,
                        predicate) -> Optional[float]:
    for shock in shocks:
        proj = run_projection(assumptions, debt_stack, covenants,
                              scenario=make_scenario(shock), seed=seed)
        if not proj.is_valid or predicate(proj):
            return shock
    return None


def find_breaking_points(
    assumptions: FinancialAssumptions,
    debt_stack: DebtStack,
    covenants: Optional[CovenantSet] = None,
    seed: Optional[BalanceSheetSeed] = None,
) -> dict:
    """
    Smallest revenue decline (1% steps) and rate increase (50 bp steps)
    that first produce a covenant breach, plus the revenue decline at which
    DSCR drops below 1.0x.  None = not reached within the search range.
    """
    covenants = covenants or CovenantSet()
    seed      = seed or BalanceSheetSeed()
    declines  = [-k / 100 for k in range(0, 96)]
    hikes     = [k * 0.005 for k in range(0, 41)]

    def breached(p):
        return p.covenant_report.has_breaches

    def below_one(p):
        d = p.credit_stats["min_dscr"]
        return is_applicable(d) and d < 1.0

    def revenue(s):
        return StressScenario(f"Revenue {s:+.0%}", revenue_shock=s)

    def rate(s):
        return StressScenario(f"Rate +{s * 1e4:.0f}bps", rate_shock=s)

    rev_break  = _first_breach_shock(assumptions, debt_stack, covenants, seed, revenue, declines, breached)
    critical   = _first_breach_shock(assumptions, debt_stack, covenants, seed, revenue, declines, below_one)
    rate_break = _first_breach_shock(assumptions, debt_stack, covenants, seed, rate, hikes, breached)

    return {
        "revenue_decline_to_breach":  abs(rev_break) if rev_break is not None else None,
        "revenue_decline_to_dscr_1x": abs(critical) if critical is not None else None,
        "rate_increase_to_breach":    rate_break,
    }


# ---------------------------------------------------------------------------
# Comparison table
# ---------------------------------------------------------------------------

def stress_comparison_df(results: Mapping[str, StressResult]) -> pd.DataFrame:
    rows = []
    for key, r in results.items():
        rows.append({
            "Scenario":       r.name,
            "Min DSCR":       fmt_multiple(r.min_dscr) if not r.failed else "FAILED",
            "Min ICR":        fmt_multiple(r.min_icr) if not r.failed else "FAILED",
            "Max Leverage":   fmt_multiple(r.max_leverage) if not r.failed else "FAILED",
            "Breaches":       r.total_breaches,
            "Runway":         fmt_months(r.runway_months),
            "Refinancing":    r.refinancing.level.value if r.refinancing else "N/A",
            "Coverage":       fmt_ratio(r.refinancing.coverage) if r.refinancing else "N/A",
            "Risk Score":     r.risk_score,
            "Risk Level":     r.risk_level.value,
        })
    return pd.DataFrame(rows).set_index("Scenario")
