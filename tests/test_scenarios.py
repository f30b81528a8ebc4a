"""Tests for the stress engine: batch runs, runway, refinancing and risk scoring."""

from __future__ import annotations

from dataclasses import replace

import pytest

from creditsim.analysis import scenarios
from creditsim.analysis.scenarios import (
    DEFAULT_STRESS_SCENARIOS, MAX_RUNWAY_MONTHS, RiskLevel, StressResult,
    assess_refinancing_risk, composite_risk_score, find_breaking_points,
    historical_metrics, liquidity_runway, run_stress_suite, stress_comparison_df,
)
from creditsim.model.assumptions import (
    BalanceSheetSeed, DebtStack, HistoricalContext, HistoricalYear, StressScenario,
)
from creditsim.model.credit_engine import run_projection
from creditsim.model.metrics import NOT_APPLICABLE


def _comparable(result: StressResult):
    return (result.key, result.min_dscr, result.min_icr, result.max_leverage,
            result.total_breaches, result.runway_months, result.risk_score,
            result.risk_level, result.failed)


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

class TestStressSuite:
    def test_default_table_keys(self, reference_deal):
        a, stack, cov = reference_deal
        results = run_stress_suite(a, stack, covenants=cov)
        assert list(results) == list(DEFAULT_STRESS_SCENARIOS)
        assert not any(r.failed for r in results.values())

    def test_base_scenario_matches_plain_projection(self, reference_deal):
        a, stack, cov = reference_deal
        results = run_stress_suite(a, stack, covenants=cov)
        plain = run_projection(a, stack, cov)
        assert results["base"].projection.years == plain.years
        assert results["base"].min_dscr == plain.credit_stats["min_dscr"]

    @pytest.mark.parametrize("cogs, opex", [(0.30, 0.55), (0.96, 0.02)])
    def test_base_scenario_keeps_high_cost_margins(self, reference_deal, cogs, opex):
        a, stack, cov = reference_deal
        a = replace(a, cogs_pct=cogs, opex_pct=opex)
        plain = run_projection(a, stack, cov)
        based = run_projection(a, stack, cov, scenario=StressScenario("Base Case"))
        suite = run_stress_suite(a, stack, {"base": StressScenario("Base Case")},
                                 covenants=cov, parallel=False)
        assert plain.is_valid
        assert based.assumptions == a
        assert based.first_year.ebitda == pytest.approx(plain.first_year.ebitda)
        assert based.years == plain.years
        assert suite["base"].projection.years == plain.years

    def test_parallel_matches_sequential_and_order(self, reference_deal):
        a, stack, cov = reference_deal
        table = dict(DEFAULT_STRESS_SCENARIOS)
        reversed_table = dict(reversed(list(table.items())))
        parallel = run_stress_suite(a, stack, table, covenants=cov, parallel=True)
        sequential = run_stress_suite(a, stack, reversed_table, covenants=cov, parallel=False)
        assert list(sequential) == list(reversed_table)
        for key in table:
            assert _comparable(parallel[key]) == _comparable(sequential[key])
            assert parallel[key].projection.years == sequential[key].projection.years

    def test_stress_worsens_coverage(self, reference_deal):
        a, stack, cov = reference_deal
        results = run_stress_suite(a, stack, covenants=cov)
        assert results["revenue_down_20"].min_dscr < results["base"].min_dscr
        assert results["rate_hike_300"].min_icr < results["base"].min_icr

    def test_invalid_scenario_is_isolated(self, reference_deal):
        a, stack, cov = reference_deal
        table = {
            "base": StressScenario("Base Case"),
            "broken": StressScenario("Broken", cogs_shock=0.45, opex_shock=0.30),
        }
        results = run_stress_suite(a, stack, table, covenants=cov)
        broken = results["broken"]
        assert broken.failed
        assert "COGS" in broken.error
        assert broken.risk_score == 100
        assert broken.risk_level == RiskLevel.HIGH
        assert broken.min_dscr == 0.0
        assert not results["base"].failed

    def test_exception_is_isolated(self, reference_deal, monkeypatch):
        a, stack, cov = reference_deal
        original = scenarios.liquidity_runway

        def flaky(projection, scenario, burn_volatility=NOT_APPLICABLE):
            if scenario.name == "Rate +300bps":
                raise RuntimeError("boom")
            return original(projection, scenario, burn_volatility)

        monkeypatch.setattr(scenarios, "liquidity_runway", flaky)
        results = run_stress_suite(a, stack, covenants=cov)
        assert results["rate_hike_300"].failed
        assert "boom" in results["rate_hike_300"].error
        assert sum(r.failed for r in results.values()) == 1

    def test_comparison_frame(self, reference_deal):
        a, stack, cov = reference_deal
        df = stress_comparison_df(run_stress_suite(a, stack, covenants=cov))
        assert len(df) == len(DEFAULT_STRESS_SCENARIOS)
        assert df.loc["Base Case", "Min DSCR"] == "1.14x"
        assert df.loc["Base Case", "Refinancing"] == "N/A"


# ---------------------------------------------------------------------------
# Assessments
# ---------------------------------------------------------------------------

class TestLiquidityRunway:
    def test_positive_cash_flow_is_capped(self, reference_deal):
        projection = run_projection(*reference_deal)
        assert liquidity_runway(projection, StressScenario("Base")) == MAX_RUNWAY_MONTHS

    def _burning(self, reference_deal, cash):
        a, stack, cov = reference_deal
        a = replace(a, capex_pct=0.50)
        return run_projection(a, stack, cov, seed=BalanceSheetSeed(opening_cash=cash))

    def test_burn_rate_runway(self, reference_deal):
        projection = self._burning(reference_deal, 1_000_000.0)
        assert projection.years[0].operating_cash_flow == pytest.approx(-2_000_000.0)
        assert liquidity_runway(projection, StressScenario("Base")) == pytest.approx(6.0)

    def test_severity_and_volatility_adjustments(self, reference_deal):
        projection = self._burning(reference_deal, 1_000_000.0)
        severe = StressScenario("Severe", severity_factor=0.5)
        assert liquidity_runway(projection, severe) == pytest.approx(3.0)
        assert liquidity_runway(projection, StressScenario("Base"), 0.5) == pytest.approx(4.0)

    def test_no_cash_while_burning(self, reference_deal):
        projection = self._burning(reference_deal, 0.0)
        assert liquidity_runway(projection, StressScenario("Base")) == 0.0


class TestRefinancingRisk:
    def test_balloon_coverage(self, reference_deal, balloon_tranche):
        a, _, cov = reference_deal
        projection = run_projection(a, DebtStack((balloon_tranche,)), cov)
        assessment = assess_refinancing_risk(projection, StressScenario("Base"))
        assert assessment.balloon_year == 5
        assert assessment.balloon_amount == pytest.approx(5_000_000.0)
        assert assessment.cash_at_balloon == pytest.approx(1_000_000.0)
        assert assessment.coverage == pytest.approx(0.2)
        assert assessment.level == RiskLevel.HIGH

    def test_refinancing_stress_bumps_level(self, reference_deal, balloon_tranche):
        a, _, cov = reference_deal
        projection = run_projection(a, DebtStack((balloon_tranche,)), cov,
                                    seed=BalanceSheetSeed(opening_cash=20_000_000.0))
        calm = assess_refinancing_risk(projection, StressScenario("Base"))
        stressed = assess_refinancing_risk(
            projection, StressScenario("Refi", refinancing_stress=True))
        # cash covers the balloon but the balloon year DSCR is below the minimum
        assert calm.coverage > 1.5
        assert calm.level == RiskLevel.MODERATE
        assert stressed.level == RiskLevel.ELEVATED

    def test_no_balloon_no_assessment(self, reference_deal):
        projection = run_projection(*reference_deal)
        assert assess_refinancing_risk(projection, StressScenario("Base")) is None

    def test_level_bump_saturates(self):
        assert RiskLevel.LOW.bumped() == RiskLevel.MODERATE
        assert RiskLevel.HIGH.bumped() == RiskLevel.HIGH


class TestRiskScore:
    def test_reference_deal_score(self, reference_deal):
        projection = run_projection(*reference_deal)
        score, level = composite_risk_score(projection, MAX_RUNWAY_MONTHS)
        assert score == 40
        assert level == RiskLevel.ELEVATED

    def test_short_runway_and_volatility_add(self, reference_deal):
        projection = run_projection(*reference_deal)
        score, level = composite_risk_score(projection, 2.0, volatility_level="High")
        assert score == 80
        assert level == RiskLevel.HIGH

    def test_score_in_range(self, reference_deal):
        a, stack, cov = reference_deal
        for r in run_stress_suite(a, stack, covenants=cov).values():
            assert 0 <= r.risk_score <= 100


# ---------------------------------------------------------------------------
# History and breaking points
# ---------------------------------------------------------------------------

class TestHistory:
    def test_steady_growth(self, history):
        out = historical_metrics(history)
        assert out["revenue_cagr"] == pytest.approx(0.10)
        assert out["revenue_volatility"] == pytest.approx(0.0, abs=1e-12)
        assert out["volatility_level"] == "Low"
        assert out["avg_ebitda_margin"] == pytest.approx(0.20)
        assert out["burn_volatility"] is NOT_APPLICABLE

    def test_volatile_history(self):
        history = HistoricalContext(
            years=(HistoricalYear(2021, 100.0, 10.0),
                   HistoricalYear(2022, 150.0, 15.0),
                   HistoricalYear(2023, 120.0, 12.0)),
            monthly_operating_cash_flows=(-100.0, -300.0, 50.0),
        )
        out = historical_metrics(history)
        assert out["volatility_level"] == "High"
        assert out["burn_volatility"] == pytest.approx(0.5)

    def test_missing_history(self):
        assert historical_metrics(None)["volatility_level"] is None


class TestBreakingPoints:
    def test_reference_deal(self, reference_deal):
        points = find_breaking_points(*reference_deal)
        assert points["revenue_decline_to_breach"] == 0.0
        assert points["revenue_decline_to_dscr_1x"] == pytest.approx(0.13)
        assert points["rate_increase_to_breach"] == 0.0

    def test_comfortable_deal(self, reference_deal):
        from creditsim.model.assumptions import with_debt_level
        a, stack, cov = reference_deal
        points = find_breaking_points(a, with_debt_level(stack, 5_000_000.0), cov)
        assert points["revenue_decline_to_breach"] > 0.0
        assert points["rate_increase_to_breach"] != 0.0
