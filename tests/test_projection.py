"""Tests for the projection engine and the run_projection orchestrator."""

from __future__ import annotations

from dataclasses import replace

import pytest

from creditsim.model.assumptions import (
    BalanceSheetSeed, CovenantSet, DebtStack, DebtTranche, IcrBasis,
    StressScenario, apply_scenario, shocked_assumptions, shocked_debt_stack,
    with_debt_level,
)
from creditsim.model.credit_engine import run_projection
from creditsim.model.metrics import NOT_APPLICABLE, is_applicable
from creditsim.model.validation import InvalidConfigurationError
from creditsim.utils.formatting import format_projection_df

LEVEL_SERVICE = 2_637_974.81


# ---------------------------------------------------------------------------
# Operating lines
# ---------------------------------------------------------------------------

class TestOperatingLines:
    def test_first_year_income_statement(self, operating_assumptions):
        result = run_projection(operating_assumptions, DebtStack())
        y1 = result.years[0]
        assert y1.year == 2025
        assert y1.revenue == pytest.approx(1_000.0)
        assert y1.ebitda == pytest.approx(300.0)
        assert y1.da == pytest.approx(5.0)
        assert y1.ebit == pytest.approx(295.0)
        assert y1.tax == pytest.approx(73.75)
        assert y1.net_income == pytest.approx(221.25)

    def test_first_year_cash_flow(self, operating_assumptions):
        y1 = run_projection(operating_assumptions, DebtStack()).years[0]
        assert y1.delta_wc == pytest.approx(0.0)
        assert y1.operating_cash_flow == pytest.approx(176.25)
        assert y1.fcff == pytest.approx(176.25)
        assert y1.fcf == pytest.approx(176.25)
        assert y1.cash_balance == pytest.approx(176.25)

    def test_growth_applies_from_second_year(self, operating_assumptions):
        years = run_projection(operating_assumptions, DebtStack()).years
        assert years[1].revenue == pytest.approx(1_100.0)
        assert years[1].delta_wc == pytest.approx(10.0)
        assert years[1].da == pytest.approx(9.5)
        assert years[4].revenue == pytest.approx(1_000.0 * 1.1 ** 4)

    def test_tax_never_negative(self, operating_assumptions):
        stack = DebtStack((DebtTranche("Heavy", 10_000.0, 0.10, 5),))
        years = run_projection(operating_assumptions, stack).years
        assert years[0].ebt < 0
        assert years[0].tax == 0.0


# ---------------------------------------------------------------------------
# Credit ratios
# ---------------------------------------------------------------------------

class TestCreditRatios:
    def test_reference_deal_first_year(self, reference_deal):
        a, stack, cov = reference_deal
        y1 = run_projection(a, stack, cov).years[0]
        assert y1.operating_cash_flow == pytest.approx(3_000_000.0)
        assert y1.debt_service == pytest.approx(LEVEL_SERVICE, abs=1.0)
        assert y1.dscr == pytest.approx(1.137, abs=1e-3)
        assert y1.icr == pytest.approx(3.0)
        assert y1.net_debt == pytest.approx(8_000_000.0, abs=1.0)
        assert y1.leverage == pytest.approx(8.0 / 3.0, abs=1e-6)

    def test_reference_deal_breaches_every_year(self, reference_deal):
        result = run_projection(*reference_deal)
        assert result.covenant_report.total_breaches == 5
        assert result.covenant_report.breached_years() == (1, 2, 3, 4, 5)
        assert result.credit_stats["min_dscr"] == pytest.approx(1.137, abs=1e-3)
        assert result.credit_stats["cumulative_fcf"] == pytest.approx(
            5 * (3_000_000.0 - LEVEL_SERVICE), abs=5.0)

    def test_no_debt_ratios_not_applicable(self, operating_assumptions):
        result = run_projection(operating_assumptions, DebtStack())
        for y in result.years:
            assert not y.has_debt
            assert y.dscr is NOT_APPLICABLE
            assert y.icr is NOT_APPLICABLE
            assert y.leverage is NOT_APPLICABLE
        assert result.covenant_report.checks == ()
        assert result.covenant_report.excluded_years == (1, 2, 3, 4, 5)
        assert result.credit_stats["min_dscr"] is NOT_APPLICABLE

    def test_matured_tranche_years_excluded(self, reference_deal):
        a, _, cov = reference_deal
        stack = DebtStack((DebtTranche("Short", 1_000_000.0, 0.10, 2),))
        result = run_projection(a, stack, cov)
        assert is_applicable(result.years[1].dscr)
        assert result.years[2].dscr is NOT_APPLICABLE
        assert result.covenant_report.excluded_years == (3, 4, 5)

    def test_net_debt_can_be_negative(self, reference_deal):
        a, _, cov = reference_deal
        stack = DebtStack((DebtTranche("Small", 1_000_000.0, 0.10, 5),))
        y1 = run_projection(a, stack, cov, seed=BalanceSheetSeed(opening_cash=5_000_000.0)).years[0]
        assert y1.net_debt < 0
        assert y1.leverage < 0

    def test_icr_on_ebit_basis(self, operating_assumptions):
        stack = DebtStack((DebtTranche("Loan", 500.0, 0.10, 5),))
        cov = CovenantSet(icr_basis=IcrBasis.EBIT)
        y1 = run_projection(operating_assumptions, stack, cov).years[0]
        assert y1.icr == pytest.approx(295.0 / 50.0)

    def test_ltv_uses_collateral(self, reference_deal):
        a, stack, cov = reference_deal
        a = replace(a, collateral_value=20_000_000.0)
        y1 = run_projection(a, stack, cov).years[0]
        assert y1.ltv == pytest.approx(y1.ending_debt / 20_000_000.0)


# ---------------------------------------------------------------------------
# Orchestration
# ---------------------------------------------------------------------------

class TestRunProjection:
    def test_idempotent(self, reference_deal):
        first, second = run_projection(*reference_deal), run_projection(*reference_deal)
        assert first.years == second.years
        assert first.credit_stats == second.credit_stats
        assert first.covenant_report == second.covenant_report

    def test_base_scenario_matches_unshocked_run(self, reference_deal):
        plain = run_projection(*reference_deal)
        based = run_projection(*reference_deal, scenario=StressScenario("Base Case"))
        assert based.scenario_name == "Base Case"
        assert based.years == plain.years
        assert based.credit_stats == plain.credit_stats

    def test_scenario_shocks_applied(self, reference_deal):
        scenario = StressScenario("Combined", revenue_shock=-0.10, rate_shock=0.02)
        y1 = run_projection(*reference_deal, scenario=scenario).years[0]
        assert y1.revenue == pytest.approx(9_000_000.0)
        assert y1.interest == pytest.approx(1_200_000.0)

    def test_invalid_inputs_return_invalid_result(self, reference_deal):
        a, stack, cov = reference_deal
        result = run_projection(replace(a, cogs_pct=0.70, opex_pct=0.40), stack, cov)
        assert not result.is_valid
        assert result.years == ()
        assert result.first_year is None
        with pytest.raises(InvalidConfigurationError):
            result.raise_for_errors()

    def test_frames(self, reference_deal):
        df = run_projection(*reference_deal).to_frame()
        assert list(df.columns) == [f"Year {i}" for i in range(1, 6)]
        shown = format_projection_df(df)
        assert shown.loc["DSCR (x)", "Year 1"] == "1.14x"
        assert shown.loc["Revenue", "Year 1"] == "JMD 10.0M"
        assert shown.loc["LTV", "Year 1"] == "N/A"


class TestScenarioBuilders:
    def test_rate_free_scenario_keeps_stack(self, reference_deal):
        _, stack, _ = reference_deal
        assert shocked_debt_stack(stack, StressScenario("Revenue", revenue_shock=-0.1)) is stack

    def test_margin_shocks_clamped(self, reference_deal):
        a, _, _ = reference_deal
        shocked = shocked_assumptions(a, StressScenario("Extreme", cogs_shock=0.9, opex_shock=0.9))
        assert shocked.cogs_pct == 1.0
        assert shocked.opex_pct == 1.0
        relief = shocked_assumptions(a, StressScenario("Relief", cogs_shock=-0.9))
        assert relief.cogs_pct == 0.0

    def test_zero_shock_returns_same_assumptions(self, reference_deal):
        a, _, _ = reference_deal
        heavy = replace(a, cogs_pct=0.30, opex_pct=0.55)
        assert shocked_assumptions(heavy, StressScenario("Base Case")) is heavy

    def test_rate_floor_at_zero(self, reference_deal):
        a, stack, _ = reference_deal
        _, shocked = apply_scenario(a, stack, StressScenario("Cut", rate_shock=-0.50))
        assert all(t.rate == 0.0 for t in shocked)

    def test_with_debt_level_scales_proportionally(self, multi_tranche_stack):
        scaled = with_debt_level(multi_tranche_stack, 7_500_000.0)
        assert scaled.total_debt == pytest.approx(7_500_000.0)
        assert [t.principal for t in scaled] == pytest.approx([5_000_000.0, 2_500_000.0])
