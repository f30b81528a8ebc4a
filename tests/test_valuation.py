"""Tests for DCF math, the equity bridge and the WACC x growth grid."""

from __future__ import annotations

import pytest

from creditsim.analysis.valuation import run_valuation
from creditsim.model import dcf
from creditsim.model.assumptions import ValuationInputs
from creditsim.model.credit_engine import run_projection
from creditsim.model.metrics import NOT_APPLICABLE


@pytest.fixture
def projection(reference_deal):
    return run_projection(*reference_deal)


# ---------------------------------------------------------------------------
# Primitives
# ---------------------------------------------------------------------------

class TestDCFPrimitives:
    def test_wacc_at_target_weights(self, reference_deal):
        a, stack, _ = reference_deal
        inputs = ValuationInputs(risk_free_rate=0.05, beta=1.2, market_risk_premium=0.06,
                                 cost_of_debt=0.10, tax_rate=0.25, target_debt_weight=0.40)
        capital = dcf.compute_wacc(inputs, a, stack)
        assert capital["cost_of_equity"] == pytest.approx(0.122)
        assert capital["after_tax_cost_of_debt"] == pytest.approx(0.075)
        assert capital["wacc"] == pytest.approx(0.6 * 0.122 + 0.4 * 0.075)

    def test_wacc_defaults_to_stack_rate(self, reference_deal):
        a, stack, _ = reference_deal
        capital = dcf.compute_wacc(ValuationInputs(), a, stack)
        assert capital["pre_tax_cost_of_debt"] == pytest.approx(0.10)
        assert capital["after_tax_cost_of_debt"] == pytest.approx(0.10)

    def test_override(self, reference_deal):
        a, stack, _ = reference_deal
        assert dcf.compute_wacc(ValuationInputs(wacc_override=0.09), a, stack)["wacc"] == 0.09

    def test_terminal_values(self):
        assert dcf.perpetuity_terminal_value(100.0, 0.10, 0.02) == pytest.approx(1275.0)
        assert dcf.perpetuity_terminal_value(100.0, 0.05, 0.05) is NOT_APPLICABLE
        assert dcf.exit_multiple_terminal_value(100.0, 6.0) == 600.0

    def test_discounting(self):
        flows = dcf.discount_cash_flows([110.0, 121.0], 0.10)
        assert [pv for _, pv in flows] == pytest.approx([100.0, 100.0])
        assert dcf.enterprise_value([110.0, 121.0], 0.10, 121.0) == pytest.approx(300.0)

    def test_irr(self):
        assert dcf.irr([-100.0, 60.0, 60.0]) == pytest.approx(0.1307, abs=1e-3)
        assert dcf.irr([-100.0, 110.0]) == pytest.approx(0.10, abs=1e-6)
        assert dcf.irr([100.0, 50.0]) is NOT_APPLICABLE

    def test_moic(self):
        assert dcf.moic(100.0, 250.0) == pytest.approx(2.5)
        assert dcf.moic(0.0, 250.0) is NOT_APPLICABLE

    def test_beta_helpers(self):
        unlevered = dcf.unlever_beta(1.2, 0.5, 0.25)
        assert unlevered == pytest.approx(1.2 / 1.375)
        assert dcf.relever_beta(unlevered, 0.5, 0.25) == pytest.approx(1.2)
        assert dcf.adjusted_beta(1.5) == pytest.approx(1.335)

    def test_growth_grid(self):
        assert dcf.growth_grid(0.02, 0.005, 2) == pytest.approx([0.01, 0.015, 0.02, 0.025, 0.03])
        assert dcf.growth_grid(0.01, 0.01, 2, floor=0.001) == pytest.approx([0.01, 0.02, 0.03])


# ---------------------------------------------------------------------------
# Full valuation
# ---------------------------------------------------------------------------

class TestRunValuation:
    def test_enterprise_and_equity_value(self, projection):
        result = run_valuation(projection, ValuationInputs(wacc_override=0.10,
                                                           terminal_growth=0.02))
        assert result.is_valid
        assert result.terminal_value == pytest.approx(3_000_000.0 * 1.02 / 0.08)
        pv_fcff = sum(3_000_000.0 / 1.1 ** t for t in range(1, 6))
        pv_tv = result.terminal_value / 1.1 ** 5
        assert result.pv_of_cash_flows == pytest.approx(pv_fcff)
        assert result.enterprise_value == pytest.approx(pv_fcff + pv_tv)
        assert result.net_debt == pytest.approx(10_000_000.0)
        assert result.equity_value == pytest.approx(pv_fcff + pv_tv - 10_000_000.0)

    def test_exit_multiple_method(self, projection):
        inputs = ValuationInputs(terminal_method="exit_multiple", exit_multiple=6.0)
        result = run_valuation(projection, inputs)
        assert result.is_valid
        assert result.terminal_value == pytest.approx(18_000_000.0)

    def test_exit_multiple_requires_multiple(self, projection):
        result = run_valuation(projection, ValuationInputs(terminal_method="exit_multiple"))
        assert not result.is_valid

    def test_wacc_not_above_growth_is_invalid(self, projection):
        inputs = ValuationInputs(wacc_override=0.02, terminal_growth=0.03)
        result = run_valuation(projection, inputs)
        assert not result.is_valid
        assert any("WACC" in e for e in result.validation.errors)
        assert result.enterprise_value == 0.0

    def test_equity_returns(self, projection):
        inputs = ValuationInputs(wacc_override=0.10, terminal_growth=0.02,
                                 equity_contribution=4_000_000.0)
        result = run_valuation(projection, inputs)
        flows = result.equity_cash_flows
        assert flows[0] == -4_000_000.0
        assert len(flows) == 6
        assert result.exit_equity_value == pytest.approx(
            result.terminal_value - projection.last_year.net_debt)
        npv = sum(cf / (1 + result.irr) ** t for t, cf in enumerate(flows))
        assert npv == pytest.approx(0.0, abs=10.0)
        positive = sum(max(0.0, y.fcf) for y in projection.years)
        assert result.moic == pytest.approx((positive + result.exit_equity_value) / 4_000_000.0)

    def test_no_equity_no_returns(self, projection):
        result = run_valuation(projection, ValuationInputs(wacc_override=0.10))
        assert result.irr is NOT_APPLICABLE
        assert result.moic is NOT_APPLICABLE
        assert result.to_frame().loc["Equity IRR", "Value"] == "N/A"

    def test_invalid_projection_propagates(self, reference_deal):
        from dataclasses import replace
        a, stack, cov = reference_deal
        bad = run_projection(replace(a, base_revenue=0.0), stack, cov)
        assert not run_valuation(bad).is_valid


class TestSensitivityGrid:
    def test_grid_shape_and_undefined_cells(self, projection):
        inputs = ValuationInputs(wacc_override=0.04, terminal_growth=0.03)
        grid = run_valuation(projection, inputs).sensitivity
        assert grid.index.name == "WACC"
        assert list(grid.index) == ["2.0%", "3.0%", "4.0%", "5.0%", "6.0%"]
        assert list(grid.columns) == ["g 2.0%", "g 2.5%", "g 3.0%", "g 3.5%", "g 4.0%"]
        assert grid.loc["2.0%", "g 2.0%"] is None
        assert grid.loc["3.0%", "g 4.0%"] is None

    def test_grid_cell_matches_point_valuation(self, projection):
        grid = run_valuation(projection, ValuationInputs(wacc_override=0.10,
                                                         terminal_growth=0.02)).sensitivity
        base = run_valuation(projection, ValuationInputs(wacc_override=0.10,
                                                         terminal_growth=0.02))
        assert grid.loc["10.0%", "g 2.0%"] == pytest.approx(base.equity_value)
        assert grid.loc["12.0%", "g 2.0%"] < grid.loc["8.0%", "g 2.0%"]

    def test_fine_wacc_step_keeps_every_row(self, projection):
        inputs = ValuationInputs(wacc_override=0.10, terminal_growth=0.02,
                                 wacc_step=0.0005, grid_steps=2)
        grid = run_valuation(projection, inputs).sensitivity
        assert len(grid) == 5
        assert grid.index.is_unique
        assert grid.index[2] == "10.00%"
