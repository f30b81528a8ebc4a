"""
valuation.py
------------
Discounted cash flow valuation of the projected business.

  - Cost of equity via CAPM, after-tax cost of debt, WACC at target weights
  - Terminal value: perpetuity growth or exit multiple
  - Enterprise value = PV(FCFF) + PV(terminal value)
  - Equity value = EV − net debt at valuation (total debt − opening cash)
  - Equity IRR / MOIC: −equity contribution, then levered FCF each year,
    with exit equity (terminal value − ending net debt) in the final year
  - WACC × terminal-growth sensitivity grid of equity values
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import pandas as pd

from creditsim.analysis.sensitivity import wacc_growth_sensitivity
from creditsim.model import dcf
from creditsim.model.assumptions import ValuationInputs
from creditsim.model.credit_engine import ProjectionResult
from creditsim.model.metrics import NOT_APPLICABLE, Ratio, is_applicable
from creditsim.model.validation import ValidationResult, validate_inputs
from creditsim.utils.formatting import fmt_currency, fmt_irr, fmt_moic, fmt_pct

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscountedYear:
    year_index: int
    fcff: float
    discount_factor: float
    present_value: float


@dataclass(frozen=True)
class ValuationResult:
    validation: ValidationResult
    wacc: float = 0.0
    cost_of_equity: float = 0.0
    after_tax_cost_of_debt: float = 0.0
    terminal_method: str = "perpetuity"
    terminal_growth: float = 0.0
    terminal_value: float = 0.0
    pv_terminal_value: float = 0.0
    discounted_years: tuple[DiscountedYear, ...] = ()
    enterprise_value: float = 0.0
    net_debt: float = 0.0
    equity_value: float = 0.0
    exit_equity_value: float = 0.0
    equity_cash_flows: tuple[float, ...] = ()
    irr: Ratio = NOT_APPLICABLE
    moic: Ratio = NOT_APPLICABLE
    sensitivity: Optional[pd.DataFrame] = field(default=None, compare=False)

    @property
    def is_valid(self) -> bool:
        return self.validation.is_valid

    @property
    def pv_of_cash_flows(self) -> float:
        return sum(d.present_value for d in self.discounted_years)

    def to_frame(self, ccy: str = "JMD") -> pd.DataFrame:
        rows = [
            ("WACC",                  fmt_pct(self.wacc, 2)),
            ("Cost of Equity",        fmt_pct(self.cost_of_equity, 2)),
            ("After-tax Cost of Debt", fmt_pct(self.after_tax_cost_of_debt, 2)),
            ("PV of FCFF",            fmt_currency(self.pv_of_cash_flows, ccy)),
            ("Terminal Value",        fmt_currency(self.terminal_value, ccy)),
            ("PV of Terminal Value",  fmt_currency(self.pv_terminal_value, ccy)),
            ("Enterprise Value",      fmt_currency(self.enterprise_value, ccy)),
            ("Net Debt",              fmt_currency(self.net_debt, ccy)),
            ("Equity Value",          fmt_currency(self.equity_value, ccy)),
            ("Equity IRR",            fmt_irr(self.irr)),
            ("MOIC",                  fmt_moic(self.moic)),
        ]
        return pd.DataFrame(rows, columns=["Metric", "Value"]).set_index("Metric")


def run_valuation(projection: ProjectionResult,
                  inputs: Optional[ValuationInputs] = None) -> ValuationResult:
    """
    Parameters
    ----------
    projection : ProjectionResult (must be valid)
    inputs     : ValuationInputs

    Returns
    -------
    ValuationResult; invalid (with errors) when the projection is invalid
    or WACC does not exceed terminal growth under the perpetuity method
    """
    inputs = inputs or ValuationInputs()
    if not projection.is_valid:
        return ValuationResult(validation=projection.validation)

    a, stack = projection.assumptions, projection.debt_stack
    validation = validate_inputs(a, stack, projection.covenants, inputs)
    if not validation.is_valid:
        logger.warning("valuation rejected: %s", "; ".join(validation.errors))
        return ValuationResult(validation=validation)

    capital = dcf.compute_wacc(inputs, a, stack)
    wacc    = capital["wacc"]
    g       = inputs.terminal_growth if inputs.terminal_growth is not None else a.terminal_growth
    years   = projection.years
    last    = years[-1]
    fcffs   = [y.fcff for y in years]

    # ---- Terminal value ----
    if inputs.terminal_method == "exit_multiple":
        multiple = inputs.exit_multiple if inputs.exit_multiple is not None else a.exit_multiple
        tv = dcf.exit_multiple_terminal_value(last.ebitda, multiple)
    else:
        tv = dcf.perpetuity_terminal_value(last.fcff, wacc, g)

    # ---- Enterprise / equity value ----
    discounted = tuple(
        DiscountedYear(y.year_index, y.fcff, factor, pv)
        for y, (factor, pv) in zip(years, dcf.discount_cash_flows(fcffs, wacc))
    )
    pv_tv    = tv / (1 + wacc) ** len(years)
    ev       = sum(d.present_value for d in discounted) + pv_tv
    net_debt = stack.total_debt - projection.seed.opening_cash
    equity   = ev - net_debt

    # ---- Equity returns ----
    exit_equity = tv - last.net_debt
    invested    = inputs.equity_contribution
    flows       = [-invested] + [y.fcf for y in years]
    flows[-1]  += exit_equity
    if invested > 0:
        irr  = dcf.irr(flows)
        moic = dcf.moic(invested, sum(max(0.0, y.fcf) for y in years) + exit_equity)
    else:
        irr, moic = NOT_APPLICABLE, NOT_APPLICABLE

    # ---- Sensitivity ----
    wacc_pts   = dcf.growth_grid(wacc, inputs.wacc_step, inputs.grid_steps, floor=0.001)
    growth_pts = dcf.growth_grid(g, inputs.growth_step, inputs.grid_steps)
    grid       = wacc_growth_sensitivity(fcffs, net_debt, wacc_pts, growth_pts)

    logger.debug("valuation: WACC %.4f EV %.0f equity %.0f IRR %s",
                 wacc, ev, equity, irr if is_applicable(irr) else "N/A")

    return ValuationResult(
        validation=validation,
        wacc=wacc,
        cost_of_equity=capital["cost_of_equity"],
        after_tax_cost_of_debt=capital["after_tax_cost_of_debt"],
        terminal_method=inputs.terminal_method,
        terminal_growth=g,
        terminal_value=tv,
        pv_terminal_value=pv_tv,
        discounted_years=discounted,
        enterprise_value=ev,
        net_debt=net_debt,
        equity_value=equity,
        exit_equity_value=exit_equity,
        equity_cash_flows=tuple(flows),
        irr=irr,
        moic=moic,
        sensitivity=grid,
    )
