"""
dcf.py
------
Discounting primitives shared by the valuation module and the
sensitivity tables: cost of capital, terminal value, present value,
IRR / MOIC and beta adjustments.
"""

from typing import Optional, Sequence

from scipy.optimize import brentq

from creditsim.model.assumptions import DebtStack, FinancialAssumptions, ValuationInputs
from creditsim.model.metrics import NOT_APPLICABLE, Ratio


# ---------------------------------------------------------------------------
# Cost of capital
# ---------------------------------------------------------------------------

def cost_of_equity(risk_free: float, beta: float, market_risk_premium: float) -> float:
    """CAPM: rf + beta x MRP."""
    return risk_free + beta * market_risk_premium


def after_tax_cost_of_debt(rate: float, tax_rate: float) -> float:
    return rate * (1 - tax_rate)


def compute_wacc(inputs: ValuationInputs, assumptions: FinancialAssumptions,
                 stack: DebtStack) -> dict:
    """Cost of equity, after-tax cost of debt and WACC at target weights."""
    ke   = cost_of_equity(inputs.risk_free_rate, inputs.beta, inputs.market_risk_premium)
    kd   = inputs.cost_of_debt if inputs.cost_of_debt is not None else stack.blended_rate
    tax  = inputs.tax_rate if inputs.tax_rate is not None else assumptions.tax_rate
    kd_t = after_tax_cost_of_debt(kd, tax)
    wd   = inputs.target_debt_weight
    we   = 1 - wd
    wacc = inputs.wacc_override if inputs.wacc_override is not None else we * ke + wd * kd_t
    return {
        "cost_of_equity":         ke,
        "pre_tax_cost_of_debt":   kd,
        "after_tax_cost_of_debt": kd_t,
        "equity_weight":          we,
        "debt_weight":            wd,
        "wacc":                   wacc,
    }


# ---------------------------------------------------------------------------
# Beta helpers
# ---------------------------------------------------------------------------

def unlever_beta(levered_beta: float, debt_to_equity: float, tax_rate: float) -> float:
    """Hamada: beta_u = beta_l / (1 + (1 - t) D/E)."""
    return levered_beta / (1 + (1 - tax_rate) * debt_to_equity)


def relever_beta(unlevered_beta: float, debt_to_equity: float, tax_rate: float) -> float:
    return unlevered_beta * (1 + (1 - tax_rate) * debt_to_equity)


def adjusted_beta(raw_beta: float) -> float:
    """Blume adjustment toward 1.0."""
    return 0.67 * raw_beta + 0.33


# ---------------------------------------------------------------------------
# Terminal value / discounting
# ---------------------------------------------------------------------------

def perpetuity_terminal_value(final_cash_flow: float, wacc: float, growth: float) -> Ratio:
    """Gordon growth value at the end of the final year; N/A when WACC <= g."""
    if wacc <= growth:
        return NOT_APPLICABLE
    return final_cash_flow * (1 + growth) / (wacc - growth)


def exit_multiple_terminal_value(final_ebitda: float, multiple: float) -> float:
    return final_ebitda * multiple


def discount_cash_flows(cash_flows: Sequence[float], rate: float) -> list[tuple[float, float]]:
    """[(discount factor, present value)] with year t discounted t periods."""
    out = []
    for t, cf in enumerate(cash_flows, start=1):
        factor = 1 / (1 + rate) ** t
        out.append((factor, cf * factor))
    return out


def enterprise_value(cash_flows: Sequence[float], rate: float,
                     terminal_value: float) -> float:
    pv = sum(p for _, p in discount_cash_flows(cash_flows, rate))
    return pv + terminal_value / (1 + rate) ** len(cash_flows)


# ---------------------------------------------------------------------------
# IRR / MOIC helpers
# ---------------------------------------------------------------------------

def irr(cash_flows: Sequence[float]) -> Ratio:
    """IRR of cash flows (index 0 = t=0 outflow); N/A if no root in range."""
    def npv(r):
        return sum(cf / (1 + r) ** t for t, cf in enumerate(cash_flows))
    try:
        return brentq(npv, -0.999, 100.0, xtol=1e-8, maxiter=500)
    except (ValueError, RuntimeError):
        return NOT_APPLICABLE


def moic(invested: float, proceeds: float) -> Ratio:
    if invested <= 0:
        return NOT_APPLICABLE
    return proceeds / invested


def growth_grid(base: float, step: float, steps: int,
                floor: Optional[float] = None) -> list[float]:
    """Symmetric grid of 2*steps+1 points around base."""
    pts = [round(base + k * step, 10) for k in range(-steps, steps + 1)]
    if floor is not None:
        pts = [p for p in pts if p >= floor]
    return pts
