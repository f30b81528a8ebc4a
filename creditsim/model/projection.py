"""
projection.py
-------------
Projects the income statement, cash flow and debt position for each
year of the projection period.

Revenue → Gross Profit → EBITDA → EBIT → EBT → Net Income
EBITDA − CapEx − ΔWC − Taxes = CFADS (operating cash flow)
CFADS − Debt Service = FCF, accumulated into the cash balance

Notes:
  - Year 1 revenue is the base revenue unmodified; growth applies from Year 2.
  - D&A runs off opening PP&E, which rolls forward with capex.
  - Interest and principal come from the aggregated debt schedule; there
    is no cash sweep, so no circularity with the income statement.
  - Net debt = ending debt − cash and may be negative.
  - Ratios are computed here once; every downstream analysis reads them.
"""

from dataclasses import dataclass
from typing import Sequence

import pandas as pd

from creditsim.model import metrics
from creditsim.model.assumptions import BalanceSheetSeed, FinancialAssumptions, IcrBasis
from creditsim.model.debt_schedule import DebtStackSchedule, TrancheYear
from creditsim.model.metrics import NOT_APPLICABLE, Ratio, as_float


@dataclass(frozen=True)
class ProjectionYear:
    year_index: int
    year: int
    # Income statement
    revenue: float
    cogs: float
    gross_profit: float
    opex: float
    ebitda: float
    da: float
    ebit: float
    interest: float
    ebt: float
    tax: float
    net_income: float
    nopat: float
    # Cash flow
    capex: float
    working_capital: float
    delta_wc: float
    operating_cash_flow: float      # CFADS
    fcff: float                     # unlevered, for valuation
    principal: float
    debt_service: float
    fcf: float                      # after debt service (to equity)
    cash_balance: float
    # Debt
    beginning_debt: float
    ending_debt: float
    net_debt: float
    tranches: tuple[TrancheYear, ...]
    # Ratios
    dscr: Ratio
    icr: Ratio
    leverage: Ratio
    ltv: Ratio

    @property
    def has_debt(self) -> bool:
        return self.beginning_debt > 0

    @property
    def cash_conversion(self) -> float:
        return metrics.safe_divide(self.operating_cash_flow, self.ebitda)


def build_projection(
    assumptions: FinancialAssumptions,
    debt_schedule: DebtStackSchedule,
    seed: BalanceSheetSeed,
    icr_basis: IcrBasis = IcrBasis.EBITDA,
) -> tuple[ProjectionYear, ...]:
    """
    Returns one ProjectionYear per projected year.
    """
    a    = assumptions
    seed = seed.resolve(a)

    revenue = a.base_revenue
    ppe     = seed.opening_ppe
    prev_wc = seed.opening_working_capital
    cash    = seed.opening_cash

    years = []
    for i in range(1, a.projection_years + 1):
        if i > 1:
            revenue = revenue * (1 + a.revenue_growth)

        # --- Income statement ---
        cogs   = revenue * a.cogs_pct
        opex   = revenue * a.opex_pct
        ebitda = revenue - cogs - opex
        da     = ppe * a.da_pct_of_ppe
        ebit   = ebitda - da

        debt     = debt_schedule.year(i)
        interest = debt.interest
        ebt      = ebit - interest
        tax      = max(0.0, ebt * a.tax_rate)
        net_inc  = ebt - tax
        nopat    = ebit * (1 - a.tax_rate)

        # --- Cash flow ---
        capex    = revenue * a.capex_pct
        wc       = revenue * a.wc_pct_of_revenue
        delta_wc = wc - prev_wc
        cfads    = ebitda - capex - delta_wc - tax
        fcff     = nopat + da - capex - delta_wc
        service  = debt.total_debt_service
        fcf      = cfads - service
        cash     = cash + fcf

        ppe     = ppe + capex - da
        prev_wc = wc

        # --- Debt & ratios ---
        outstanding = debt.beginning_balance
        ending_debt = debt.ending_balance
        net_debt    = ending_debt - cash
        earnings    = ebitda if icr_basis == IcrBasis.EBITDA else ebit

        years.append(ProjectionYear(
            year_index=i,
            year=a.start_year + i - 1,
            revenue=revenue, cogs=cogs, gross_profit=revenue - cogs, opex=opex,
            ebitda=ebitda, da=da, ebit=ebit, interest=interest, ebt=ebt,
            tax=tax, net_income=net_inc, nopat=nopat,
            capex=capex, working_capital=wc, delta_wc=delta_wc,
            operating_cash_flow=cfads, fcff=fcff,
            principal=debt.principal, debt_service=service, fcf=fcf,
            cash_balance=cash,
            beginning_debt=outstanding, ending_debt=ending_debt, net_debt=net_debt,
            tranches=debt.by_tranche,
            dscr=metrics.dscr(cfads, service, outstanding),
            icr=metrics.icr(earnings, interest, outstanding),
            leverage=metrics.net_leverage(net_debt, ebitda, outstanding),
            ltv=metrics.loan_to_value(ending_debt, a.collateral_value, outstanding),
        ))

    return tuple(years)


def summarize_credit_stats(years: Sequence[ProjectionYear]) -> dict:
    """Averages and extremes over years where each ratio is applicable."""
    return {
        "avg_dscr":            metrics.mean_ratio(y.dscr for y in years),
        "min_dscr":            metrics.min_ratio(y.dscr for y in years),
        "avg_icr":             metrics.mean_ratio(y.icr for y in years),
        "min_icr":             metrics.min_ratio(y.icr for y in years),
        "avg_leverage":        metrics.mean_ratio(y.leverage for y in years),
        "max_leverage":        metrics.max_ratio(y.leverage for y in years),
        "avg_cash_conversion": (sum(y.cash_conversion for y in years) / len(years)
                                if years else NOT_APPLICABLE),
        "cumulative_fcf":      sum(y.fcf for y in years),
    }


def projection_df(years: Sequence[ProjectionYear]) -> pd.DataFrame:
    """
    Wide DataFrame with one column per projected year.
    Index = line item labels; undefined ratios shown as NaN.
    """
    data = {}
    for y in years:
        data[f"Year {y.year_index}"] = {
            "Revenue":             y.revenue,
            "COGS":                y.cogs,
            "Gross Profit":        y.gross_profit,
            "OpEx":                y.opex,
            "EBITDA":              y.ebitda,
            "D&A":                 y.da,
            "EBIT":                y.ebit,
            "Interest Expense":    y.interest,
            "EBT":                 y.ebt,
            "Tax":                 y.tax,
            "Net Income":          y.net_income,
            "CapEx":               y.capex,
            "Change in WC":        y.delta_wc,
            "CFADS":               y.operating_cash_flow,
            "Debt Service":        y.debt_service,
            "Free Cash Flow":      y.fcf,
            "Cash Balance":        y.cash_balance,
            "Ending Debt":         y.ending_debt,
            "Net Debt":            y.net_debt,
            "DSCR (x)":            as_float(y.dscr),
            "ICR (x)":             as_float(y.icr),
            "Net Debt / EBITDA":   as_float(y.leverage),
            "LTV":                 as_float(y.ltv),
        }
    return pd.DataFrame(data)
