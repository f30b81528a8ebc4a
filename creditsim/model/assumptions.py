"""
assumptions.py
--------------
Central dataclasses for all credit-simulation inputs.
Separates operating assumptions, the debt stack, covenant thresholds,
stress scenarios and valuation inputs so scenarios can be constructed
by swapping just the relevant fields.

Every input type is frozen: a scenario variant is a new value built by
the builder functions at the bottom of this module, never an in-place edit.

All monetary values in deal currency (e.g. JMD). Rates as decimals
(e.g., 0.10 = 10%).
"""

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import Optional


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class DayCount(str, Enum):
    THIRTY_360 = "30/360"
    ACTUAL_360 = "Actual/360"
    ACTUAL_365 = "Actual/365"


class AmortizationType(str, Enum):
    AMORTIZING    = "amortizing"
    INTEREST_ONLY = "interest-only"
    BULLET        = "bullet"
    BALLOON       = "balloon"
    CUSTOM        = "custom"
    ANNUITY       = "annuity"     # level payment (principal + interest)


class PaymentFrequency(str, Enum):
    MONTHLY       = "Monthly"
    QUARTERLY     = "Quarterly"
    SEMI_ANNUALLY = "Semi-Annually"
    ANNUALLY      = "Annually"

    @property
    def periods_per_year(self) -> int:
        return {"Monthly": 12, "Quarterly": 4,
                "Semi-Annually": 2, "Annually": 1}[self.value]


class IcrBasis(str, Enum):
    EBITDA = "EBITDA"
    EBIT   = "EBIT"


# ---------------------------------------------------------------------------
# Operating assumptions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class FinancialAssumptions:
    """Operating drivers for the projection. Immutable per run."""
    base_revenue: float = 10_000_000.0   # Year 1 revenue (unmodified)
    revenue_growth: float = 0.05         # annual growth applied from Year 2
    cogs_pct: float = 0.50
    opex_pct: float = 0.20
    wc_pct_of_revenue: float = 0.10
    capex_pct: float = 0.05
    tax_rate: float = 0.25
    da_pct_of_ppe: float = 0.10          # D&A as % of opening PP&E
    projection_years: int = 5
    start_year: int = 2025

    # Exit / terminal
    terminal_growth: float = 0.02
    exit_multiple: Optional[float] = None

    # Collateral for LTV (0 = LTV not applicable)
    collateral_value: float = 0.0


@dataclass(frozen=True)
class BalanceSheetSeed:
    """Opening balance-sheet items. None means derive from assumptions."""
    opening_cash: float = 0.0
    opening_working_capital: Optional[float] = None
    opening_ppe: Optional[float] = None

    def resolve(self, assumptions: FinancialAssumptions) -> "BalanceSheetSeed":
        """Return a seed with every default filled in from the assumptions."""
        wc = self.opening_working_capital
        if wc is None:
            wc = assumptions.base_revenue * assumptions.wc_pct_of_revenue
        ppe = self.opening_ppe
        if ppe is None:
            ppe = assumptions.base_revenue * assumptions.capex_pct
        return BalanceSheetSeed(
            opening_cash=self.opening_cash,
            opening_working_capital=wc,
            opening_ppe=ppe,
        )


# ---------------------------------------------------------------------------
# Debt
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DebtTranche:
    """Represents one layer of the debt stack."""
    name: str
    principal: float                  # amount drawn at close
    rate: float                       # nominal annual rate
    tenor_years: int
    day_count: DayCount = DayCount.ACTUAL_365
    interest_only_years: int = 0
    amortization: AmortizationType = AmortizationType.AMORTIZING
    balloon_pct: float = 0.0          # fraction of principal (0.30 = 30%)
    use_balloon: bool = False         # explicit gate, see balloon_amount
    custom_intervals: Optional[tuple[float, ...]] = None  # 4 buckets, % summing to ~100
    seniority: int = 1                # 1 = most senior
    maturity_date: Optional[date] = None
    payment_frequency: PaymentFrequency = PaymentFrequency.ANNUALLY

    @property
    def effective_rate(self) -> float:
        if self.day_count == DayCount.ACTUAL_360:
            return self.rate * 365.0 / 360.0
        return self.rate

    @property
    def balloon_applies(self) -> bool:
        return (self.amortization == AmortizationType.BALLOON
                and self.use_balloon
                and self.balloon_pct > 0)

    @property
    def balloon_amount(self) -> float:
        """Lump sum due at maturity. Zero unless mode and flag both agree."""
        if not self.balloon_applies:
            return 0.0
        return self.principal * self.balloon_pct

    @property
    def is_floating(self) -> bool:
        # Actual/360 facilities are priced off a floating reference rate
        return self.day_count == DayCount.ACTUAL_360


@dataclass(frozen=True)
class DebtStack:
    """Ordered, immutable collection of tranches."""
    tranches: tuple[DebtTranche, ...] = ()

    def __post_init__(self):
        # accept any iterable at construction
        object.__setattr__(self, "tranches", tuple(self.tranches))

    def __iter__(self):
        return iter(self.tranches)

    def __len__(self) -> int:
        return len(self.tranches)

    @property
    def total_debt(self) -> float:
        return sum(t.principal for t in self.tranches)

    @property
    def blended_rate(self) -> float:
        """Principal-weighted nominal rate."""
        total = self.total_debt
        if total <= 0:
            return 0.0
        return sum(t.principal * t.rate for t in self.tranches) / total

    @property
    def blended_effective_rate(self) -> float:
        total = self.total_debt
        if total <= 0:
            return 0.0
        return sum(t.principal * t.effective_rate for t in self.tranches) / total

    @property
    def weighted_tenor(self) -> float:
        total = self.total_debt
        if total <= 0:
            return 0.0
        return sum(t.principal * t.tenor_years for t in self.tranches) / total

    @property
    def has_floating_exposure(self) -> bool:
        return any(t.is_floating for t in self.tranches)


# ---------------------------------------------------------------------------
# Covenants / capacity settings
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CovenantSet:
    min_dscr: float = 1.25
    target_icr: float = 2.0
    max_leverage: float = 3.5           # net debt / EBITDA
    max_ltv: Optional[float] = None     # e.g. 0.75; None = not tested
    icr_basis: IcrBasis = IcrBasis.EBITDA
    marginal_band: float = 0.10         # within 10% of threshold = marginal


@dataclass(frozen=True)
class CapacitySettings:
    """Named sizing constants for the debt capacity analyzer."""
    safety_buffer: float = 1.20              # safe debt sized at target DSCR x buffer
    aggressive_dscr_floor: float = 1.15      # aggressive debt sized at this DSCR
    decline_utilization_pct: float = 150.0   # above this, request is declined outright
    alternative_target_leverage: float = 3.0
    tenor_extension_years: int = 2


# ---------------------------------------------------------------------------
# Stress scenarios
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StressScenario:
    name: str
    description: str = ""
    revenue_shock: float = 0.0
    cogs_shock: float = 0.0
    opex_shock: float = 0.0
    rate_shock: float = 0.0
    wc_shock: float = 0.0
    refinancing_stress: bool = False
    severity_factor: float = 1.0     # scales the liquidity runway

    @property
    def is_base(self) -> bool:
        return not any((self.revenue_shock, self.cogs_shock, self.opex_shock,
                        self.rate_shock, self.wc_shock, self.refinancing_stress))


# ---------------------------------------------------------------------------
# Valuation / history
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValuationInputs:
    risk_free_rate: float = 0.05
    beta: float = 1.0
    market_risk_premium: float = 0.06
    cost_of_debt: Optional[float] = None      # None = debt stack blended rate
    tax_rate: Optional[float] = None          # None = assumptions.tax_rate
    target_debt_weight: float = 0.40          # D / V
    terminal_method: str = "perpetuity"       # "perpetuity" | "exit_multiple"
    terminal_growth: Optional[float] = None   # None = assumptions.terminal_growth
    exit_multiple: Optional[float] = None     # None = assumptions.exit_multiple
    wacc_override: Optional[float] = None
    equity_contribution: float = 0.0
    wacc_step: float = 0.01
    growth_step: float = 0.005
    grid_steps: int = 2                       # points either side of base


@dataclass(frozen=True)
class HistoricalYear:
    year: int
    revenue: float
    ebitda: float
    capex: Optional[float] = None
    working_capital: Optional[float] = None
    ppe: Optional[float] = None
    depreciation: Optional[float] = None


@dataclass(frozen=True)
class HistoricalContext:
    years: tuple[HistoricalYear, ...] = ()
    monthly_operating_cash_flows: tuple[float, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "years", tuple(self.years))
        object.__setattr__(self, "monthly_operating_cash_flows",
                           tuple(self.monthly_operating_cash_flows))


# ---------------------------------------------------------------------------
# Convenience: build scenario variants
# ---------------------------------------------------------------------------

def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return min(high, max(low, value))


def shocked_assumptions(assumptions: FinancialAssumptions,
                        scenario: StressScenario) -> FinancialAssumptions:
    """New assumptions value with the scenario's operating shocks applied."""
    if not any((scenario.revenue_shock, scenario.cogs_shock,
                scenario.opex_shock, scenario.wc_shock)):
        return assumptions
    return replace(
        assumptions,
        base_revenue      = assumptions.base_revenue * (1 + scenario.revenue_shock),
        cogs_pct          = _clamp(assumptions.cogs_pct + scenario.cogs_shock),
        opex_pct          = _clamp(assumptions.opex_pct + scenario.opex_shock),
        wc_pct_of_revenue = max(0.0, assumptions.wc_pct_of_revenue + scenario.wc_shock),
    )


def shocked_debt_stack(stack: DebtStack, scenario: StressScenario) -> DebtStack:
    """New debt stack with every tranche rate moved by the rate shock (floored at 0)."""
    if scenario.rate_shock == 0:
        return stack
    return DebtStack(tuple(
        replace(t, rate=max(0.0, t.rate + scenario.rate_shock)) for t in stack
    ))


def apply_scenario(assumptions: FinancialAssumptions,
                   stack: DebtStack,
                   scenario: StressScenario) -> tuple[FinancialAssumptions, DebtStack]:
    return shocked_assumptions(assumptions, scenario), shocked_debt_stack(stack, scenario)


def with_debt_level(stack: DebtStack, total_debt: float) -> DebtStack:
    """Scale every tranche proportionally so the stack totals total_debt."""
    current = stack.total_debt
    scale = total_debt / current if current > 0 else 0.0
    return DebtStack(tuple(replace(t, principal=t.principal * scale) for t in stack))


def base_case() -> tuple[FinancialAssumptions, DebtStack, CovenantSet]:
    """Single 10M term loan at 10% over 5 years against a 3M EBITDA business."""
    assumptions = FinancialAssumptions(
        base_revenue=10_000_000.0,
        revenue_growth=0.0,
        cogs_pct=0.50,
        opex_pct=0.20,
        wc_pct_of_revenue=0.0,
        capex_pct=0.0,
        tax_rate=0.0,
    )
    stack = DebtStack((
        DebtTranche(name="Term Loan", principal=10_000_000.0, rate=0.10,
                    tenor_years=5, amortization=AmortizationType.ANNUITY),
    ))
    return assumptions, stack, CovenantSet()


HISTORICAL_OPEX_PCT = 0.20        # OpEx assumed when only EBITDA margin is known
HISTORICAL_COGS_CEILING = 0.95
DEFAULT_CAPEX_PCT = 0.04          # used when no year carries capex or PP&E
ESTIMATED_DEPRECIATION_PCT = 0.10  # of PP&E, when depreciation is not reported


def _mean(values: list[float]) -> float:
    return sum(values) / len(values)


def assumptions_from_history(
    history: HistoricalContext,
    base: Optional[FinancialAssumptions] = None,
) -> Optional[FinancialAssumptions]:
    """
    Derive operating drivers from reported years.

    Base revenue is the most recent year; growth is the average year-over-year
    change; COGS% is backed out of the average EBITDA margin with OpEx fixed at
    HISTORICAL_OPEX_PCT. Capex% comes from reported capex, else from the PP&E
    change plus depreciation. Returns None with fewer than two years of
    positive revenue. Fields not derived here come from `base`.
    """
    years = sorted((h for h in history.years
                    if isinstance(h.revenue, (int, float)) and h.revenue > 0),
                   key=lambda h: h.year)
    if len(years) < 2:
        return None

    growth = [(b.revenue - a.revenue) / a.revenue for a, b in zip(years, years[1:])]
    margin = _mean([h.ebitda / h.revenue if h.ebitda else 0.0 for h in years])
    wc_pct = _mean([h.working_capital / h.revenue if h.working_capital else 0.0
                    for h in years])

    capex_rates = []
    for prev, h in zip([None] + years[:-1], years):
        if h.capex:
            capex_rates.append(h.capex / h.revenue)
        elif h.ppe and prev is not None and prev.ppe:
            depreciation = h.depreciation or h.ppe * ESTIMATED_DEPRECIATION_PCT
            capex_rates.append(max(0.0, (h.ppe - prev.ppe + depreciation) / h.revenue))
    capex_pct = _mean(capex_rates) if capex_rates else DEFAULT_CAPEX_PCT

    latest = years[-1]
    return replace(
        base or FinancialAssumptions(),
        base_revenue      = latest.revenue,
        revenue_growth    = _mean(growth),
        cogs_pct          = _clamp(1 - margin - HISTORICAL_OPEX_PCT, 0.0, HISTORICAL_COGS_CEILING),
        opex_pct          = HISTORICAL_OPEX_PCT,
        wc_pct_of_revenue = wc_pct,
        capex_pct         = capex_pct,
        start_year        = latest.year + 1,
    )


# ---------------------------------------------------------------------------
# Deal bundle (one validated struct handed to the pipeline)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DealConfig:
    assumptions: FinancialAssumptions
    debt_stack: DebtStack
    covenants: CovenantSet = CovenantSet()
    seed: BalanceSheetSeed = BalanceSheetSeed()
    valuation: ValuationInputs = ValuationInputs()
    capacity: CapacitySettings = CapacitySettings()
    scenarios: Optional[tuple[tuple[str, StressScenario], ...]] = None  # None = default table
    history: Optional[HistoricalContext] = None
    name: str = "deal"

    def scenario_table(self) -> Optional[dict]:
        return dict(self.scenarios) if self.scenarios is not None else None
