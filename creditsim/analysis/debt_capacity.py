"""
debt_capacity.py
----------------
Sizes the maximum debt the business can carry by inverting the level
annuity payment:

    f        = r(1+r)^n / ((1+r)^n - 1)          (1/n when r = 0)
    max debt = EBITDA / (f x target DSCR)

Three levels are reported:
  - Maximum sustainable : at the covenant minimum DSCR
  - Safe                : at min DSCR x safety buffer
  - Aggressive          : at the aggressive DSCR floor

The requested structure is never modified; the analyzer only reports on
it and offers alternative structures re-sized with the same formulas.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import pandas as pd

from creditsim.model.amortization import annuity_factor
from creditsim.model.assumptions import CapacitySettings, CovenantSet, FinancialAssumptions
from creditsim.model.credit_engine import ProjectionResult
from creditsim.model.metrics import NOT_APPLICABLE, Ratio, is_applicable, safe_divide

logger = logging.getLogger(__name__)


class Recommendation(str, Enum):
    APPROVE                 = "APPROVE"
    APPROVE_WITH_CONDITIONS = "APPROVE WITH CONDITIONS"
    REDUCE_DEBT             = "REDUCE DEBT"
    DECLINE                 = "DECLINE"


class CapacityRisk(str, Enum):
    LOW    = "LOW"
    MEDIUM = "MEDIUM"
    HIGH   = "HIGH"


@dataclass(frozen=True)
class DebtCapacityResult:
    ebitda: float
    rate: float
    tenor: float
    target_dscr: float
    safe_dscr: float
    aggressive_dscr: float
    annual_payment_factor: float
    max_sustainable_debt: float
    safe_debt: float
    aggressive_debt: float
    current_debt_request: float
    excess_debt: float
    available_capacity: float
    utilization_pct: float
    implied_dscr: Ratio
    leverage: Ratio
    ltv: Ratio
    recommendation: Recommendation
    risk_level: CapacityRisk
    reasons: tuple[str, ...] = ()

    @property
    def annual_debt_service(self) -> float:
        return self.current_debt_request * self.annual_payment_factor

    def to_frame(self) -> pd.DataFrame:
        rows = [
            ("EBITDA",                  self.ebitda),
            ("Annual Payment Factor",   self.annual_payment_factor),
            ("Max Sustainable Debt",    self.max_sustainable_debt),
            ("Safe Debt",               self.safe_debt),
            ("Aggressive Debt",         self.aggressive_debt),
            ("Current Debt Request",    self.current_debt_request),
            ("Excess Debt",             self.excess_debt),
            ("Available Capacity",      self.available_capacity),
            ("Utilization (%)",         self.utilization_pct),
            ("Implied DSCR (x)",        self.implied_dscr),
            ("Leverage (x)",            self.leverage),
            ("LTV",                     self.ltv),
            ("Recommendation",          self.recommendation.value),
            ("Risk Level",              self.risk_level.value),
        ]
        return pd.DataFrame(rows, columns=["Metric", "Value"]).set_index("Metric")


@dataclass(frozen=True)
class CapitalStructure:
    name: str
    description: str
    debt: float
    equity: float
    tenor: float
    debt_pct: float
    equity_pct: float
    annual_debt_service: float
    dscr: Ratio
    leverage: Ratio
    ltv: Ratio
    covenant_compliant: bool


# ---------------------------------------------------------------------------
# Core sizing formulas
# ---------------------------------------------------------------------------

def max_debt_for_dscr(ebitda: float, dscr: float, rate: float, tenor: float) -> float:
    """Debt whose level annual payment leaves exactly `dscr` coverage."""
    f = annuity_factor(rate, tenor)
    if ebitda <= 0 or f <= 0 or dscr <= 0:
        return 0.0
    return ebitda / (f * dscr)


def _capacity_inputs(projection: ProjectionResult) -> tuple[float, float, float]:
    """(ebitda, rate, tenor) from the projection's first year and debt stack."""
    stack  = projection.debt_stack
    ebitda = projection.first_year.ebitda if projection.years else 0.0
    return ebitda, stack.blended_effective_rate, stack.weighted_tenor


def analyze_debt_capacity(
    assumptions: FinancialAssumptions,
    projection: ProjectionResult,
    covenants: Optional[CovenantSet] = None,
    settings: Optional[CapacitySettings] = None,
    requested_debt: Optional[float] = None,
) -> DebtCapacityResult:
    """
    Parameters
    ----------
    assumptions    : FinancialAssumptions (collateral value for LTV)
    projection     : ProjectionResult supplying EBITDA, rate, tenor, breaches
    covenants      : CovenantSet (defaults to the projection's)
    settings       : CapacitySettings (safety buffer, aggressive floor, ...)
    requested_debt : defaults to the debt stack total

    Returns
    -------
    DebtCapacityResult
    """
    covenants = covenants or projection.covenants
    settings  = settings or CapacitySettings()

    ebitda, rate, tenor = _capacity_inputs(projection)
    request = projection.debt_stack.total_debt if requested_debt is None else requested_debt

    target_dscr     = covenants.min_dscr
    safe_dscr       = target_dscr * settings.safety_buffer
    aggressive_dscr = settings.aggressive_dscr_floor

    f          = annuity_factor(rate, tenor)
    max_debt   = max_debt_for_dscr(ebitda, target_dscr, rate, tenor)
    safe       = max_debt_for_dscr(ebitda, safe_dscr, rate, tenor)
    aggressive = max_debt_for_dscr(ebitda, aggressive_dscr, rate, tenor)

    utilization = safe_divide(request, max_debt) * 100
    service     = request * f
    implied     = ebitda / service if service > 0 else NOT_APPLICABLE
    leverage    = request / ebitda if (ebitda > 0 and request > 0) else NOT_APPLICABLE
    collateral  = assumptions.collateral_value
    ltv         = request / collateral if (collateral > 0 and request > 0) else NOT_APPLICABLE

    # ---- Recommendation state machine ----
    reasons = []
    over_leverage = is_applicable(leverage) and leverage > covenants.max_leverage
    over_ltv = (covenants.max_ltv is not None and is_applicable(ltv)
                and ltv > covenants.max_ltv)

    if ebitda <= 0:
        reasons.append("EBITDA is not positive; no debt capacity")
        rec, risk = Recommendation.DECLINE, CapacityRisk.HIGH
    elif utilization > settings.decline_utilization_pct:
        reasons.append(f"Request is {utilization:.0f}% of maximum sustainable debt")
        rec, risk = Recommendation.DECLINE, CapacityRisk.HIGH
    elif request > max_debt or over_leverage or over_ltv or projection.breaches:
        if request > max_debt:
            reasons.append(f"Request exceeds maximum sustainable debt by {request - max_debt:,.0f}")
        if over_leverage:
            reasons.append(f"Leverage {leverage:.2f}x exceeds {covenants.max_leverage:.2f}x limit")
        if over_ltv:
            reasons.append(f"LTV {ltv:.1%} exceeds {covenants.max_ltv:.1%} limit")
        if projection.breaches:
            reasons.append(f"{len(projection.breaches)} projected covenant breach(es)")
        rec, risk = Recommendation.REDUCE_DEBT, CapacityRisk.HIGH
    elif request > safe or projection.covenant_report.marginal:
        if request > safe:
            reasons.append("Request is above safe debt level (inside the safety buffer)")
        if projection.covenant_report.marginal:
            reasons.append("One or more covenants are within the marginal band")
        rec, risk = Recommendation.APPROVE_WITH_CONDITIONS, CapacityRisk.MEDIUM
    else:
        reasons.append("Request is within safe debt capacity")
        rec, risk = Recommendation.APPROVE, CapacityRisk.LOW

    logger.debug("capacity: max %.0f safe %.0f request %.0f -> %s",
                 max_debt, safe, request, rec.value)

    return DebtCapacityResult(
        ebitda=ebitda,
        rate=rate,
        tenor=tenor,
        target_dscr=target_dscr,
        safe_dscr=safe_dscr,
        aggressive_dscr=aggressive_dscr,
        annual_payment_factor=f,
        max_sustainable_debt=max_debt,
        safe_debt=safe,
        aggressive_debt=aggressive,
        current_debt_request=request,
        excess_debt=max(0.0, request - max_debt),
        available_capacity=max(0.0, max_debt - request),
        utilization_pct=utilization,
        implied_dscr=implied,
        leverage=leverage,
        ltv=ltv,
        recommendation=rec,
        risk_level=risk,
        reasons=tuple(reasons),
    )


# ---------------------------------------------------------------------------
# Alternative structures
# ---------------------------------------------------------------------------

def _structure(name: str, description: str, debt: float, total_capital: float,
               ebitda: float, rate: float, tenor: float, collateral: float,
               covenants: CovenantSet) -> CapitalStructure:
    service  = debt * annuity_factor(rate, tenor)
    dscr     = ebitda / service if service > 0 else NOT_APPLICABLE
    leverage = debt / ebitda if (ebitda > 0 and debt > 0) else NOT_APPLICABLE
    ltv      = debt / collateral if (collateral > 0 and debt > 0) else NOT_APPLICABLE
    equity   = max(0.0, total_capital - debt)

    compliant = (
        (not is_applicable(dscr) or dscr >= covenants.min_dscr)
        and (not is_applicable(leverage) or leverage <= covenants.max_leverage)
        and (covenants.max_ltv is None or not is_applicable(ltv) or ltv <= covenants.max_ltv)
        and ebitda > 0
    )
    return CapitalStructure(
        name=name,
        description=description,
        debt=debt,
        equity=equity,
        tenor=tenor,
        debt_pct=safe_divide(debt, total_capital) * 100,
        equity_pct=safe_divide(equity, total_capital) * 100,
        annual_debt_service=service,
        dscr=dscr,
        leverage=leverage,
        ltv=ltv,
        covenant_compliant=compliant,
    )


def current_structure(
    assumptions: FinancialAssumptions,
    capacity: DebtCapacityResult,
    covenants: CovenantSet,
    equity_contribution: float = 0.0,
) -> CapitalStructure:
    total = capacity.current_debt_request + equity_contribution
    return _structure("Current", "Requested structure",
                      capacity.current_debt_request, total, capacity.ebitda,
                      capacity.rate, capacity.tenor, assumptions.collateral_value,
                      covenants)


def generate_alternative_structures(
    assumptions: FinancialAssumptions,
    capacity: DebtCapacityResult,
    covenants: CovenantSet,
    equity_contribution: float = 0.0,
    settings: Optional[CapacitySettings] = None,
) -> dict[str, CapitalStructure]:
    """
    Three re-sized structures holding total capital (debt + equity) fixed:
      - reduce_to_safe_debt : debt cut to the safe level, equity fills the gap
      - rebalance_mix       : debt set to the target leverage multiple
      - extend_tenor        : same debt over a longer tenor
    """
    settings   = settings or CapacitySettings()
    total      = capacity.current_debt_request + equity_contribution
    ebitda     = capacity.ebitda
    rate       = capacity.rate
    tenor      = capacity.tenor
    collateral = assumptions.collateral_value
    target_lev = settings.alternative_target_leverage
    extended   = tenor + settings.tenor_extension_years

    return {
        "reduce_to_safe_debt": _structure(
            "Reduce to Safe Debt",
            f"Cut debt to {capacity.safe_debt:,.0f} (DSCR {capacity.safe_dscr:.2f}x)",
            min(capacity.current_debt_request, capacity.safe_debt), total,
            ebitda, rate, tenor, collateral, covenants),
        "rebalance_mix": _structure(
            "Rebalance Debt / Equity",
            f"Size debt at {target_lev:.1f}x EBITDA",
            min(capacity.current_debt_request, max(0.0, ebitda) * target_lev), total,
            ebitda, rate, tenor, collateral, covenants),
        "extend_tenor": _structure(
            "Extend Tenor",
            f"Extend tenor by {settings.tenor_extension_years} years to {extended:g}",
            capacity.current_debt_request, total,
            ebitda, rate, extended, collateral, covenants),
    }
