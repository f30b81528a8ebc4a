"""
validation.py
-------------
Checks a deal configuration before any computation runs.

Blocking problems become errors; advisory issues (large balloon, long
tenor, soft covenant levels, implausible history) become warnings.
Neither raises: callers receive a ValidationResult and decide.
"""

import dataclasses
import logging
import numbers
from dataclasses import dataclass
from typing import Optional

from creditsim.model.assumptions import (
    AmortizationType, BalanceSheetSeed, CovenantSet, DebtStack, FinancialAssumptions,
    HistoricalContext, ValuationInputs,
)
from creditsim.model.dcf import compute_wacc

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class CreditSimError(ValueError):
    """Base class for engine errors."""


class InvalidTrancheError(CreditSimError):
    """A tranche whose terms cannot produce a schedule."""


class InvalidConfigurationError(CreditSimError):
    def __init__(self, validation: "ValidationResult"):
        self.validation = validation
        super().__init__("; ".join(validation.errors) or "invalid configuration")


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ValidationResult:
    errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def merge(self, other: "ValidationResult") -> "ValidationResult":
        return ValidationResult(self.errors + other.errors,
                                self.warnings + other.warnings)

    def raise_for_errors(self) -> None:
        if self.errors:
            raise InvalidConfigurationError(self)


# ---------------------------------------------------------------------------
# Field types
# ---------------------------------------------------------------------------

def numeric_fields(cls) -> dict[str, type]:
    """Numeric fields of an input dataclass mapped to int or float."""
    kinds = {}
    for f in dataclasses.fields(cls):
        if f.type in (float, Optional[float]):
            kinds[f.name] = float
        elif f.type is int:
            kinds[f.name] = int
    return kinds


def _is_kind(value, kind: type) -> bool:
    if isinstance(value, bool):
        return False
    if kind is int:
        return isinstance(value, numbers.Integral)
    return isinstance(value, numbers.Real)


def _type_errors(label: str, obj) -> list[str]:
    errors = []
    for name, kind in numeric_fields(type(obj)).items():
        value = getattr(obj, name)
        if value is None and kind is float:
            continue
        if not _is_kind(value, kind):
            expected = "a whole number" if kind is int else "numeric"
            errors.append(f"{label}: {name} must be {expected} (got {value!r})")
    return errors


def check_input_types(assumptions: FinancialAssumptions,
                      debt_stack: DebtStack,
                      covenants: CovenantSet,
                      valuation_inputs: Optional[ValuationInputs] = None,
                      seed: Optional[BalanceSheetSeed] = None) -> ValidationResult:
    """Reject inputs whose numeric fields hold the wrong type before any arithmetic."""
    errors = _type_errors("Assumptions", assumptions)
    for i, t in enumerate(debt_stack, start=1):
        name = t.name.strip() if isinstance(t.name, str) and t.name.strip() else f"Tranche {i}"
        if not isinstance(t.name, str):
            errors.append(f"{name}: name must be text (got {t.name!r})")
        errors += _type_errors(name, t)
        if t.custom_intervals is not None and not all(
                _is_kind(p, float) for p in t.custom_intervals):
            errors.append(f"{name}: custom_intervals must be numeric")
    errors += _type_errors("Covenants", covenants)
    if valuation_inputs is not None:
        errors += _type_errors("Valuation", valuation_inputs)
    if seed is not None:
        errors += _type_errors("Seed", seed)
    return ValidationResult(tuple(errors), ())


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def _check_assumptions(a: FinancialAssumptions, errors: list, warnings: list) -> None:
    if a.base_revenue <= 0:
        errors.append("Base revenue must be greater than 0")
    if a.cogs_pct < 0 or a.opex_pct < 0:
        errors.append("COGS % and OpEx % cannot be negative")
    if a.cogs_pct + a.opex_pct >= 1.0:
        errors.append(
            f"COGS % + OpEx % must be below 100% (got {a.cogs_pct + a.opex_pct:.1%})")
    if not 0 <= a.tax_rate <= 1:
        errors.append("Tax rate must be between 0% and 100%")
    if a.wc_pct_of_revenue < 0 or a.capex_pct < 0:
        errors.append("Working capital % and capex % cannot be negative")
    if not 1 <= a.projection_years <= 50:
        errors.append("Projection years must be between 1 and 50")
    if a.collateral_value < 0:
        errors.append("Collateral value cannot be negative")


def _check_tranches(stack: DebtStack, horizon: int, errors: list, warnings: list) -> None:
    seen = set()
    for i, t in enumerate(stack, start=1):
        label = t.name.strip() if t.name and t.name.strip() else f"Tranche {i}"
        if not t.name or not t.name.strip():
            errors.append(f"{label}: name is required")
        key = label.lower()
        if key in seen:
            errors.append(f"Duplicate tranche name: '{label}'")
        seen.add(key)

        if t.principal < 0:
            errors.append(f"{label}: principal cannot be negative")
        elif t.principal == 0:
            warnings.append(f"{label}: principal is zero")
        if t.rate < 0:
            errors.append(f"{label}: interest rate cannot be negative")
        elif t.rate > 0.50:
            warnings.append(f"{label}: interest rate {t.rate:.1%} is unusually high")

        if t.tenor_years <= 0:
            errors.append(f"{label}: tenor must be greater than 0")
        else:
            if t.interest_only_years < 0:
                errors.append(f"{label}: interest-only years cannot be negative")
            elif t.interest_only_years >= t.tenor_years:
                errors.append(f"{label}: interest-only period must be shorter than tenor")
            if t.tenor_years > 30:
                warnings.append(f"{label}: tenor over 30 years is unusual")
            if t.tenor_years > horizon:
                warnings.append(
                    f"{label}: matures in year {t.tenor_years}, after the "
                    f"{horizon}-year projection; balance remains outstanding at horizon")

        if not 0 <= t.balloon_pct <= 1:
            errors.append(f"{label}: balloon percentage must be between 0% and 100%")
        elif t.balloon_applies and t.balloon_pct > 0.50:
            warnings.append(
                f"{label}: balloon of {t.balloon_pct:.0%} creates significant refinancing risk")
        elif t.balloon_pct > 0 and not t.balloon_applies:
            warnings.append(
                f"{label}: balloon percentage is set but not in effect "
                f"(requires balloon amortization with the balloon flag enabled)")

        if t.amortization == AmortizationType.CUSTOM:
            intervals = t.custom_intervals or ()
            if len(intervals) != 4:
                warnings.append(
                    f"{label}: custom schedule needs 4 intervals; straight-line amortization will be used")
            elif any(p < 0 for p in intervals):
                errors.append(f"{label}: custom amortization intervals cannot be negative")
            elif abs(sum(intervals) - 100.0) > 1.0:
                warnings.append(
                    f"{label}: custom intervals sum to {sum(intervals):.1f}%; "
                    f"residual applied to final amortizing year")


def _check_covenants(c: CovenantSet, errors: list, warnings: list) -> None:
    if c.min_dscr <= 0 or c.target_icr <= 0 or c.max_leverage <= 0:
        errors.append("Covenant thresholds must be greater than 0")
    if c.max_ltv is not None and c.max_ltv <= 0:
        errors.append("Maximum LTV must be greater than 0")
    if 0 < c.min_dscr < 1.0:
        warnings.append("Minimum DSCR below 1.0x means debt service exceeds cash flow")
    if 0 < c.target_icr < 1.0:
        warnings.append("Target ICR below 1.0x means interest exceeds earnings")


def _check_valuation(v: ValuationInputs, a: FinancialAssumptions, stack: DebtStack,
                     errors: list, warnings: list) -> None:
    g = v.terminal_growth if v.terminal_growth is not None else a.terminal_growth
    wacc = compute_wacc(v, a, stack)["wacc"]
    if v.terminal_method == "perpetuity" and wacc <= g:
        errors.append(f"WACC ({wacc:.2%}) must exceed terminal growth ({g:.2%})")
    if v.terminal_method == "exit_multiple":
        multiple = v.exit_multiple if v.exit_multiple is not None else a.exit_multiple
        if multiple is None or multiple <= 0:
            errors.append("Exit multiple method requires a positive exit multiple")
    if v.terminal_method not in ("perpetuity", "exit_multiple"):
        errors.append(f"Unknown terminal method '{v.terminal_method}'")
    if not 0 <= v.target_debt_weight < 1:
        errors.append("Target debt weight must be in [0, 1)")
    if wacc > 0.50:
        warnings.append(f"WACC of {wacc:.1%} is unusually high")


def validate_inputs(
    assumptions: FinancialAssumptions,
    debt_stack: DebtStack,
    covenants: CovenantSet,
    valuation_inputs: Optional[ValuationInputs] = None,
) -> ValidationResult:
    typed = check_input_types(assumptions, debt_stack, covenants, valuation_inputs)
    if not typed.is_valid:
        return typed

    errors, warnings = [], []
    _check_assumptions(assumptions, errors, warnings)
    _check_tranches(debt_stack, assumptions.projection_years, errors, warnings)
    _check_covenants(covenants, errors, warnings)
    if valuation_inputs is not None:
        _check_valuation(valuation_inputs, assumptions, debt_stack, errors, warnings)

    for w in warnings:
        logger.warning("validation: %s", w)
    return ValidationResult(tuple(errors), tuple(warnings))


def validate_historical_data(history: HistoricalContext) -> ValidationResult:
    """Data-quality warnings only; history never blocks a run."""
    warnings = []
    prev = None
    for h in history.years:
        malformed = _type_errors(str(h.year), h)
        if malformed:
            warnings.extend(f"{m}; year ignored" for m in malformed)
            continue
        if h.revenue > 0:
            margin = h.ebitda / h.revenue
            if margin > 1 or margin < -1:
                warnings.append(f"{h.year}: EBITDA margin of {margin:.0%} looks implausible")
        if prev is not None and prev.revenue > 0:
            change = (h.revenue - prev.revenue) / prev.revenue
            if abs(change) > 2.0:
                warnings.append(
                    f"{h.year}: revenue changed {change:+.0%} year over year; check data")
        prev = h

    for w in warnings:
        logger.warning("history: %s", w)
    return ValidationResult((), tuple(warnings))
