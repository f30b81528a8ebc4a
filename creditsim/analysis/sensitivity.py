"""
sensitivity.py
--------------
Two-way and one-way sensitivity tables.

Table 1: WACC (rows) vs terminal growth (cols) → equity value
         (cells where WACC <= g are None)
Table 2: Debt capacity vs a shifted driver (EBITDA, rate or tenor)
"""

from typing import Optional, Sequence

import pandas as pd

from creditsim.analysis.debt_capacity import DebtCapacityResult, max_debt_for_dscr
from creditsim.model.dcf import enterprise_value, perpetuity_terminal_value
from creditsim.model.metrics import is_applicable


def _equity_point(fcffs: Sequence[float], net_debt: float,
                  wacc: float, growth: float) -> Optional[float]:
    """Perpetuity-method equity value, or None where undefined."""
    if not fcffs:
        return None
    tv = perpetuity_terminal_value(fcffs[-1], wacc, growth)
    if not is_applicable(tv):
        return None
    return enterprise_value(fcffs, wacc, tv) - net_debt


def _pct_labels(values: Sequence[float], prefix: str = "") -> list[str]:
    """Percent labels with the fewest decimals that keep every label distinct."""
    for decimals in range(1, 7):
        labels = [f"{prefix}{v:.{decimals}%}" for v in values]
        if len(set(labels)) == len(labels):
            return labels
    return [f"{prefix}{v!r}" for v in values]


def wacc_growth_sensitivity(
    fcffs: Sequence[float],
    net_debt: float,
    wacc_values: Sequence[float],
    growth_values: Sequence[float],
) -> pd.DataFrame:
    """
    Equity value grid: rows = WACC, cols = terminal growth.
    Everything except WACC and g is held fixed.
    """
    wacc_labels = _pct_labels(wacc_values)
    data = {}
    for g, g_label in zip(growth_values, _pct_labels(growth_values, "g ")):
        col = {}
        for w, w_label in zip(wacc_values, wacc_labels):
            col[w_label] = _equity_point(fcffs, net_debt, w, g)
        data[g_label] = col

    df = pd.DataFrame(data).astype(object)
    df = df.where(pd.notna(df), None)
    df.index.name = "WACC"
    return df


DEFAULT_SHIFTS = {
    "ebitda": [-0.20, -0.10, 0.0, 0.10, 0.20],       # relative
    "rate":   [-0.02, -0.01, 0.0, 0.01, 0.02],       # absolute
    "tenor":  [-2, -1, 0, 1, 2],                      # years
}


def debt_capacity_sensitivity(
    capacity: DebtCapacityResult,
    variable: str = "ebitda",
    shifts: Optional[Sequence[float]] = None,
) -> pd.DataFrame:
    """
    Max sustainable and safe debt as one driver moves, others held fixed.
    variable: "ebitda" (relative shift), "rate" (absolute), "tenor" (years).
    """
    if variable not in DEFAULT_SHIFTS:
        raise ValueError(f"Unknown sensitivity variable '{variable}'")
    shifts = DEFAULT_SHIFTS[variable] if shifts is None else shifts

    rows = []
    for s in shifts:
        ebitda, rate, tenor = capacity.ebitda, capacity.rate, capacity.tenor
        if variable == "ebitda":
            ebitda = ebitda * (1 + s)
            label = f"{s:+.0%}"
        elif variable == "rate":
            rate = max(0.0, rate + s)
            label = f"{rate:.2%}"
        else:
            tenor = max(1, tenor + s)
            label = f"{tenor:g} yrs"

        max_debt = max_debt_for_dscr(ebitda, capacity.target_dscr, rate, tenor)
        safe     = max_debt_for_dscr(ebitda, capacity.safe_dscr, rate, tenor)
        rows.append({
            variable.upper():        label,
            "Max Sustainable Debt":  max_debt,
            "Safe Debt":             safe,
            "Change vs Base":        max_debt - capacity.max_sustainable_debt,
        })
    return pd.DataFrame(rows).set_index(variable.upper())
