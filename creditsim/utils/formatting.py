"""
formatting.py
-------------
Number formatting helpers for comparison tables and text digests.
Undefined ratios (NOT_APPLICABLE, None, NaN) render as "N/A".
"""

import numpy as np
import pandas as pd

from creditsim.model.metrics import is_applicable


def _missing(val) -> bool:
    if not is_applicable(val):
        return True
    return isinstance(val, float) and np.isnan(val)


def fmt_currency(val, ccy: str = "JMD", decimals: int = 0) -> str:
    if _missing(val):
        return "N/A"
    return f"{ccy} {val:,.{decimals}f}"


def fmt_millions(val, ccy: str = "JMD", decimals: int = 1) -> str:
    if _missing(val):
        return "N/A"
    return f"{ccy} {val / 1e6:,.{decimals}f}M"


def fmt_pct(val, decimals: int = 1) -> str:
    if _missing(val):
        return "N/A"
    return f"{val:.{decimals}%}"


def fmt_multiple(val, decimals: int = 2) -> str:
    if _missing(val):
        return "N/A"
    return f"{val:.{decimals}f}x"


def fmt_ratio(val, decimals: int = 2) -> str:
    if _missing(val):
        return "N/A"
    return f"{val:.{decimals}f}"


def fmt_months(val) -> str:
    if _missing(val):
        return "N/A"
    return f"{val:.1f} mo"


def fmt_irr(val) -> str:
    return fmt_pct(val, 1)


def fmt_moic(val) -> str:
    return fmt_multiple(val, 2)


# Row-level projection formatter: ratio rows vs currency rows
RATIO_ROWS = {"DSCR (x)", "ICR (x)", "Net Debt / EBITDA"}
PCT_ROWS   = {"LTV"}


def format_projection_df(df: pd.DataFrame, ccy: str = "JMD") -> pd.DataFrame:
    """Format a projection DataFrame for display."""
    out = df.copy().astype(object)
    for row_label in df.index:
        for col in df.columns:
            v = df.loc[row_label, col]
            if row_label in RATIO_ROWS:
                out.loc[row_label, col] = fmt_multiple(v)
            elif row_label in PCT_ROWS:
                out.loc[row_label, col] = fmt_pct(v)
            else:
                out.loc[row_label, col] = fmt_millions(v, ccy)
    return out
