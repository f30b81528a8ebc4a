"""Tests for display formatters."""

from __future__ import annotations

import math

from creditsim.model.metrics import NOT_APPLICABLE
from creditsim.utils.formatting import (
    fmt_currency, fmt_irr, fmt_millions, fmt_moic, fmt_months, fmt_multiple,
    fmt_pct, fmt_ratio,
)


class TestFormatters:
    def test_values(self):
        assert fmt_currency(1_234_567.8) == "JMD 1,234,568"
        assert fmt_currency(1_000.0, "USD", 2) == "USD 1,000.00"
        assert fmt_millions(12_500_000.0) == "JMD 12.5M"
        assert fmt_pct(0.1234) == "12.3%"
        assert fmt_multiple(1.137) == "1.14x"
        assert fmt_ratio(0.2) == "0.20"
        assert fmt_months(6.0) == "6.0 mo"
        assert fmt_irr(0.1549) == "15.5%"
        assert fmt_moic(2.5) == "2.50x"

    def test_missing_values(self):
        for fmt in (fmt_currency, fmt_millions, fmt_pct, fmt_multiple,
                    fmt_ratio, fmt_months, fmt_irr, fmt_moic):
            assert fmt(NOT_APPLICABLE) == "N/A"
            assert fmt(None) == "N/A"
            assert fmt(math.nan) == "N/A"
