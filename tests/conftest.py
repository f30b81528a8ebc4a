"""Pytest fixtures: reference deals, multi-tranche stacks and config paths."""

from __future__ import annotations

from pathlib import Path

import pytest

from creditsim.model.assumptions import (
    AmortizationType, BalanceSheetSeed, CovenantSet, DayCount, DealConfig,
    DebtStack, DebtTranche, FinancialAssumptions, HistoricalContext,
    HistoricalYear, ValuationInputs, base_case,
)

CONFIG_DIR = Path(__file__).resolve().parent.parent / "configs"


@pytest.fixture
def reference_deal():
    """(assumptions, stack, covenants): 10M annuity loan at 10% / 5y on 3M EBITDA."""
    return base_case()


@pytest.fixture
def operating_assumptions() -> FinancialAssumptions:
    """Small round-number business with growth, working capital, capex and tax."""
    return FinancialAssumptions(
        base_revenue=1_000.0,
        revenue_growth=0.10,
        cogs_pct=0.50,
        opex_pct=0.20,
        wc_pct_of_revenue=0.10,
        capex_pct=0.05,
        tax_rate=0.25,
        da_pct_of_ppe=0.10,
        projection_years=5,
    )


@pytest.fixture
def balloon_tranche() -> DebtTranche:
    return DebtTranche(
        name="Balloon Loan",
        principal=10_000_000.0,
        rate=0.10,
        tenor_years=5,
        amortization=AmortizationType.BALLOON,
        balloon_pct=0.50,
        use_balloon=True,
    )


@pytest.fixture
def multi_tranche_stack() -> DebtStack:
    return DebtStack((
        DebtTranche("Senior", 10_000_000.0, 0.10, 3),
        DebtTranche("Junior", 5_000_000.0, 0.08, 5,
                    amortization=AmortizationType.BULLET,
                    day_count=DayCount.ACTUAL_360),
    ))


@pytest.fixture
def history() -> HistoricalContext:
    return HistoricalContext(
        years=(HistoricalYear(2022, 100.0, 20.0),
               HistoricalYear(2023, 110.0, 22.0),
               HistoricalYear(2024, 121.0, 24.2)),
    )


@pytest.fixture
def reference_config(reference_deal) -> DealConfig:
    a, stack, cov = reference_deal
    return DealConfig(
        assumptions=a,
        debt_stack=stack,
        covenants=cov,
        seed=BalanceSheetSeed(opening_cash=1_000_000.0),
        valuation=ValuationInputs(equity_contribution=4_000_000.0),
        name="reference",
    )


@pytest.fixture
def sample_deal_path() -> Path:
    return CONFIG_DIR / "sample_deal.yaml"


@pytest.fixture
def stress_table_path() -> Path:
    return CONFIG_DIR / "stress_scenarios.yaml"


@pytest.fixture
def default_covenants() -> CovenantSet:
    return CovenantSet()
