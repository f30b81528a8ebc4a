"""
amortization.py
---------------
Per-tranche amortization schedule builder.

Key mechanics:
  - Interest on the beginning balance at the tranche's effective rate
    (Actual/360 grosses the nominal rate up by 365/360)
  - Interest-only years pay no principal
  - Principal by mode: straight-line, level annuity, bullet / interest-only
    at maturity, balloon (gated), or a 4-bucket custom profile
  - Final tenor year retires whatever balance remains, so principal
    paid (including balloon) always equals the original principal

Returns an AmortizationSchedule with one AmortizationPeriod per year.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Sequence

import pandas as pd

from creditsim.model.assumptions import AmortizationType, DebtTranche
from creditsim.model.validation import InvalidTrancheError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AmortizationPeriod:
    year: int
    beginning_balance: float
    principal: float          # scheduled amortization (excludes balloon)
    balloon: float
    interest: float
    ending_balance: float
    interest_only: bool = False

    @property
    def total_principal(self) -> float:
        return self.principal + self.balloon

    @property
    def debt_service(self) -> float:
        return self.principal + self.balloon + self.interest


@dataclass(frozen=True)
class AmortizationSchedule:
    tranche: DebtTranche
    periods: tuple[AmortizationPeriod, ...]

    def __len__(self) -> int:
        return len(self.periods)

    @property
    def total_principal(self) -> float:
        return math.fsum(p.total_principal for p in self.periods)

    @property
    def total_interest(self) -> float:
        return math.fsum(p.interest for p in self.periods)

    @property
    def balloon_payment(self) -> float:
        return math.fsum(p.balloon for p in self.periods)

    def period(self, year: int) -> AmortizationPeriod:
        """Row for a given year; zero row once the tranche has matured."""
        if 1 <= year <= len(self.periods):
            return self.periods[year - 1]
        return AmortizationPeriod(year, 0.0, 0.0, 0.0, 0.0, 0.0)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([{
            "Year":              p.year,
            "Beginning Balance": round(p.beginning_balance, 2),
            "Principal":         round(p.principal, 2),
            "Balloon":           round(p.balloon, 2),
            "Interest":          round(p.interest, 2),
            "Debt Service":      round(p.debt_service, 2),
            "Ending Balance":    round(p.ending_balance, 2),
            "Rate":              f"{self.tranche.effective_rate:.2%}",
        } for p in self.periods])


@dataclass(frozen=True)
class PeriodicPayment:
    period: int
    principal: float
    interest: float
    ending_balance: float

    @property
    def payment(self) -> float:
        return self.principal + self.interest


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def annuity_factor(rate: float, periods: float) -> float:
    """Level payment per unit of principal: r(1+r)^n / ((1+r)^n - 1), or 1/n at r = 0."""
    if periods <= 0:
        return 0.0
    if rate == 0:
        return 1.0 / periods
    growth = (1 + rate) ** periods
    return rate * growth / (growth - 1)


def expand_custom_intervals(intervals: Sequence[float], tenor: int,
                            interest_only_years: int = 0) -> list[float]:
    """
    Expand 4 percentage buckets into a per-year percentage stream of length tenor.

    IO years get 0%. The remaining years are split into 4 buckets, with
    remainder years going to the first buckets. Each bucket's percentage
    is spread evenly across its years, and any residual lands on the last
    amortizing year so the stream totals exactly 100.
    """
    io = min(max(interest_only_years, 0), tenor - 1)
    amort_years = tenor - io
    base, rem = divmod(amort_years, 4)

    stream = [0.0] * io
    for k, pct in enumerate(intervals):
        bucket_years = base + (1 if k < rem else 0)
        stream.extend([pct / bucket_years] * bucket_years if bucket_years else [])

    residual = 100.0 - math.fsum(stream)
    if residual != 0:
        stream[-1] += residual
    return stream


# ---------------------------------------------------------------------------
# Schedule builder
# ---------------------------------------------------------------------------

def build_amortization_schedule(tranche: DebtTranche,
                                horizon: Optional[int] = None) -> AmortizationSchedule:
    """
    Parameters
    ----------
    tranche : DebtTranche
    horizon : optional projection length; years past maturity are zero rows

    Returns
    -------
    AmortizationSchedule covering max(tenor, horizon) years
    """
    tenor = tranche.tenor_years
    if tenor <= 0:
        raise InvalidTrancheError(f"{tranche.name}: tenor must be greater than 0")

    mode = tranche.amortization
    pct_stream = None
    if mode == AmortizationType.CUSTOM:
        intervals = tranche.custom_intervals or ()
        if len(intervals) != 4:
            logger.warning("%s: custom schedule needs 4 intervals (got %d); "
                           "falling back to straight-line", tranche.name, len(intervals))
            mode = AmortizationType.AMORTIZING
        else:
            pct_stream = expand_custom_intervals(intervals, tenor, tranche.interest_only_years)

    principal = tranche.principal
    rate      = tranche.effective_rate
    io        = min(max(tranche.interest_only_years, 0), tenor - 1)
    balloon   = tranche.balloon_amount
    straight  = (principal - balloon) / (tenor - io)
    level_pmt = principal * annuity_factor(rate, tenor - io)

    periods = []
    balance = principal
    for yr in range(1, tenor + 1):
        beginning = balance
        interest  = beginning * rate
        in_io     = yr <= io

        if mode == AmortizationType.CUSTOM:
            scheduled = principal * pct_stream[yr - 1] / 100.0
        elif in_io:
            scheduled = 0.0
        elif mode in (AmortizationType.AMORTIZING, AmortizationType.BALLOON):
            scheduled = straight
        elif mode == AmortizationType.ANNUITY:
            scheduled = level_pmt - interest
        else:  # interest-only / bullet: principal at maturity
            scheduled = 0.0

        balloon_paid = 0.0
        if yr == tenor:
            # Retire the remaining balance; balloon portion reported separately
            balloon_paid = min(balloon, beginning)
            scheduled = beginning - balloon_paid

        paid   = max(0.0, min(scheduled, beginning))
        ending = max(0.0, beginning - paid - balloon_paid)

        periods.append(AmortizationPeriod(
            year=yr,
            beginning_balance=beginning,
            principal=paid,
            balloon=balloon_paid,
            interest=interest,
            ending_balance=ending,
            interest_only=in_io and paid == 0.0,
        ))
        balance = ending

    if horizon is not None and horizon > tenor:
        periods.extend(AmortizationPeriod(yr, 0.0, 0.0, 0.0, 0.0, 0.0)
                       for yr in range(tenor + 1, horizon + 1))

    logger.debug("%s: %d-year %s schedule, total interest %.2f",
                 tranche.name, tenor, mode.value, sum(p.interest for p in periods))
    return AmortizationSchedule(tranche=tranche, periods=tuple(periods))


def periodic_payments(tranche: DebtTranche,
                      period: AmortizationPeriod) -> list[PeriodicPayment]:
    """
    Split one annual row into installments at the tranche's payment frequency.
    Principal is spread evenly; interest accrues on the declining balance at
    the periodic rate; the balloon falls in the last installment.
    """
    n = tranche.payment_frequency.periods_per_year
    periodic_rate = tranche.effective_rate / n
    step = period.principal / n

    out = []
    balance = period.beginning_balance
    for k in range(1, n + 1):
        interest = balance * periodic_rate
        paid = step + (period.balloon if k == n else 0.0)
        balance = max(0.0, balance - paid)
        out.append(PeriodicPayment(period=k, principal=paid,
                                   interest=interest, ending_balance=balance))
    return out
