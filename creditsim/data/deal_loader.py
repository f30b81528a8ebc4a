"""
deal_loader.py
--------------
Loads a deal (assumptions, debt stack, covenants, seed, valuation and
capacity settings, optional scenario table and history) from a YAML or
JSON file into one DealConfig.

Structural problems (missing file, wrong top-level type, unknown keys,
bad enum values, missing required fields) raise DealConfigError.
Financial sanity checks are left to model.validation.
"""

import dataclasses
import json
import logging
from datetime import date
from pathlib import Path
from typing import Any, Mapping, Union

import yaml

from creditsim.model.assumptions import (
    AmortizationType, BalanceSheetSeed, CapacitySettings, CovenantSet, DayCount,
    DealConfig, DebtStack, DebtTranche, FinancialAssumptions, HistoricalContext,
    HistoricalYear, IcrBasis, PaymentFrequency, StressScenario, ValuationInputs,
)
from creditsim.model.validation import CreditSimError, numeric_fields

logger = logging.getLogger(__name__)


class DealConfigError(CreditSimError):
    """Configuration-level error for deal loading."""


# ---------------------------------------------------------------------------
# Core helpers
# ---------------------------------------------------------------------------

def _load_raw(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Deal config not found: {path}")

    suffix = path.suffix.lower()
    with path.open("r", encoding="utf-8") as f:
        if suffix in (".yml", ".yaml"):
            data = yaml.safe_load(f)
        elif suffix == ".json":
            data = json.load(f)
        else:
            raise DealConfigError(f"Unsupported config extension '{suffix}' for {path}")

    if data is None:
        raise DealConfigError(f"Empty configuration in file: {path}")
    if not isinstance(data, dict):
        raise DealConfigError(
            f"Expected a mapping at top level of {path}, got {type(data).__name__}")
    return data


def _to_int(value) -> int:
    if isinstance(value, bool):
        raise TypeError("boolean is not a count")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{value!r} is not a whole number")
        return int(value)
    return int(value)


def _to_float(value) -> float:
    if isinstance(value, bool):
        raise TypeError("boolean is not a number")
    return float(value)


def _build(cls, raw: Any, section: str, converters: Mapping[str, Any] = None):
    """Instantiate a dataclass from a mapping, rejecting unknown keys."""
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise DealConfigError(f"Section '{section}' must be a mapping")

    known = {f.name for f in dataclasses.fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise DealConfigError(f"Unknown keys in '{section}': {', '.join(sorted(unknown))}")

    converters = dict(converters or {})
    for name, kind in numeric_fields(cls).items():
        converters.setdefault(name, _to_int if kind is int else _to_float)

    kwargs = dict(raw)
    for key, convert in converters.items():
        if kwargs.get(key) is not None:
            try:
                kwargs[key] = convert(kwargs[key])
            except (ValueError, TypeError) as exc:
                raise DealConfigError(f"Invalid value for '{section}.{key}': {kwargs[key]!r}") from exc
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise DealConfigError(f"Section '{section}': {exc}") from exc


def _to_date(value) -> date:
    return value if isinstance(value, date) else date.fromisoformat(str(value))


TRANCHE_CONVERTERS = {
    "name":              str,
    "day_count":         DayCount,
    "amortization":      AmortizationType,
    "payment_frequency": PaymentFrequency,
    "custom_intervals":  lambda v: tuple(_to_float(x) for x in v),
    "maturity_date":     _to_date,
}


def parse_scenario_table(raw: Any) -> dict[str, StressScenario]:
    if not isinstance(raw, dict) or not raw:
        raise DealConfigError("Scenario table must be a non-empty mapping of key -> scenario")
    table = {}
    for key, spec in raw.items():
        spec = dict(spec or {})
        spec.setdefault("name", str(key))
        table[str(key)] = _build(StressScenario, spec, f"scenarios.{key}")
    return table


def _parse_history(raw: Any) -> HistoricalContext:
    if not isinstance(raw, dict):
        raise DealConfigError("Section 'history' must be a mapping")
    years = tuple(_build(HistoricalYear, y, "history.years") for y in raw.get("years", []))
    try:
        flows = tuple(_to_float(x) for x in raw.get("monthly_operating_cash_flows", []))
    except (ValueError, TypeError) as exc:
        raise DealConfigError("history.monthly_operating_cash_flows must be numeric") from exc
    return HistoricalContext(years=years, monthly_operating_cash_flows=flows)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_deal(data: dict[str, Any]) -> DealConfig:
    """Build a DealConfig from an already-loaded mapping."""
    allowed = {"name", "assumptions", "tranches", "covenants", "seed",
               "valuation", "capacity", "scenarios", "history"}
    unknown = set(data) - allowed
    if unknown:
        raise DealConfigError(f"Unknown top-level keys: {', '.join(sorted(unknown))}")

    tranches_raw = data.get("tranches")
    if not isinstance(tranches_raw, list):
        raise DealConfigError("'tranches' must be a list of tranche mappings")

    tranches = tuple(
        _build(DebtTranche, t, f"tranches[{i}]", TRANCHE_CONVERTERS)
        for i, t in enumerate(tranches_raw)
    )
    scenarios = None
    if data.get("scenarios") is not None:
        scenarios = tuple(parse_scenario_table(data["scenarios"]).items())
    history = _parse_history(data["history"]) if data.get("history") is not None else None

    return DealConfig(
        assumptions=_build(FinancialAssumptions, data.get("assumptions"), "assumptions"),
        debt_stack=DebtStack(tranches),
        covenants=_build(CovenantSet, data.get("covenants"), "covenants",
                         {"icr_basis": IcrBasis}),
        seed=_build(BalanceSheetSeed, data.get("seed"), "seed"),
        valuation=_build(ValuationInputs, data.get("valuation"), "valuation"),
        capacity=_build(CapacitySettings, data.get("capacity"), "capacity"),
        scenarios=scenarios,
        history=history,
        name=str(data.get("name", "deal")),
    )


def load_deal(path: Union[str, Path]) -> DealConfig:
    path = Path(path)
    config = parse_deal(_load_raw(path))
    logger.info("loaded deal '%s' from %s (%d tranches)",
                config.name, path, len(config.debt_stack))
    return config


def load_scenario_table(path: Union[str, Path]) -> dict[str, StressScenario]:
    """Load a stand-alone scenario table: top level is key -> scenario fields."""
    path = Path(path)
    raw = _load_raw(path)
    return parse_scenario_table(raw.get("scenarios", raw))
