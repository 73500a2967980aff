"""Standalone-safe configuration surface for ledger_engine."""

from __future__ import annotations

import os
from typing import Any


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


_DEFAULTS: dict[str, Any] = {
    "LEDGER_DEFAULTS": {
        "reporting_currency": os.getenv("LEDGER_REPORTING_CURRENCY", "TWD").upper(),
        "quote_currency": os.getenv("LEDGER_QUOTE_CURRENCY", "TWD").upper(),
        "days_per_year": _env_float("LEDGER_DAYS_PER_YEAR", 365.0),
        "projection_growth_rate": _env_float("LEDGER_PROJECTION_GROWTH_RATE", 0.08),
        "rebalance_target_precision": _env_int("LEDGER_REBALANCE_TARGET_PRECISION", 1),
    },
    "XIRR_DEFAULTS": {
        "initial_guess": _env_float("LEDGER_XIRR_INITIAL_GUESS", 0.10),
        "tolerance": _env_float("LEDGER_XIRR_TOLERANCE", 1e-7),
        "max_iterations": _env_int("LEDGER_XIRR_MAX_ITERATIONS", 100),
        "derivative_floor": _env_float("LEDGER_XIRR_DERIVATIVE_FLOOR", 1e-10),
        "bracket_low": _env_float("LEDGER_XIRR_BRACKET_LOW", -0.99),
        "bracket_high": _env_float("LEDGER_XIRR_BRACKET_HIGH", 10.0),
        "bisection_iterations": _env_int("LEDGER_XIRR_BISECTION_ITERATIONS", 200),
        "min_flow_amount": _env_float("LEDGER_XIRR_MIN_FLOW_AMOUNT", 1e-4),
    },
    "MARKET_MAP_PATH": os.getenv("LEDGER_MARKET_MAP_PATH", ""),
}


try:  # pragma: no cover - project-level overrides
    import settings as _settings  # type: ignore

    for key in list(_DEFAULTS.keys()):
        if hasattr(_settings, key):
            _DEFAULTS[key] = getattr(_settings, key)
except Exception:
    pass


LEDGER_DEFAULTS = _DEFAULTS["LEDGER_DEFAULTS"]
XIRR_DEFAULTS = _DEFAULTS["XIRR_DEFAULTS"]
MARKET_MAP_PATH = str(_DEFAULTS["MARKET_MAP_PATH"] or "")


def configure(**overrides: Any) -> None:
    """Programmatically override package configuration values."""
    globals_dict = globals()
    for key, value in overrides.items():
        if key not in globals_dict:
            raise KeyError(f"Unknown config key: {key}")
        globals_dict[key] = value


def reporting_currency() -> str:
    """Currently configured reporting currency code."""
    return str(LEDGER_DEFAULTS.get("reporting_currency", "TWD")).upper()


def quote_currency() -> str:
    """Home currency that stored per-record exchange rates are quoted in."""
    return str(LEDGER_DEFAULTS.get("quote_currency", "TWD")).upper()
