#Project-level defaults for ledger analysis are in settings.py
import os
from pathlib import Path

from dotenv import load_dotenv

# Ensure local ".env" is loaded even for direct Python invocations
load_dotenv(Path(__file__).resolve().parent / ".env", override=False)


# settings.py
LEDGER_DEFAULTS = {
    "reporting_currency": os.getenv("LEDGER_REPORTING_CURRENCY", "TWD").upper(),  # single currency all values normalize into
    "quote_currency": os.getenv("LEDGER_QUOTE_CURRENCY", "TWD").upper(),  # home side of every stored exchangeRate (TWD per USD)
    "days_per_year": float(os.getenv("LEDGER_DAYS_PER_YEAR", "365")),  # XIRR year fraction denominator
    "projection_growth_rate": float(os.getenv("LEDGER_PROJECTION_GROWTH_RATE", "0.08")),  # projected-assets curve (8%/yr)
    "rebalance_target_precision": int(os.getenv("LEDGER_REBALANCE_TARGET_PRECISION", "1")),  # decimals when seeding targets
}

# XIRR solver settings
# Newton-Raphson from initial_guess; bisection over [bracket_low, bracket_high]
# when Newton stalls (|f'| < derivative_floor) or fails to converge.
XIRR_DEFAULTS = {
    "initial_guess": 0.10,
    "tolerance": 1e-7,
    "max_iterations": 100,
    "derivative_floor": 1e-10,
    "bracket_low": -0.99,
    "bracket_high": 10.0,
    "bisection_iterations": 200,
    "min_flow_amount": 1e-4,  # flows at or below this are ignored
}

# Market -> native currency / whole-unit settlement overrides (empty = project-root market_map.yaml)
MARKET_MAP_PATH = os.getenv("LEDGER_MARKET_MAP_PATH", "")
