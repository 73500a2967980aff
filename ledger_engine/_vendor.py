"""Small helpers for standalone-safe serialization/coercion."""

from __future__ import annotations

import dataclasses
import math
from datetime import date, datetime
from enum import Enum
from typing import Any

import numpy as np
import pandas as pd


def make_json_safe(obj: Any) -> Any:
    """Recursively convert values into JSON-serializable forms."""
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        if hasattr(obj, "to_dict"):
            return make_json_safe(obj.to_dict())
        return make_json_safe(dataclasses.asdict(obj))

    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if isinstance(key, Enum):
                safe_key = key.value
            elif isinstance(key, (pd.Timestamp, datetime)):
                safe_key = key.strftime("%Y-%m-%d %H:%M:%S")
            elif isinstance(key, date):
                safe_key = key.isoformat()
            elif isinstance(key, (int, float, str, bool, type(None))):
                safe_key = key
            else:
                safe_key = str(key)
            out[safe_key] = make_json_safe(value)
        return out

    if isinstance(obj, (list, tuple)):
        return [make_json_safe(item) for item in obj]

    if isinstance(obj, Enum):
        return obj.value

    if isinstance(obj, pd.DataFrame):
        return make_json_safe(obj.to_dict("records"))

    if isinstance(obj, pd.Series):
        return {str(k): make_json_safe(v) for k, v in obj.to_dict().items()}

    if isinstance(obj, np.ndarray):
        return make_json_safe(obj.tolist())

    if isinstance(obj, np.integer):
        return int(obj)

    if isinstance(obj, np.floating):
        return make_json_safe(float(obj))

    if isinstance(obj, np.bool_):
        return bool(obj)

    if isinstance(obj, (pd.Timestamp, datetime)):
        return obj.strftime("%Y-%m-%d %H:%M:%S")

    if isinstance(obj, date):
        return obj.isoformat()

    if isinstance(obj, float):
        if not math.isfinite(obj):
            return None
        return obj

    if isinstance(obj, (int, str, bool, type(None))):
        return obj

    return str(obj)


def _as_float(value: Any, default: float = 0.0) -> float:
    """Convert value to finite float with safe fallback."""
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    if not math.isfinite(out):
        return default
    return out


def _to_float(value: Any) -> float | None:
    try:
        if value is None:
            return None
        out = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(out):
        return None
    return out


def _safe_div(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Ratio that never propagates NaN/inf; non-positive denominators give ``default``."""
    if denominator is None or denominator <= 0:
        return default
    out = numerator / denominator
    if not math.isfinite(out):
        return default
    return out
