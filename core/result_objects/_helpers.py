"""Shared helpers for result object serialization and formatting."""

from typing import List, Optional
import pandas as pd
import numpy as np
from datetime import date, datetime


def _clean_nan_values(obj):
    """Recursively convert NaN values to None and handle boolean serialization for JSON."""
    if isinstance(obj, dict):
        return {k: _clean_nan_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_clean_nan_values(item) for item in obj]
    elif isinstance(obj, float) and (np.isnan(obj) or np.isinf(obj)):
        return None
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, (np.integer, np.floating)):
        val = obj.item()
        if isinstance(val, float) and (np.isnan(val) or np.isinf(val)):
            return None
        return val
    else:
        return obj


def _convert_to_json_serializable(obj):
    """Convert pandas objects and dates to JSON-serializable format."""
    if isinstance(obj, pd.DataFrame):
        return _clean_nan_values(obj.reset_index().to_dict("records"))
    elif isinstance(obj, pd.Series):
        return _clean_nan_values({str(k): v for k, v in obj.to_dict().items()})
    elif isinstance(obj, (pd.Timestamp, datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, dict):
        return {k: _convert_to_json_serializable(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_convert_to_json_serializable(item) for item in obj]
    return _clean_nan_values(obj)


def _format_cell(value, decimals: int) -> str:
    if value is None:
        return "-"
    if isinstance(value, (bool, np.bool_)):
        return "yes" if value else "no"
    if isinstance(value, (int, float, np.integer, np.floating)):
        if isinstance(value, float) and not np.isfinite(value):
            return "-"
        return f"{float(value):,.{decimals}f}"
    return str(value)


def _format_df_as_text(df: pd.DataFrame,
                       title: Optional[str] = None,
                       max_rows: int = 50,
                       decimals: int = 2,
                       col_min: int = 6,
                       col_max: int = 18) -> List[str]:
    """Format a report table as aligned text for CLI.

    Numbers are right-aligned with thousands separators, text columns are
    left-aligned. Column widths auto-adjust within ``[col_min, col_max]``.
    """
    lines: List[str] = []
    if title:
        lines.append(f"\n{title}")

    if df is None or getattr(df, 'empty', True):
        lines.append("(empty)")
        return lines

    sub = df.head(max_rows)
    cols = [str(c) for c in sub.columns]
    cells = [[_format_cell(v, decimals) for v in row] for row in sub.itertuples(index=False)]
    numeric = [pd.api.types.is_numeric_dtype(sub[c]) and not pd.api.types.is_bool_dtype(sub[c]) for c in sub.columns]

    widths = []
    for i, c in enumerate(cols):
        longest = max([len(c)] + [len(row[i]) for row in cells])
        widths.append(max(col_min, min(col_max, longest)))

    def _fit(text: str, width: int, right: bool) -> str:
        text = text[:width]
        return text.rjust(width) if right else text.ljust(width)

    lines.append("  ".join(_fit(c, w, numeric[i]) for i, (c, w) in enumerate(zip(cols, widths))))
    lines.append("  ".join("-" * w for w in widths))
    for row in cells:
        lines.append("  ".join(_fit(v, w, numeric[i]) for i, (v, w) in enumerate(zip(row, widths))))

    if df.shape[0] > max_rows:
        lines.append(f"… showing {max_rows} of {df.shape[0]} rows")

    return lines
