"""Result objects for structured service layer responses.

    from core.result_objects import LedgerAnalysisResult
"""

from ._helpers import (
    _convert_to_json_serializable,
    _clean_nan_values,
    _format_df_as_text,
)
from .ledger import LedgerAnalysisResult

__all__ = [
    "LedgerAnalysisResult",
]
