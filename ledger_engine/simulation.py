"""Asset-allocation growth simulator.

Projects an initial amount, plus optional regular contributions, at the
allocation-weighted expected annual return. Contributions are invested at
the start of each period, then the period's return is applied.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ledger_engine._vendor import _safe_div, make_json_safe
from ledger_engine.constants import WEIGHT_TOLERANCE


FREQUENCIES = {"monthly": 12, "quarterly": 4, "yearly": 1}


@dataclass
class SimulationAsset:
    ticker: str
    market: str
    annualized_return: float  # percent
    allocation: float  # percent of the portfolio


@dataclass
class YearlyProjection:
    year: int
    value: float
    year_return: float
    return_percent: float
    regular_investment: float
    cumulative_investment: float

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "year": self.year,
                "value": self.value,
                "return": self.year_return,
                "returnPercent": self.return_percent,
                "regularInvestment": self.regular_investment,
                "cumulativeInvestment": self.cumulative_investment,
            }
        )


@dataclass
class SimulationResult:
    initial_amount: float
    years: int
    final_value: float
    total_invested: float
    total_return: float
    total_return_percent: float
    annualized_return: float
    yearly_projections: List[YearlyProjection] = field(default_factory=list)
    regular_investment: float = 0.0
    frequency: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return make_json_safe(
            {
                "initialAmount": self.initial_amount,
                "years": self.years,
                "finalValue": self.final_value,
                "totalInvested": self.total_invested,
                "totalReturn": self.total_return,
                "totalReturnPercent": self.total_return_percent,
                "annualizedReturn": self.annualized_return,
                "regularInvestment": self.regular_investment,
                "frequency": self.frequency,
                "yearlyProjections": [p.to_dict() for p in self.yearly_projections],
            }
        )


def weighted_expected_return(assets: Sequence[SimulationAsset]) -> Optional[float]:
    """Allocation-weighted annual return in percent; ``None`` unless allocations sum to 100."""
    if not assets:
        return None
    total_allocation = sum(a.allocation for a in assets)
    if abs(total_allocation - 100.0) > WEIGHT_TOLERANCE:
        return None
    return sum(a.annualized_return * a.allocation / 100.0 for a in assets)


def simulate_allocation(
    assets: Sequence[SimulationAsset],
    initial_amount: float,
    years: int,
    regular_investment: float = 0.0,
    frequency: str = "monthly",
) -> Optional[SimulationResult]:
    """Year-by-year projection; ``None`` for an invalid allocation or horizon."""
    if frequency not in FREQUENCIES:
        raise ValueError(f"Unknown contribution frequency: {frequency!r}")
    weighted = weighted_expected_return(assets)
    if weighted is None or years <= 0:
        return None

    periods = FREQUENCIES[frequency] if regular_investment > 0 else 1
    period_growth = (1.0 + weighted / 100.0) ** (1.0 / periods)
    contribution = regular_investment if regular_investment > 0 else 0.0

    value = float(initial_amount)
    cumulative = float(initial_amount)
    projections: List[YearlyProjection] = []
    for year in range(1, years + 1):
        start_value = value
        invested_this_year = 0.0
        for _ in range(periods):
            value += contribution
            invested_this_year += contribution
            value *= period_growth
        cumulative += invested_this_year
        year_return = value - start_value - invested_this_year
        projections.append(
            YearlyProjection(
                year=year,
                value=value,
                year_return=year_return,
                return_percent=_safe_div(year_return, start_value + invested_this_year) * 100.0 if start_value > 0 else 0.0,
                regular_investment=invested_this_year,
                cumulative_investment=cumulative,
            )
        )

    total_return = value - cumulative
    return SimulationResult(
        initial_amount=float(initial_amount),
        years=years,
        final_value=value,
        total_invested=cumulative,
        total_return=total_return,
        total_return_percent=_safe_div(total_return, cumulative) * 100.0,
        annualized_return=weighted,
        yearly_projections=projections,
        regular_investment=contribution,
        frequency=frequency if contribution > 0 else None,
    )
