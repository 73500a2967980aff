"""Asset-allocation growth simulator."""

import pytest

from ledger_engine.simulation import SimulationAsset, simulate_allocation, weighted_expected_return


@pytest.fixture
def assets():
    return [
        SimulationAsset(ticker="VT", market="US", annualized_return=10.0, allocation=60),
        SimulationAsset(ticker="0050", market="TW", annualized_return=5.0, allocation=40),
    ]


def test_weighted_return(assets):
    assert weighted_expected_return(assets) == pytest.approx(8.0)


def test_allocation_must_sum_to_hundred(assets):
    assets[1].allocation = 30
    assert weighted_expected_return(assets) is None
    assert simulate_allocation(assets, 1_000, 5) is None


def test_lump_sum_compounds_yearly(assets):
    result = simulate_allocation(assets, 100_000, 3)

    assert result.final_value == pytest.approx(100_000 * 1.08 ** 3)
    assert result.total_invested == 100_000
    assert result.frequency is None
    assert [p.year for p in result.yearly_projections] == [1, 2, 3]
    assert result.yearly_projections[0].return_percent == pytest.approx(8.0)


def test_regular_contributions(assets):
    result = simulate_allocation(assets, 0, 1, regular_investment=1_000, frequency="quarterly")

    growth = 1.08 ** 0.25
    expected = 0.0
    for _ in range(4):
        expected = (expected + 1_000) * growth
    assert result.final_value == pytest.approx(expected)
    assert result.total_invested == 4_000
    assert result.yearly_projections[0].regular_investment == 4_000
    assert result.to_dict()["frequency"] == "quarterly"


def test_zero_years_is_rejected(assets):
    assert simulate_allocation(assets, 1_000, 0) is None


def test_unknown_frequency_raises(assets):
    with pytest.raises(ValueError):
        simulate_allocation(assets, 1_000, 5, regular_investment=100, frequency="weekly")
