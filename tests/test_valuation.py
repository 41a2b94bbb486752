"""Tests for position valuation, portfolio totals, 24h change and allocation."""

import pytest

from cryptofolio.models import Position
from cryptofolio.valuation import allocation, portfolio_metrics, value_portfolio, value_positions


def _pos(asset, qty, avg):
    return Position(asset=asset, total_quantity=qty, average_buy_price=avg, total_investment=qty * avg)


class TestValuePositions:
    def test_value_pnl_and_percentage(self, quote):
        (row,) = value_positions([_pos("X", 2, 100)], {"X": quote("X", 120)})

        assert row.current_price == 120
        assert row.value == pytest.approx(240)
        assert row.pnl == pytest.approx(40)
        assert row.pnl_percentage == pytest.approx(20)
        assert row.asset_info.symbol == "X"

    def test_missing_price_values_at_zero(self):
        (row,) = value_positions([_pos("X", 2, 100)], {})

        assert row.current_price == 0
        assert row.value == 0
        assert row.pnl == pytest.approx(-200)
        assert row.asset_info is None

    def test_no_price_map_at_all(self):
        (row,) = value_positions([_pos("X", 1, 10)], None)

        assert row.value == 0

    def test_nan_price_values_at_zero(self, quote):
        (row,) = value_positions([_pos("X", 1, 10)], {"X": quote("X", float("nan"))})

        assert row.value == 0

    def test_zero_cost_position_has_zero_percentage(self, quote):
        (row,) = value_positions([_pos("AIR", 10, 0)], {"AIR": quote("AIR", 3)})

        assert row.pnl == pytest.approx(30)
        assert row.pnl_percentage == 0


class TestPortfolioMetrics:
    def test_totals_are_sums(self, quote):
        rows = value_positions(
            [_pos("A", 1, 100), _pos("B", 2, 50)],
            {"A": quote("A", 150), "B": quote("B", 25)},
        )

        m = portfolio_metrics(rows)

        assert m.total_value == pytest.approx(200)
        assert m.total_cost == pytest.approx(200)
        assert m.total_pnl == pytest.approx(0)
        assert m.total_pnl_percentage == pytest.approx(0)

    def test_zero_cost_gives_zero_percentage(self):
        m = portfolio_metrics([])

        assert m.total_cost == 0
        assert m.total_pnl_percentage == 0
        assert m.change_24h_percentage == 0

    def test_change_24h_back_solves_previous_value(self, quote):
        rows = value_positions([_pos("A", 1, 50)], {"A": quote("A", 110, pct=10)})

        m = portfolio_metrics(rows)

        assert m.change_24h == pytest.approx(10)
        assert m.change_24h_percentage == pytest.approx(10)

    def test_change_24h_mixes_gains_and_losses(self, quote):
        rows = value_positions(
            [_pos("UP", 1, 1), _pos("DOWN", 1, 1)],
            {"UP": quote("UP", 120, pct=20), "DOWN": quote("DOWN", 80, pct=-20)},
        )

        m = portfolio_metrics(rows)

        assert m.change_24h == pytest.approx(20 - 20)
        assert m.change_24h_percentage == pytest.approx(0)

    def test_total_wipeout_percentage_is_ignored(self, quote):
        rows = value_positions([_pos("A", 1, 1)], {"A": quote("A", 5, pct=-100)})

        assert portfolio_metrics(rows).change_24h == 0

    def test_all_prices_missing_degrades_to_zero_value(self):
        rows = value_positions([_pos("A", 1, 100), _pos("B", 3, 10)], {})

        m = portfolio_metrics(rows)

        assert m.total_value == 0
        assert m.total_cost == pytest.approx(130)
        assert m.total_pnl == pytest.approx(-130)
        assert m.total_pnl_percentage == pytest.approx(-100)


class TestAllocation:
    def test_sorted_by_value_with_percentages(self, quote):
        rows = value_positions(
            [_pos("SMALL", 1, 1), _pos("BIG", 1, 1)],
            {"SMALL": quote("SMALL", 25), "BIG": quote("BIG", 75)},
        )

        alloc = allocation(rows)

        assert [a.asset for a in alloc] == ["BIG", "SMALL"]
        assert [a.percentage for a in alloc] == [pytest.approx(75), pytest.approx(25)]

    def test_empty_when_nothing_is_priced(self):
        assert allocation(value_positions([_pos("A", 1, 1)], {})) == []


class TestPurity:
    def test_same_inputs_give_identical_output(self, quote):
        positions = [_pos("A", 1.5, 33.3), _pos("B", 0.25, 1234.5)]
        prices = {"A": quote("A", 40.1, pct=3.3), "B": quote("B", 1000, pct=-7.5)}

        first = value_portfolio(positions, prices)
        second = value_portfolio(positions, prices)

        assert [r.model_dump() for r in first[0]] == [r.model_dump() for r in second[0]]
        assert first[1] == second[1]
        assert first[2] == second[2]
