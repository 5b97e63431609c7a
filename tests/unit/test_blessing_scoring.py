"""Unit tests for blessing payout rules."""

from __future__ import annotations

from pulp_economy.blessings.service import (
    BLESSING_LOST,
    BLESSING_WON_PARTIAL,
    BLESSING_WON_PERFECT,
    calculate_blessing_result,
)

ACTUAL = ["Bob", "Cara", "Dave"]


class TestCalculateBlessingResult:
    """Exact order pays double, same three names pays the wager, else nothing."""

    def test_exact_order_pays_double(self):
        assert calculate_blessing_result(["Bob", "Cara", "Dave"], ACTUAL, 30) == (BLESSING_WON_PERFECT, 60)

    def test_same_names_other_order_returns_wager(self):
        assert calculate_blessing_result(["Dave", "Bob", "Cara"], ACTUAL, 30) == (BLESSING_WON_PARTIAL, 30)

    def test_two_swapped_is_partial(self):
        assert calculate_blessing_result(["Cara", "Bob", "Dave"], ACTUAL, 50) == (BLESSING_WON_PARTIAL, 50)

    def test_one_wrong_name_loses(self):
        assert calculate_blessing_result(["Bob", "Cara", "Erin"], ACTUAL, 30) == (BLESSING_LOST, 0)

    def test_all_wrong_loses(self):
        assert calculate_blessing_result(["Erin", "Finn", "Gus"], ACTUAL, 30) == (BLESSING_LOST, 0)

    def test_names_compared_case_insensitively(self):
        """Names are matched ignoring case and surrounding whitespace."""
        assert calculate_blessing_result([" bob", "CARA", "dave "], ACTUAL, 20) == (BLESSING_WON_PERFECT, 40)

    def test_payout_scales_with_wager(self):
        status, payout = calculate_blessing_result(ACTUAL, ACTUAL, 125)
        assert status == BLESSING_WON_PERFECT
        assert payout == 250
