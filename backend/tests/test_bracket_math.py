"""
Tests for bracket arithmetic and round-robin fixture generation.
"""
from collections import Counter
from itertools import combinations

from bracketry.services.round_robin import rr_fixtures, rr_pairings_by_round
from bracketry.utils.bracket_math import (
    DEFAULT_RULES,
    bracket_fold_positions,
    bye_pair_indices,
    max_rounds_for_entrants,
    next_pow2,
    round_title_by_pairs,
    sanitize_rules,
)


class TestPowersAndRounds:
    def test_next_pow2(self):
        assert next_pow2(1) == 2
        assert next_pow2(2) == 2
        assert next_pow2(5) == 8
        assert next_pow2(16) == 16
        assert next_pow2(17) == 32

    def test_max_rounds_for_entrants(self):
        assert max_rounds_for_entrants(0) == 0
        assert max_rounds_for_entrants(1) == 0
        assert max_rounds_for_entrants(5) == 2
        assert max_rounds_for_entrants(8) == 3

    def test_round_titles(self):
        assert round_title_by_pairs(1) == "F"
        assert round_title_by_pairs(2) == "SF"
        assert round_title_by_pairs(4) == "QF"
        assert round_title_by_pairs(8) == "R16"


class TestBracketFold:
    def test_small_sizes(self):
        assert bracket_fold_positions(0) == []
        assert bracket_fold_positions(1) == [1]
        assert bracket_fold_positions(4) == [1, 4, 2, 3]

    def test_8_entries(self):
        assert bracket_fold_positions(8) == [1, 8, 4, 5, 3, 6, 2, 7]

    def test_all_seeds_present(self):
        for n in (2, 4, 8, 16, 32):
            assert sorted(bracket_fold_positions(n)) == list(range(1, n + 1))

    def test_bye_lines_follow_top_seeds(self):
        # fold(4) = [1, 4, 2, 3]: seed 1 on line 0, seed 2 on line 2, seed 3 on line 3
        assert bye_pair_indices(4, 3) == [0, 2, 3]

    def test_bye_lines_clamped(self):
        assert bye_pair_indices(4, 0) == []
        assert len(bye_pair_indices(4, 9)) == 4

    def test_non_power_of_two_uses_index_order(self):
        assert bye_pair_indices(3, 2) == [0, 1]


class TestSanitizeRules:
    def test_defaults(self):
        assert sanitize_rules(None) == DEFAULT_RULES

    def test_invalid_values_fall_back(self):
        rules = sanitize_rules({"best_of": 4, "points_to_win": 21, "win_by_two": "yes"})
        assert rules == {"best_of": 3, "points_to_win": 21, "win_by_two": True}


class TestRoundRobin:
    def test_degenerate_sizes(self):
        assert rr_pairings_by_round(0) == []
        assert rr_pairings_by_round(1) == []

    def test_even_group_every_pair_once(self):
        fixtures = rr_pairings_by_round(4)
        pairs = sorted((a, b) for _, _, a, b in fixtures)
        assert pairs == sorted(combinations(range(4), 2))
        assert max(r for r, _, _, _ in fixtures) == 3

    def test_odd_group_each_entrant_rests_once(self):
        fixtures = rr_pairings_by_round(5)
        assert len(fixtures) == 10
        rounds = max(r for r, _, _, _ in fixtures)
        assert rounds == 5
        appearances = Counter()
        for _, _, a, b in fixtures:
            appearances[a] += 1
            appearances[b] += 1
        assert all(count == 4 for count in appearances.values())

    def test_no_entrant_plays_twice_in_a_round(self):
        for size in range(2, 9):
            by_round = {}
            for r, _, a, b in rr_pairings_by_round(size):
                seen = by_round.setdefault(r, set())
                assert a not in seen and b not in seen
                seen.update((a, b))

    def test_sequence_restarts_each_round(self):
        fixtures = rr_pairings_by_round(4)
        assert [(r, seq) for r, seq, _, _ in fixtures] == [(1, 1), (1, 2), (2, 1), (2, 2), (3, 1), (3, 2)]

    def test_double_round_robin_swaps_sides(self):
        single = rr_fixtures(4)
        double = rr_fixtures(4, double_round_robin=True)
        assert len(double) == 2 * len(single)
        second_leg = double[len(single):]
        assert min(r for r, _, _, _ in second_leg) == 4
        assert {(a, b) for _, _, a, b in second_leg} == {(b, a) for _, _, a, b in single}
