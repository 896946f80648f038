"""
Bracket topology builder: knockout trees, round-elimination ladders, group buckets.
"""
import pytest

from bracketry.models.match import SIDE_A, SIDE_B, STATUS_FINISHED
from bracketry.services.bracket_builder import (
    BracketValidationError,
    build_group,
    build_knockout,
    build_round_elim,
    generate_group_matches,
    round_elim_pairs,
)
from bracketry.services.repository import NotFoundError, unit_of_work
from bracketry.services.seed_refs import SeedReference, SeedType


def _seed_types(m):
    return SeedReference.from_dict(m.seed_a).type, SeedReference.from_dict(m.seed_b).type


class TestKnockout:
    def test_draw_size_five(self, repo, tournament, make_entrants):
        ids = make_entrants(tournament.id, 5)
        with unit_of_work(repo):
            result = build_knockout(repo, tournament.id, draw_size=5, seeds=ids)

        assert result.bracket.meta["draw_size"] == 8
        assert result.bracket.meta["max_rounds"] == 3
        assert sorted(result.matches_by_round) == [1, 2, 3]
        r1 = result.matches_by_round[1]
        assert len(r1) == 4
        bye_sides = sum(t == SeedType.bye for m in r1 for t in _seed_types(m))
        assert bye_sides == 3

    def test_match_count_is_size_minus_one(self, repo, tournament):
        for stage, draw_size in enumerate((2, 3, 8, 13), start=1):
            result = build_knockout(repo, tournament.id, draw_size=draw_size, stage=stage)
            size = result.bracket.meta["draw_size"]
            assert result.match_count == size - 1

    def test_edges_link_both_directions(self, repo, tournament):
        result = build_knockout(repo, tournament.id, draw_size=8)
        r1, r2 = result.matches_by_round[1], result.matches_by_round[2]
        for i, parent in enumerate(r2):
            left, right = r1[2 * i], r1[2 * i + 1]
            assert parent.previous_a_id == left.id
            assert parent.previous_b_id == right.id
            assert (left.next_match_id, left.next_slot) == (parent.id, SIDE_A)
            assert (right.next_match_id, right.next_slot) == (parent.id, SIDE_B)
        final = result.matches_by_round[3]
        assert len(final) == 1
        assert final[0].next_match_id is None
        assert final[0].label == "F1"

    def test_seeds_resolved_and_bye_auto_advanced(self, repo, tournament, make_entrants):
        ids = make_entrants(tournament.id, 3)
        result = build_knockout(repo, tournament.id, draw_size=4, seeds=[ids[0], None, ids[1], ids[2]])
        r1 = result.matches_by_round[1]
        assert r1[0].pair_a_id == ids[0]
        assert r1[0].status == STATUS_FINISHED
        assert r1[0].winner == SIDE_A
        assert (r1[1].pair_a_id, r1[1].pair_b_id) == (ids[1], ids[2])
        final = result.matches_by_round[2][0]
        assert final.pair_a_id == ids[0]
        assert final.pair_b_id is None

    def test_third_place_match(self, repo, tournament):
        result = build_knockout(repo, tournament.id, draw_size=8, third_place=True, final_rules={"best_of": 5})
        last = result.matches_by_round[3]
        assert [m.label for m in last] == ["F1", "3P"]
        bronze = last[1]
        assert bronze.seed_a_key == "L:1:2:0"
        assert bronze.seed_b_key == "L:1:2:1"
        assert last[0].rules["best_of"] == 5
        assert bronze.rules["best_of"] == 5

    def test_round_rules(self, repo, tournament):
        result = build_knockout(
            repo, tournament.id, draw_size=8, rules={"best_of": 1}, semi_rules={"best_of": 3}
        )
        assert all(m.rules["best_of"] == 1 for m in result.matches_by_round[1])
        assert all(m.rules["best_of"] == 3 for m in result.matches_by_round[2])

    def test_draw_size_too_small(self, repo, tournament):
        with pytest.raises(BracketValidationError):
            build_knockout(repo, tournament.id, draw_size=1)

    def test_too_many_seeds(self, repo, tournament):
        with pytest.raises(BracketValidationError):
            build_knockout(repo, tournament.id, draw_size=2, seeds=[1, 2, 3])

    def test_same_stage_reference_rejected(self, repo, tournament):
        seeds = [SeedReference.match_winner(1, 1, 0)]
        with pytest.raises(BracketValidationError):
            build_knockout(repo, tournament.id, draw_size=4, seeds=seeds)

    def test_stage_taken(self, repo, tournament):
        build_knockout(repo, tournament.id, draw_size=4)
        with pytest.raises(BracketValidationError):
            build_knockout(repo, tournament.id, draw_size=4)

    def test_draw_rounds_bounded_by_paid_entrants(self, repo, tournament, make_entrants):
        make_entrants(tournament.id, 5)
        build_knockout(repo, tournament.id, draw_size=4, draw_rounds=2)
        with pytest.raises(BracketValidationError):
            build_knockout(repo, tournament.id, draw_size=8, stage=2, draw_rounds=3)

    def test_unknown_tournament(self, repo):
        with pytest.raises(NotFoundError):
            build_knockout(repo, 999, draw_size=4)

    def test_rejected_build_writes_nothing(self, repo, tournament):
        with pytest.raises(BracketValidationError):
            with unit_of_work(repo):
                build_knockout(repo, tournament.id, draw_size=4, seeds=[SeedReference.match_winner(2, 1, 0)])
        assert repo.list_brackets(tournament.id) == []


class TestRoundElim:
    def test_pairs_per_round(self):
        assert [round_elim_pairs(10, r) for r in (1, 2, 3)] == [5, 2, 1]
        assert round_elim_pairs(7, 1) == 4

    def test_odd_draw_gets_trailing_bye(self, repo, tournament):
        result = build_round_elim(repo, tournament.id, draw_size=7)
        r1 = result.matches_by_round[1]
        assert len(r1) == 4
        assert SeedReference.from_dict(r1[-1].seed_b).type == SeedType.bye
        assert SeedReference.from_dict(r1[0].seed_a).label == "Entrant 1"

    def test_later_rounds_take_losers(self, repo, tournament, make_entrants):
        make_entrants(tournament.id, 10)
        result = build_round_elim(repo, tournament.id, draw_size=10, max_rounds=3)
        assert [len(result.matches_by_round[r]) for r in (1, 2, 3)] == [5, 2, 1]
        r2 = result.matches_by_round[2]
        assert (r2[0].seed_a_key, r2[0].seed_b_key) == ("L:1:1:0", "L:1:1:1")
        assert (r2[1].seed_a_key, r2[1].seed_b_key) == ("L:1:1:2", "L:1:1:3")
        r3 = result.matches_by_round[3][0]
        assert (r3.seed_a_key, r3.seed_b_key) == ("L:1:2:0", "L:1:2:1")

    def test_odd_round_drops_last_loser(self, repo, tournament, make_entrants):
        make_entrants(tournament.id, 6)
        result = build_round_elim(repo, tournament.id, draw_size=6, max_rounds=2)
        # round 1: 3 matches -> round 2: 1 match from losers of 0 and 1
        r2 = result.matches_by_round[2]
        assert len(r2) == 1
        assert (r2[0].seed_a_key, r2[0].seed_b_key) == ("L:1:1:0", "L:1:1:1")

    def test_max_rounds_bounded_by_paid_entrants(self, repo, tournament, make_entrants):
        make_entrants(tournament.id, 4)
        with pytest.raises(BracketValidationError):
            build_round_elim(repo, tournament.id, draw_size=4, max_rounds=3)

    def test_per_round_rules(self, repo, tournament, make_entrants):
        make_entrants(tournament.id, 8)
        result = build_round_elim(
            repo, tournament.id, draw_size=8, max_rounds=2, round_rules=[{"best_of": 1}, {"best_of": 5}]
        )
        assert result.matches_by_round[1][0].rules["best_of"] == 1
        assert result.matches_by_round[2][0].rules["best_of"] == 5


class TestGroups:
    def test_entrants_dealt_with_byes_at_tails(self, repo, tournament, make_entrants):
        ids = make_entrants(tournament.id, 5)
        result = build_group(repo, tournament.id, entrant_ids=ids)
        groups = result.bracket.groups
        assert [g["name"] for g in groups] == ["A", "B"]
        assert [g["expected_size"] for g in groups] == [3, 3]
        assert groups[0]["entrant_ids"] == ids[:3]
        assert groups[1]["entrant_ids"] == ids[3:]
        assert result.bracket.meta["byes"] == 1
        # 3 fixtures in A, 1 in B
        assert result.match_count == 4

    def test_fixture_order_unique_per_round(self, repo, tournament, make_entrants):
        ids = make_entrants(tournament.id, 8)
        result = build_group(repo, tournament.id, entrant_ids=ids, group_sizes=[4, 4])
        for r, ms in result.matches_by_round.items():
            assert [m.order for m in ms] == list(range(len(ms)))
        labels = [m.label for r in sorted(result.matches_by_round) for m in result.matches_by_round[r]]
        assert labels[:2] == ["A1-1", "A1-2"]
        assert all(m.pool["name"] in ("A", "B") for ms in result.matches_by_round.values() for m in ms)

    def test_group_pairs_are_resolved(self, repo, tournament, make_entrants):
        ids = make_entrants(tournament.id, 4)
        result = build_group(repo, tournament.id, entrant_ids=ids, group_sizes=[4])
        for m in result.matches_by_round[1]:
            assert m.pair_a_id in ids and m.pair_b_id in ids
            assert m.seed_a_key == f"R:{m.pair_a_id}"

    def test_double_round_robin(self, repo, tournament, make_entrants):
        ids = make_entrants(tournament.id, 4)
        result = build_group(repo, tournament.id, entrant_ids=ids, group_sizes=[4], double_round_robin=True)
        assert result.match_count == 12

    def test_empty_buckets_then_generate(self, repo, tournament):
        result = build_group(repo, tournament.id, group_count=3)
        assert result.match_count == 0
        assert [g["name"] for g in result.bracket.groups] == ["A", "B", "C"]
        assert generate_group_matches(repo, result.bracket.id) == {}

    def test_generate_twice_rejected(self, repo, tournament, make_entrants):
        ids = make_entrants(tournament.id, 3)
        result = build_group(repo, tournament.id, entrant_ids=ids, group_sizes=[3])
        with pytest.raises(BracketValidationError):
            generate_group_matches(repo, result.bracket.id)

    def test_generate_on_knockout_rejected(self, repo, tournament):
        result = build_knockout(repo, tournament.id, draw_size=4)
        with pytest.raises(BracketValidationError):
            generate_group_matches(repo, result.bracket.id)

    def test_validation(self, repo, tournament):
        with pytest.raises(BracketValidationError):
            build_group(repo, tournament.id, group_count=0)
        with pytest.raises(BracketValidationError):
            build_group(repo, tournament.id, entrant_ids=[1, 1, 2])
        with pytest.raises(BracketValidationError):
            build_group(repo, tournament.id, group_count=3, group_sizes=[4, 4])
