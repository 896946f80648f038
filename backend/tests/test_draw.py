"""
Interactive draw: candidate scoring and the persisted draw session lifecycle.
"""
import math

import pytest

from bracketry.models.draw_session import DRAW_ACTIVE, DRAW_CANCELED, DRAW_COMMITTED
from bracketry.models.match import SIDE_A, SIDE_B, STATUS_FINISHED
from bracketry.services.bracket_builder import build_group, build_knockout, build_round_elim
from bracketry.services.draw_scoring import (
    BYE_SLOT,
    HARD_FAIL,
    DrawConstraints,
    DrawSettings,
    LookaheadSettings,
    advance_cursor,
    assign_pots,
    ensure_seeds,
    rank_candidates,
    score_candidate,
    seeded_noise,
)
from bracketry.services.draw_service import (
    DrawSessionError,
    StaleDrawStepError,
    advance,
    cancel_draw,
    commit_draw,
    create_draw_session,
    next_candidate,
    pick_next,
    rank_draw_candidates,
)
from bracketry.services.repository import unit_of_work
from bracketry.services.skill import SkillRecord

QUIET = {"seed": 42, "randomness": 0}


def _skills(**by_id):
    return {int(k[1:]): SkillRecord(id=int(k[1:]), skill=v) for k, v in by_id.items()}


class TestSettings:
    def test_defaults(self):
        settings = DrawSettings.from_dict(None, default_seed=7)
        assert settings.seed == 7
        assert settings.randomness == 0.02
        assert settings.lookahead.width == 5
        assert settings.constraints.protect_top_seeds == 0
        assert settings.recent_days == 120

    def test_stored_form_reloads(self):
        settings = DrawSettings.from_dict(
            {"seed": 3, "constraints": {"use_pots": True, "pot_count": 2}, "recent": {"days": 30}}
        )
        stored = settings.to_dict()
        assert stored["recent"] == {"days": 30}
        assert DrawSettings.from_dict(stored) == settings

    def test_noise_is_deterministic(self):
        assert seeded_noise(42, 3) == seeded_noise(42, 3)
        assert 0.0 <= seeded_noise(42, 3) < 1.0


class TestScoring:
    def test_group_prefers_balancing_candidate(self):
        board = {"groups": [{"key": "A", "size": 3, "slots": [1, None, None]}]}
        cursor = {"g_index": 0, "slot_index": 1}
        skills = _skills(e1=0.9, e2=0.1, e3=0.9)
        settings = DrawSettings()
        weak = score_candidate(2, "group", board, cursor, skills, settings)
        strong = score_candidate(3, "group", board, cursor, skills, settings)
        assert weak == pytest.approx(0.24)
        assert strong == pytest.approx(0.4)

    def test_group_seed_clash(self):
        board = {"groups": [{"key": "A", "size": 3, "slots": [1, None, None]}]}
        cursor = {"g_index": 0, "slot_index": 1}
        skills = _skills(e1=0.5, e2=0.5)
        skills[1].meta["seed"] = 1
        skills[2].meta["seed"] = 2
        settings = DrawSettings(constraints=DrawConstraints(protect_top_seeds=2, balance_skill_across_groups=False))
        assert score_candidate(2, "group", board, cursor, skills, settings) == pytest.approx(1.2)

    def test_group_pot_clash(self):
        board = {
            "groups": [
                {"key": "A", "size": 3, "slots": [1, None, None]},
                {"key": "B", "size": 3, "slots": [None, None, None]},
            ]
        }
        cursor = {"g_index": 0, "slot_index": 1}
        skills = _skills(e1=0.5, e2=0.5, e3=0.5)
        skills[1].meta["pot"] = 0
        skills[2].meta["pot"] = 0
        skills[3].meta["pot"] = 1
        settings = DrawSettings(
            constraints=DrawConstraints(use_pots=True, pot_count=2, balance_skill_across_groups=False)
        )
        assert score_candidate(2, "group", board, cursor, skills, settings) == pytest.approx(0.7)
        assert score_candidate(3, "group", board, cursor, skills, settings) == 0.0

    def test_knockout_protected_seeds_never_meet(self):
        board = {"pairs": [{"index": 0, "a": 1, "b": None}]}
        cursor = {"pair_index": 0, "side": SIDE_B}
        skills = _skills(e1=0.8, e2=0.7, e3=0.6)
        skills[1].meta["seed"] = 1
        skills[2].meta["seed"] = 2
        settings = DrawSettings(constraints=DrawConstraints(protect_top_seeds=2))
        assert score_candidate(2, "knockout", board, cursor, skills, settings) == HARD_FAIL
        assert math.isfinite(score_candidate(3, "knockout", board, cursor, skills, settings))

    def test_knockout_without_rival(self):
        board = {"pairs": [{"index": 0, "a": None, "b": BYE_SLOT}]}
        cursor = {"pair_index": 0, "side": SIDE_A}
        skills = _skills(e1=0.9)
        assert score_candidate(1, "knockout", board, cursor, skills, DrawSettings()) == pytest.approx(0.04)

    def test_rematch_penalty(self):
        board = {"pairs": [{"index": 0, "a": 1, "b": None}]}
        cursor = {"pair_index": 0, "side": SIDE_B}
        skills = _skills(e1=0.5, e2=0.5)
        penalty = score_candidate(2, "knockout", board, cursor, skills, DrawSettings(), {2: {1}})
        assert penalty == pytest.approx(1.0)

    def test_rank_is_sorted_and_stable(self):
        board = {"groups": [{"key": "A", "size": 4, "slots": [None] * 4}]}
        cursor = advance_cursor(board, "group")
        skills = _skills(e1=0.5, e2=0.5, e3=0.9)
        settings = DrawSettings(randomness=0, lookahead=LookaheadSettings(enabled=False))
        ranked = rank_candidates([1, 2, 3], "group", board, cursor, skills, settings)
        assert [o["id"] for o in ranked] == [1, 2, 3]
        assert ranked[0]["score"] <= ranked[-1]["score"]

    def test_cursor_order(self):
        board = {"pairs": [{"index": 0, "a": 4, "b": BYE_SLOT}, {"index": 1, "a": None, "b": None}]}
        assert advance_cursor(board, "knockout") == {"pair_index": 1, "side": SIDE_A}
        board["pairs"][1]["a"] = 5
        board["pairs"][1]["b"] = 6
        assert advance_cursor(board, "knockout") is None

    def test_pots_by_skill(self):
        skills = _skills(e1=0.9, e2=0.8, e3=0.3, e4=0.2)
        assign_pots(skills, DrawSettings(constraints=DrawConstraints(use_pots=True, pot_count=2)), 2)
        assert [skills[i].meta["pot"] for i in (1, 2, 3, 4)] == [0, 0, 1, 1]

    def test_seeds_filled_when_mostly_unseeded(self):
        skills = _skills(e1=0.2, e2=0.9, e3=0.5)
        ensure_seeds(skills, protect_top_seeds=1)
        assert [skills[i].meta["seed"] for i in (2, 3, 1)] == [1, 2, 3]

    def test_seeds_kept_when_mostly_seeded(self):
        skills = _skills(e1=0.2, e2=0.9)
        skills[1].meta["seed"] = 1
        ensure_seeds(skills, protect_top_seeds=1)
        assert "seed" not in skills[2].meta


class TestGroupDrawSession:
    @pytest.fixture
    def bracket(self, repo, tournament, make_entrants):
        make_entrants(tournament.id, 6, ratings=[9, 8, 7, 3, 2, 1])
        with unit_of_work(repo):
            result = build_group(repo, tournament.id, group_count=2, group_size=3)
        return result.bracket

    def test_full_draw_and_commit(self, repo, bracket):
        draw = create_draw_session(repo, bracket.id, settings=QUIET)
        assert draw.status == DRAW_ACTIVE
        assert draw.planned == {"group_sizes": [3, 3], "byes": 0}
        assert draw.cursor == {"g_index": 0, "slot_index": 0}

        for step in range(6):
            draw, placed = pick_next(repo, draw.id, expected_step=step)
            assert placed in draw.taken
        assert draw.pool == []
        assert draw.cursor == {}

        committed = commit_draw(repo, draw.id)
        assert committed.status == DRAW_COMMITTED
        assert committed.committed_at is not None
        assert [h["action"] for h in committed.history] == ["start"] + ["pick"] * 6 + ["commit"]

        groups = repo.get_bracket(bracket.id).groups
        assert sorted(e for g in groups for e in g["entrant_ids"]) == sorted(committed.taken)
        assert len(repo.list_matches(bracket.id)) == 6

    def test_same_seed_same_draw(self, repo, bracket):
        first = create_draw_session(repo, bracket.id, settings=QUIET)
        for _ in range(6):
            first, _ = pick_next(repo, first.id)
        order_one = list(first.taken)
        cancel_draw(repo, first.id)

        second = create_draw_session(repo, bracket.id, settings=QUIET)
        for _ in range(6):
            second, _ = pick_next(repo, second.id)
        assert second.taken == order_one

    def test_first_pick_closest_to_target_skill(self, repo, bracket):
        draw = create_draw_session(repo, bracket.id, settings=QUIET)
        draw, placed = pick_next(repo, draw.id)
        # rating 8 -> skill 0.52, the closest to the 0.5 group target
        assert repo.get_registrations([placed])[0].rating == 8
        assert draw.board["groups"][0]["slots"][0] == placed

    def test_next_is_read_only(self, repo, bracket):
        draw = create_draw_session(repo, bracket.id, settings=QUIET)
        suggested = next_candidate(repo, draw.id)
        assert suggested in draw.pool
        assert draw.step == 0
        ranking = rank_draw_candidates(repo, draw.id)
        assert ranking[0]["id"] == suggested
        assert len(ranking) == 6

    def test_stale_step_rejected(self, repo, bracket):
        draw = create_draw_session(repo, bracket.id, settings=QUIET)
        entrant = draw.pool[0]
        advance(repo, draw.id, entrant, expected_step=0)
        with pytest.raises(StaleDrawStepError):
            advance(repo, draw.id, draw.pool[0], expected_step=0)

    def test_entrant_must_be_in_pool(self, repo, bracket):
        draw = create_draw_session(repo, bracket.id, settings=QUIET)
        with pytest.raises(DrawSessionError):
            advance(repo, draw.id, 9999)

    def test_one_active_session_per_bracket(self, repo, bracket):
        create_draw_session(repo, bracket.id, settings=QUIET)
        with pytest.raises(DrawSessionError):
            create_draw_session(repo, bracket.id, settings=QUIET)

    def test_commit_requires_full_board(self, repo, bracket):
        draw = create_draw_session(repo, bracket.id, settings=QUIET)
        pick_next(repo, draw.id)
        with pytest.raises(DrawSessionError):
            commit_draw(repo, draw.id)
        assert repo.list_matches(bracket.id) == []

    def test_cancel_writes_nothing_to_bracket(self, repo, bracket):
        draw = create_draw_session(repo, bracket.id, settings=QUIET)
        pick_next(repo, draw.id)
        canceled = cancel_draw(repo, draw.id)
        assert canceled.status == DRAW_CANCELED
        assert all(g["entrant_ids"] == [] for g in repo.get_bracket(bracket.id).groups)
        with pytest.raises(DrawSessionError):
            pick_next(repo, draw.id)

    def test_mode_must_match_bracket(self, repo, bracket):
        with pytest.raises(DrawSessionError):
            create_draw_session(repo, bracket.id, mode="knockout")

    def test_duplicate_pool_rejected(self, repo, bracket):
        with pytest.raises(DrawSessionError):
            create_draw_session(repo, bracket.id, entrant_ids=[1, 1, 2])

    def test_planned_byes_when_groups_undeclared(self, repo, tournament, make_entrants):
        ids = make_entrants(tournament.id, 5)
        result = build_group(repo, tournament.id, group_count=2, stage=2)
        draw = create_draw_session(repo, result.bracket.id, settings=QUIET, entrant_ids=ids)
        assert draw.planned == {"group_sizes": [3, 3], "byes": 1}
        assert draw.board["groups"][1]["slots"] == [None, None, BYE_SLOT]


class TestKnockoutDrawSession:
    def test_byes_follow_fold_and_commit_advances(self, repo, tournament, make_entrants):
        make_entrants(tournament.id, 5)
        result = build_knockout(repo, tournament.id, draw_size=5)
        draw = create_draw_session(repo, result.bracket.id, settings=QUIET)
        assert draw.planned == {"pairs": 4, "byes": 3}
        assert [p["b"] for p in draw.board["pairs"]] == [BYE_SLOT, None, BYE_SLOT, BYE_SLOT]

        for _ in range(5):
            draw, _ = pick_next(repo, draw.id)
        commit_draw(repo, draw.id)

        r1 = [m for m in repo.list_matches(result.bracket.id) if m.round == 1]
        assert [m.status == STATUS_FINISHED for m in r1] == [True, False, True, True]
        assert all(m.winner == SIDE_A for i, m in enumerate(r1) if i != 1)
        assert r1[1].pair_a_id is not None and r1[1].pair_b_id is not None

        r2 = [m for m in repo.list_matches(result.bracket.id) if m.round == 2]
        assert r2[0].pair_a_id == r1[0].pair_a_id
        assert (r2[1].pair_a_id, r2[1].pair_b_id) == (r1[2].pair_a_id, r1[3].pair_a_id)

    def test_protected_seeds_split(self, repo, tournament, make_entrants):
        # Both protected seeds sit closest to the target skill
        ids = make_entrants(tournament.id, 4, ratings=[7.5, 7.6, 1, 9.9], seeds=[1, 2, None, None])
        result = build_knockout(repo, tournament.id, draw_size=4)
        settings = {**QUIET, "constraints": {"protect_top_seeds": 2}}
        draw = create_draw_session(repo, result.bracket.id, settings=settings)
        for _ in range(4):
            draw, _ = pick_next(repo, draw.id)
        for pair in draw.board["pairs"]:
            assert {pair["a"], pair["b"]} != {ids[0], ids[1]}

    def test_forced_protected_pairing_is_logged(self, repo, tournament, make_entrants, caplog):
        first, second = make_entrants(tournament.id, 2, seeds=[1, 2])
        result = build_knockout(repo, tournament.id, draw_size=2)
        settings = {**QUIET, "constraints": {"protect_top_seeds": 2}}
        draw = create_draw_session(repo, result.bracket.id, settings=settings)
        advance(repo, draw.id, first, expected_step=0)

        with caplog.at_level("WARNING", logger="bracketry.services.draw_service"):
            draw, placed = pick_next(repo, draw.id, expected_step=1)

        assert placed == second
        assert draw.board["pairs"][0] == {"index": 0, "a": first, "b": second}
        assert "hard constraint" in caplog.text

    def test_pool_too_large(self, repo, tournament, make_entrants):
        make_entrants(tournament.id, 5)
        result = build_knockout(repo, tournament.id, draw_size=4)
        with pytest.raises(DrawSessionError):
            create_draw_session(repo, result.bracket.id)

    def test_round_elim_bye_trails(self, repo, tournament, make_entrants):
        make_entrants(tournament.id, 5)
        result = build_round_elim(repo, tournament.id, draw_size=5)
        draw = create_draw_session(repo, result.bracket.id, settings=QUIET)
        assert [p["b"] for p in draw.board["pairs"]] == [None, None, BYE_SLOT]

        for _ in range(5):
            draw, _ = pick_next(repo, draw.id)
        commit_draw(repo, draw.id)
        last = repo.list_matches(result.bracket.id)[-1]
        assert last.status == STATUS_FINISHED
        assert last.winner == SIDE_A
        assert last.pair_b_id is None
