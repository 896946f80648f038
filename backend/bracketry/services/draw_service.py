"""
Slot Assignment Engine (interactive draw)

A DrawSession is a persisted, single-writer draw for one bracket:

    create -> (next | advance | pick_next)* -> commit | cancel

The board is filled one slot at a time in cursor order. `next` only suggests;
`advance` places. Every placement bumps `step`, and callers may pass the step
they last saw (expected_step) so a stale client cannot overwrite a newer draw.
Nothing is written to the bracket or its matches until commit.
"""
import logging
import math
import time
from copy import deepcopy
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set, Tuple

from bracketry.models.bracket import BracketType
from bracketry.models.draw_session import (
    DRAW_ACTIVE,
    DRAW_CANCELED,
    DRAW_COMMITTED,
    DRAW_MODE_GROUP,
    DRAW_MODE_KNOCKOUT,
    DrawSession,
)
from bracketry.models.match import SIDE_A, SIDE_B
from bracketry.services.bracket_builder import generate_group_matches, seed_fields
from bracketry.services.draw_scoring import (
    BYE_SLOT,
    DrawSettings,
    advance_cursor,
    assign_pots,
    board_entrants,
    ensure_seeds,
    is_entrant,
    place,
    rank_candidates,
)
from bracketry.services.group_planner import (
    GroupPlanPolicy,
    distribute_byes,
    group_keys,
    plan_groups,
)
from bracketry.services.propagation import compile_bracket
from bracketry.services.repository import BracketRepository
from bracketry.services.seed_refs import SeedReference
from bracketry.services.skill import SkillRecord, compute_skill_map
from bracketry.utils.bracket_math import bye_pair_indices

logger = logging.getLogger(__name__)


class DrawSessionError(ValueError):
    """Illegal operation for the draw session's current state."""


class StaleDrawStepError(DrawSessionError):
    """expected_step does not match the session's step counter."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _history_entry(action: str, **extra: Any) -> Dict[str, Any]:
    return {"action": action, "at": _now().isoformat(), **extra}


def _require_active(draw: DrawSession) -> None:
    if draw.status != DRAW_ACTIVE:
        raise DrawSessionError(f"Draw session {draw.id} is {draw.status}, not active")


def _check_step(draw: DrawSession, expected_step: Optional[int]) -> None:
    if expected_step is not None and expected_step != draw.step:
        raise StaleDrawStepError(
            f"Draw session {draw.id} is at step {draw.step}, caller expected {expected_step}"
        )


# =============================================================================
# Board construction
# =============================================================================

def _group_board(bracket, pool_size: int, settings: DrawSettings) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    declared = [int(g.get("expected_size") or 0) for g in bracket.groups or []]
    if declared and all(s > 0 for s in declared) and sum(declared) >= pool_size:
        sizes = declared
        keys = [g.get("name") or k for g, k in zip(bracket.groups, group_keys(len(declared)))]
        byes = sum(declared) - pool_size
    else:
        plan = plan_groups(pool_size, GroupPlanPolicy.from_dict(settings.planner))
        sizes, byes = plan.group_sizes, plan.byes
        keys = group_keys(len(sizes))

    if not sizes:
        raise DrawSessionError("No group capacity for this pool")

    groups = []
    for key, size, bye_count in zip(keys, sizes, distribute_byes(sizes, byes)):
        slots: List[Any] = [None] * (size - bye_count) + [BYE_SLOT] * bye_count
        groups.append({"key": key, "size": size, "slots": slots})
    return {"groups": groups}, {"group_sizes": sizes, "byes": byes}


def _knockout_board(bracket, first_round_count: int, pool_size: int) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    pairs = first_round_count
    if pairs < 1:
        raise DrawSessionError(f"Bracket {bracket.id} has no first-round matches")
    if pool_size > 2 * pairs:
        raise DrawSessionError(f"{pool_size} entrants do not fit {2 * pairs} first-round slots")
    if pool_size < pairs:
        raise DrawSessionError(f"{pool_size} entrants cannot fill {pairs} first-round matches")

    byes = 2 * pairs - pool_size
    if bracket.type == BracketType.round_elim.value:
        # Ladder byes trail, matching the build-time odd-N bye
        bye_pairs = list(reversed(range(pairs)))[:byes]
    else:
        bye_pairs = bye_pair_indices(pairs, byes)

    board_pairs = [
        {"index": i, "a": None, "b": BYE_SLOT if i in bye_pairs else None}
        for i in range(pairs)
    ]
    return {"pairs": board_pairs}, {"pairs": pairs, "byes": byes}


def create_draw_session(
    repo: BracketRepository,
    bracket_id: int,
    settings: Optional[Dict[str, Any]] = None,
    mode: Optional[str] = None,
    entrant_ids: Optional[List[int]] = None,
) -> DrawSession:
    """
    Open a draw for a bracket.

    Args:
        settings: draw settings dict (seed, randomness, lookahead, constraints,
            weights, recent, planner). seed defaults to the current time in ms.
        mode: "group" or "knockout"; defaults from the bracket type.
        entrant_ids: pool override; defaults to the tournament's paid entrants.
    """
    bracket = repo.get_bracket(bracket_id)
    default_mode = DRAW_MODE_GROUP if bracket.type == BracketType.group.value else DRAW_MODE_KNOCKOUT
    mode = mode or default_mode
    if mode != default_mode:
        raise DrawSessionError(f"Mode {mode!r} does not fit a {bracket.type} bracket")

    if repo.find_active_draw_session(bracket_id):
        raise DrawSessionError(f"Bracket {bracket_id} already has an active draw session")

    pool = [int(i) for i in entrant_ids] if entrant_ids is not None else repo.list_paid_registration_ids(
        bracket.tournament_id
    )
    if not pool:
        raise DrawSessionError("Draw pool is empty")
    if len(set(pool)) != len(pool):
        raise DrawSessionError("Draw pool contains duplicates")

    draw_settings = DrawSettings.from_dict(settings, default_seed=int(time.time() * 1000))

    if mode == DRAW_MODE_GROUP:
        if repo.list_matches(bracket_id):
            raise DrawSessionError(f"Bracket {bracket_id} already has fixtures")
        board, planned = _group_board(bracket, len(pool), draw_settings)
    else:
        first_round = [m for m in repo.list_matches(bracket_id) if m.round == 1]
        if any(m.pair_a_id is not None or m.pair_b_id is not None for m in first_round):
            raise DrawSessionError(f"Bracket {bracket_id} already has entrants in round 1")
        board, planned = _knockout_board(bracket, len(first_round), len(pool))

    draw = DrawSession(
        tournament_id=bracket.tournament_id,
        bracket_id=bracket_id,
        mode=mode,
        status=DRAW_ACTIVE,
        step=0,
        board=board,
        cursor=advance_cursor(board, mode) or {},
        pool=pool,
        taken=[],
        settings=draw_settings.to_dict(),
        history=[_history_entry("start", pool_size=len(pool), planned=planned)],
        planned=planned,
    )
    draw = repo.add_draw_session(draw)
    logger.info(
        "Draw session %s started for bracket %s (mode=%s pool=%d seed=%s)",
        draw.id, bracket_id, mode, len(pool), draw_settings.seed,
    )
    return draw


# =============================================================================
# Suggest / place
# =============================================================================

def _recent_opponents(repo: BracketRepository, ids: List[int], days: int) -> Dict[int, Set[int]]:
    if days <= 0 or not ids:
        return {}
    faced: Dict[int, Set[int]] = {}
    for m in repo.get_match_history(ids, window_days=days):
        a, b = m.pair_a_id, m.pair_b_id
        if a is None or b is None:
            continue
        faced.setdefault(a, set()).add(b)
        faced.setdefault(b, set()).add(a)
    return faced


def _skill_context(repo: BracketRepository, draw: DrawSession, settings: DrawSettings) -> Dict[int, SkillRecord]:
    entrants = list(draw.pool) + list(draw.taken)
    skills = compute_skill_map(repo, entrants, recent_days=settings.recent_days)
    if draw.mode == DRAW_MODE_GROUP:
        assign_pots(skills, settings, len((draw.board or {}).get("groups") or []))
    ensure_seeds(skills, settings.constraints.protect_top_seeds)
    return skills


def rank_draw_candidates(repo: BracketRepository, session_id: int) -> List[Dict[str, Any]]:
    """Pool entrants with their penalty at the current cursor, best first."""
    draw = repo.get_draw_session(session_id)
    _require_active(draw)
    if not draw.pool or not draw.cursor:
        return []
    settings = DrawSettings.from_dict(draw.settings)
    skills = _skill_context(repo, draw, settings)
    recent = _recent_opponents(
        repo, list(draw.pool) + list(draw.taken), settings.constraints.avoid_rematch_within_days
    )
    return rank_candidates(list(draw.pool), draw.mode, draw.board, draw.cursor, skills, settings, recent)


def next_candidate(repo: BracketRepository, session_id: int) -> Optional[int]:
    """Best entrant for the slot at the cursor. Read-only."""
    ranked = rank_draw_candidates(repo, session_id)
    if not ranked:
        return None
    if math.isinf(ranked[0]["score"]):
        logger.warning(
            "Draw session %s: every candidate breaks a hard constraint; falling back to %s",
            session_id, ranked[0]["id"],
        )
    return ranked[0]["id"]


def advance(
    repo: BracketRepository,
    session_id: int,
    candidate_id: int,
    expected_step: Optional[int] = None,
) -> DrawSession:
    """Place candidate_id at the cursor and move the cursor on."""
    draw = repo.get_draw_session(session_id)
    _require_active(draw)
    _check_step(draw, expected_step)

    if candidate_id not in (draw.pool or []):
        raise DrawSessionError(f"Entrant {candidate_id} is not in the draw pool")
    if not draw.cursor:
        raise DrawSessionError("Board is already full")

    board = deepcopy(draw.board)
    slot = dict(draw.cursor)
    place(board, slot, draw.mode, candidate_id)

    draw.board = board
    draw.pool = [e for e in draw.pool if e != candidate_id]
    draw.taken = list(draw.taken or []) + [candidate_id]
    draw.cursor = advance_cursor(board, draw.mode) or {}
    draw.step = (draw.step or 0) + 1
    draw.history = list(draw.history or []) + [
        _history_entry("pick", entrant_id=candidate_id, slot=slot, step=draw.step)
    ]
    repo.save_draw_session(draw)
    logger.debug("Draw session %s step %s: placed %s at %s", draw.id, draw.step, candidate_id, slot)
    return draw


def pick_next(
    repo: BracketRepository,
    session_id: int,
    expected_step: Optional[int] = None,
) -> Tuple[DrawSession, int]:
    """next + advance in one call. Returns (session, placed entrant id)."""
    draw = repo.get_draw_session(session_id)
    _require_active(draw)
    _check_step(draw, expected_step)

    chosen = next_candidate(repo, session_id)
    if chosen is None:
        raise DrawSessionError(f"Draw session {session_id} has nothing left to place")
    return advance(repo, session_id, chosen, expected_step=draw.step), chosen


# =============================================================================
# Close
# =============================================================================

def commit_draw(repo: BracketRepository, session_id: int) -> DrawSession:
    """
    Write the finished board into the bracket.

    group:    bracket.groups gets the entrants, fixtures are generated
    knockout: round-1 pair ids and registration/bye seeds, then compile

    Every precondition is checked before the first write.
    """
    draw = repo.get_draw_session(session_id)
    _require_active(draw)
    if draw.pool:
        raise DrawSessionError(f"{len(draw.pool)} entrants are still in the pool")
    if advance_cursor(draw.board, draw.mode) is not None:
        raise DrawSessionError("Board still has empty slots")

    bracket = repo.get_bracket(draw.bracket_id)

    if draw.mode == DRAW_MODE_GROUP:
        bracket.groups = [
            {
                "name": g["key"],
                "expected_size": g["size"],
                "entrant_ids": [s for s in g["slots"] if is_entrant(s)],
            }
            for g in draw.board["groups"]
        ]
        repo.save_bracket(bracket)
        generate_group_matches(repo, bracket.id)
    else:
        first_round = sorted((m for m in repo.list_matches(bracket.id) if m.round == 1), key=lambda m: m.order)
        pairs = draw.board["pairs"]
        if len(first_round) != len(pairs):
            raise DrawSessionError(
                f"Board has {len(pairs)} pairs but bracket {bracket.id} has {len(first_round)} first-round matches"
            )
        for m, pair in zip(first_round, pairs):
            fields: Dict[str, Any] = {}
            for side, slot in ((SIDE_A, pair.get("a")), (SIDE_B, pair.get("b"))):
                if is_entrant(slot):
                    seed = SeedReference.registration(slot)
                    fields["pair_a_id" if side == SIDE_A else "pair_b_id"] = slot
                else:
                    seed = SeedReference.bye()
                fields.update(seed_fields(side, seed))
            repo.update_match_fields(m.id, fields)
        compile_bracket(repo, bracket.id)

    draw.status = DRAW_COMMITTED
    draw.committed_at = _now()
    draw.history = list(draw.history or []) + [_history_entry("commit", step=draw.step)]
    repo.save_draw_session(draw)
    logger.info(
        "Draw session %s committed to bracket %s (%d entrants placed)",
        draw.id, bracket.id, len(board_entrants(draw.board, draw.mode)),
    )
    return draw


def cancel_draw(repo: BracketRepository, session_id: int) -> DrawSession:
    """Abandon the draw. Only the session row changes."""
    draw = repo.get_draw_session(session_id)
    _require_active(draw)
    draw.status = DRAW_CANCELED
    draw.canceled_at = _now()
    draw.history = list(draw.history or []) + [_history_entry("cancel", step=draw.step)]
    repo.save_draw_session(draw)
    logger.info("Draw session %s canceled at step %s", draw.id, draw.step)
    return draw


def get_draw_session(repo: BracketRepository, session_id: int) -> DrawSession:
    return repo.get_draw_session(session_id)
