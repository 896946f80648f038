"""
Seed Resolution & Propagation

When a match finishes, fill the slots that depend on it and cascade:

- the knockout edge (next_match / next_slot)
- every match whose seed references it (stageMatchWinner / stageMatchLoser)
- for group matches, every groupRank reference into that group

A side with one concrete entrant facing a bye is finished on the spot
(auto-advance) and cascades in turn. A match with two bye sides is void: it
never finishes, and whatever it feeds is itself a bye.

Fill rule (idempotent, safe to replay):
    slot empty          -> set
    slot equal          -> no-op
    slot different      -> WARNING + conflict, slot untouched, cascade continues
"""
import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, NamedTuple, Optional, Set, assert_never

from bracketry import config
from bracketry.models.match import SIDE_A, SIDE_B, STATUS_FINISHED, Match
from bracketry.services.repository import BracketRepository
from bracketry.services.seed_refs import (
    GroupRankRef,
    RegistrationRef,
    SeedReference,
    SeedType,
    StageMatchRef,
)
from bracketry.services.standings import compute_group_standings

logger = logging.getLogger(__name__)

PENDING = "pending"
BYE = "bye"
ENTRANT = "entrant"


class MatchStateError(ValueError):
    """Raised when a result cannot be recorded for a match in its current state."""


class SlotState(NamedTuple):
    kind: str  # pending | bye | entrant
    entrant_id: Optional[int] = None


SLOT_PENDING = SlotState(PENDING)
SLOT_BYE = SlotState(BYE)


@dataclass
class PropagationResult:
    updated_slots: int = 0
    conflicts: int = 0
    auto_advanced: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "updated_slots": self.updated_slots,
            "conflicts": self.conflicts,
            "auto_advanced": self.auto_advanced,
        }


def _is_decided(m: Match) -> bool:
    return m.status == STATUS_FINISHED and m.winner in (SIDE_A, SIDE_B)


class _Propagator:
    """One propagation pass. Holds the running counters and the void cache."""

    def __init__(self, repo: BracketRepository):
        self.repo = repo
        self.result = PropagationResult()
        # Void is permanent once true: byes never turn into entrants
        self._void: Set[int] = set()

    # ------------------------------------------------------------------
    # Slot state
    # ------------------------------------------------------------------

    def is_void(self, m: Match) -> bool:
        if m.id in self._void:
            return True
        if m.pair_a_id is not None or m.pair_b_id is not None or _is_decided(m):
            return False
        if self.side_state(m, SIDE_A).kind == BYE and self.side_state(m, SIDE_B).kind == BYE:
            self._void.add(m.id)
            return True
        return False

    def side_state(self, m: Match, side: str) -> SlotState:
        pair = m.pair(side)
        if pair is not None:
            return SlotState(ENTRANT, pair)
        return self.source_state(m, side)

    def source_state(self, m: Match, side: str) -> SlotState:
        """What the slot's edge or seed resolves to, ignoring the stored pair."""
        previous_id = m.previous(side)
        if previous_id is not None:
            return self._from_source(self.repo.get_match(previous_id), winner=True)

        seed = SeedReference.from_dict(m.seed(side))
        if seed is None:
            return SLOT_PENDING
        return self._resolve_seed(m, seed)

    def _from_source(self, src: Optional[Match], winner: bool) -> SlotState:
        if src is None:
            return SLOT_PENDING
        if self.is_void(src):
            return SLOT_BYE
        if not _is_decided(src):
            return SLOT_PENDING
        entrant = src.winner_id if winner else src.loser_id
        if entrant is None:
            # Loser of a bye auto-advance
            return SLOT_BYE if not winner else SLOT_PENDING
        return SlotState(ENTRANT, entrant)

    def _resolve_seed(self, m: Match, seed: SeedReference) -> SlotState:
        match seed.type:
            case SeedType.bye:
                return SLOT_BYE
            case SeedType.registration:
                assert isinstance(seed.ref, RegistrationRef)
                if seed.ref.registration_id is None:
                    return SLOT_PENDING
                return SlotState(ENTRANT, seed.ref.registration_id)
            case SeedType.stage_match_winner | SeedType.stage_match_loser:
                assert isinstance(seed.ref, StageMatchRef)
                ref = seed.ref
                src = self.repo.find_match_at(m.tournament_id, ref.stage_index, ref.round, ref.order)
                return self._from_source(src, winner=seed.type == SeedType.stage_match_winner)
            case SeedType.group_rank:
                assert isinstance(seed.ref, GroupRankRef)
                return self._resolve_group_rank(m.tournament_id, seed.ref)
            case _:
                assert_never(seed.type)

    def _resolve_group_rank(self, tournament_id: int, ref: GroupRankRef) -> SlotState:
        bracket = self.repo.find_bracket_by_stage(tournament_id, ref.stage)
        if bracket is None:
            return SLOT_PENDING
        standings = compute_group_standings(self.repo, bracket, ref.group_code)
        if standings is None:
            return SLOT_PENDING
        if config.GROUP_RANK_REQUIRE_COMPLETE and not standings.complete:
            return SLOT_PENDING
        entrant = standings.entrant_at(ref.rank)
        return SlotState(ENTRANT, entrant) if entrant is not None else SLOT_PENDING

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _fill(self, m: Match, side: str, entrant_id: int) -> None:
        if m.pair(side) is None and self.repo.fill_match_slot(m.id, side, entrant_id):
            self.result.updated_slots += 1
            return
        # Either filled already or taken by another writer since m was read
        current = m.pair(side)
        if current == entrant_id:
            return
        self.result.conflicts += 1
        logger.warning(
            "Slot conflict on match %s side %s: holds %s, resolved %s; left unchanged",
            m.id, side, current, entrant_id,
        )

    def refresh(self, m: Match) -> bool:
        """
        Fill whatever is resolvable on `m`, auto-advance a lone entrant.
        Returns True when m's outcome (decided or void) is now known.
        """
        if not _is_decided(m):
            for side in (SIDE_A, SIDE_B):
                state = self.source_state(m, side)
                if state.kind == ENTRANT:
                    self._fill(m, side, state.entrant_id)
            self._maybe_auto_advance(m)
        return _is_decided(m) or self.is_void(m)

    def _maybe_auto_advance(self, m: Match) -> None:
        if _is_decided(m):
            return
        state_a = self.side_state(m, SIDE_A)
        state_b = self.side_state(m, SIDE_B)
        if state_a.kind == ENTRANT and state_b.kind == BYE and m.pair_a_id is not None:
            winner = SIDE_A
        elif state_b.kind == ENTRANT and state_a.kind == BYE and m.pair_b_id is not None:
            winner = SIDE_B
        else:
            return
        self.repo.update_match_fields(
            m.id,
            {
                "status": STATUS_FINISHED,
                "winner": winner,
                "game_scores": [],
                "finished_at": datetime.now(timezone.utc),
            },
        )
        self.result.auto_advanced += 1
        logger.info("Match %s (%s) auto-advanced side %s on a bye", m.id, m.label, winner)

    # ------------------------------------------------------------------
    # Cascade
    # ------------------------------------------------------------------

    def dependents(self, m: Match) -> List[Match]:
        seen: Dict[int, Match] = {}
        if m.next_match_id is not None:
            nxt = self.repo.get_match(m.next_match_id)
            seen[nxt.id] = nxt
        for dep in self.repo.find_matches_referencing(m.tournament_id, m.stage, m.round, m.order):
            seen.setdefault(dep.id, dep)
        # groupRank may address a group by name ("A") or 1-based number ("1")
        pool = m.pool or {}
        codes = [pool.get("name")]
        if pool.get("id") is not None:
            codes.append(str(int(pool["id"]) + 1))
        for group_code in filter(None, codes):
            for dep in self.repo.find_matches_referencing(m.tournament_id, m.stage, group_code=group_code):
                seen.setdefault(dep.id, dep)
        return [seen[k] for k in sorted(seen)]

    def cascade(self, start: Match) -> None:
        queue = deque([start])
        announced: Set[int] = set()
        while queue:
            m = queue.popleft()
            if m.id in announced:
                continue
            announced.add(m.id)
            for dep in self.dependents(m):
                if self.refresh(dep) and dep.id not in announced:
                    queue.append(dep)


# =============================================================================
# Exposed operations
# =============================================================================

def compile_bracket(repo: BracketRepository, bracket_id: int) -> PropagationResult:
    """
    Resolve every seed of a bracket that is resolvable now, then auto-advance
    byes and cascade. Safe to call repeatedly.
    """
    repo.get_bracket(bracket_id)
    prop = _Propagator(repo)
    for m in repo.list_matches(bracket_id):
        if prop.refresh(m):
            prop.cascade(m)
    logger.info(
        "Compiled bracket %s: %d slots filled, %d auto-advanced, %d conflicts",
        bracket_id, prop.result.updated_slots, prop.result.auto_advanced, prop.result.conflicts,
    )
    return prop.result


def on_match_finished(repo: BracketRepository, match_id: int) -> PropagationResult:
    """
    Push a finished match's outcome downstream.

    Returns:
        PropagationResult with updated_slots and conflicts.

    Guarantees:
        - Idempotent: a second call fills nothing
        - A conflicting slot is logged and skipped; the rest still propagates
    """
    m = repo.get_match(match_id)
    prop = _Propagator(repo)
    if not (_is_decided(m) or prop.is_void(m)):
        return prop.result
    prop.cascade(m)
    return prop.result


def _count_unresolved(prop: _Propagator, matches: List[Match]) -> int:
    count = 0
    for m in matches:
        if prop.is_void(m):
            continue
        for side in (SIDE_A, SIDE_B):
            if m.pair(side) is None and prop.side_state(m, side).kind != BYE:
                count += 1
                break
    return count


def resolve_tournament(repo: BracketRepository, tournament_id: int) -> Dict[str, int]:
    """
    Bulk repair for a whole tournament.

    Replays on_match_finished for every finished match (by match id), then
    recompiles each bracket in stage order so groupRank references refresh.

    Returns:
        Dict with matches_processed, updated_slots, conflicts,
        unresolved_before, unresolved_after.

    Guarantees:
        - Idempotent (safe to call multiple times)
        - Deterministic ordering (processes by match id, then stage)
    """
    repo.get_tournament(tournament_id)
    prop = _Propagator(repo)
    unresolved_before = _count_unresolved(prop, repo.list_tournament_matches(tournament_id))

    matches_processed = 0
    for m in repo.list_tournament_matches(tournament_id):
        if _is_decided(m):
            prop.cascade(m)
            matches_processed += 1

    for bracket in repo.list_brackets(tournament_id):
        for m in repo.list_matches(bracket.id):
            if prop.refresh(m):
                prop.cascade(m)

    unresolved_after = _count_unresolved(prop, repo.list_tournament_matches(tournament_id))
    logger.info(
        "Resolved tournament %s: %d finished matches replayed, %d slots filled, %d conflicts",
        tournament_id, matches_processed, prop.result.updated_slots, prop.result.conflicts,
    )
    return {
        "matches_processed": matches_processed,
        "updated_slots": prop.result.updated_slots,
        "conflicts": prop.result.conflicts,
        "unresolved_before": unresolved_before,
        "unresolved_after": unresolved_after,
    }


def record_result(
    repo: BracketRepository,
    match_id: int,
    winner: str,
    game_scores: Optional[List[Dict[str, Any]]] = None,
) -> PropagationResult:
    """
    Finish a match with `winner` ("A" or "B") and propagate.

    Recording the same winner again re-runs propagation only; a different
    winner for a finished match is rejected.
    """
    if winner not in (SIDE_A, SIDE_B):
        raise MatchStateError(f"winner must be 'A' or 'B' (got {winner!r})")
    m = repo.get_match(match_id)

    if m.status == STATUS_FINISHED:
        if m.winner != winner:
            raise MatchStateError(f"Match {match_id} is already finished with winner {m.winner!r}")
        return on_match_finished(repo, match_id)

    if m.pair_a_id is None or m.pair_b_id is None:
        raise MatchStateError(f"Match {match_id} does not have both entrants yet")

    scores = [{"a": int(g.get("a") or 0), "b": int(g.get("b") or 0)} for g in (game_scores or [])]
    repo.update_match_fields(
        match_id,
        {
            "status": STATUS_FINISHED,
            "winner": winner,
            "game_scores": scores,
            "finished_at": datetime.now(timezone.utc),
        },
    )
    logger.info("Recorded result for match %s (%s): winner %s", match_id, m.label, winner)
    return on_match_finished(repo, match_id)
