"""
Bracket Topology Builder

Creates a bracket row and its full match skeleton in one pass:

- knockout:   power-of-two tree, optional third-place match
- roundElim:  progressive ladder where each round's losers play on
- group:      named buckets, round-robin fixtures per bucket

Everything is validated before the first write, so a rejected build leaves
storage untouched. The caller owns the transaction.
"""
import logging
from dataclasses import dataclass, field
from math import ceil, log2
from typing import Any, Dict, List, Optional, Sequence

from bracketry.models.bracket import Bracket, BracketType
from bracketry.models.match import SIDE_A, SIDE_B, Match
from bracketry.services.group_planner import (
    GroupPlanPolicy,
    distribute_byes,
    group_keys,
    plan_groups,
)
from bracketry.services.propagation import compile_bracket
from bracketry.services.repository import BracketRepository
from bracketry.services.round_robin import rr_fixtures
from bracketry.services.seed_refs import (
    SeedReference,
    SeedReferenceError,
    coerce_seed,
    validate_upstream,
)
from bracketry.utils.bracket_math import (
    max_rounds_for_entrants,
    next_pow2,
    round_title_by_pairs,
    sanitize_rules,
)

logger = logging.getLogger(__name__)


class BracketValidationError(ValueError):
    """Raised when a bracket cannot be built as requested."""


@dataclass
class BuildResult:
    bracket: Bracket
    matches_by_round: Dict[int, List[Match]] = field(default_factory=dict)

    @property
    def match_count(self) -> int:
        return sum(len(ms) for ms in self.matches_by_round.values())


def seed_fields(side: str, seed: Optional[SeedReference]) -> Dict[str, Any]:
    """Column values for storing `seed` on one side of a match."""
    suffix = "a" if side == SIDE_A else "b"
    return {
        f"seed_{suffix}": seed.to_dict() if seed else None,
        f"seed_{suffix}_key": seed.key if seed else None,
    }


# =============================================================================
# Shared validation
# =============================================================================

def _check_stage_free(repo: BracketRepository, tournament_id: int, stage: int) -> None:
    if stage < 1:
        raise BracketValidationError(f"stage must be >= 1 (got {stage})")
    existing = repo.find_bracket_by_stage(tournament_id, stage)
    if existing:
        raise BracketValidationError(
            f"Stage {stage} already has bracket {existing.id} ({existing.name!r})"
        )


def _check_draw_rounds(repo: BracketRepository, tournament_id: int, draw_rounds: Optional[int]) -> None:
    if draw_rounds is None:
        return
    if draw_rounds < 1:
        raise BracketValidationError(f"draw_rounds must be a positive integer (got {draw_rounds})")
    paid = repo.get_paid_entrant_count(tournament_id)
    limit = max_rounds_for_entrants(paid)
    if draw_rounds > limit:
        raise BracketValidationError(
            f"draw_rounds is at most {limit} (2^{limit} <= {paid} paid entrants), got {draw_rounds}"
        )


def _coerce_seeds(seeds: Optional[Sequence[Any]], slots: int, stage: int) -> List[Optional[SeedReference]]:
    """Slot-ordered seeds padded with None up to `slots`; every given seed must be upstream of round 1."""
    seeds = list(seeds or [])
    if len(seeds) > slots:
        raise BracketValidationError(f"{len(seeds)} seeds given for {slots} first-round slots")
    result: List[Optional[SeedReference]] = []
    for slot, value in enumerate(seeds):
        try:
            seed = coerce_seed(value)
            validate_upstream(seed, stage, 1)
        except SeedReferenceError as e:
            raise BracketValidationError(f"Slot {slot}: {e}") from e
        result.append(seed)
    result.extend([None] * (slots - len(result)))
    return result


# =============================================================================
# Knockout
# =============================================================================

def build_knockout(
    repo: BracketRepository,
    tournament_id: int,
    draw_size: int,
    seeds: Optional[Sequence[Any]] = None,
    stage: int = 1,
    order: int = 1,
    name: str = "Knockout",
    third_place: bool = False,
    rules: Optional[Dict[str, Any]] = None,
    semi_rules: Optional[Dict[str, Any]] = None,
    final_rules: Optional[Dict[str, Any]] = None,
    third_place_rules: Optional[Dict[str, Any]] = None,
    draw_rounds: Optional[int] = None,
) -> BuildResult:
    """
    Build a single-elimination tree for `draw_size` entrants.

    Args:
        seeds: slot-ordered list; slot 2i is side A of round-1 match i, slot
            2i+1 side B. Items are entrant ids, SeedReferences, stored seed
            dicts or None. Missing slots are byes.
        draw_rounds: optional requested depth, bounded by the paid entrant count.

    Returns:
        BuildResult with matches_by_round[round] ordered by `order`.

    Guarantees:
        - size = next_pow2(draw_size) >= 2, rounds = log2(size)
        - size - 1 tree matches, one root (plus the third-place match if asked)
        - previous/next edges are set in both directions
        - bracket is compiled once (registrations resolved, byes advanced)
    """
    repo.get_tournament(tournament_id)
    if draw_size is None or draw_size < 2:
        raise BracketValidationError(f"Knockout draw_size must be >= 2 (got {draw_size})")
    _check_stage_free(repo, tournament_id, stage)
    _check_draw_rounds(repo, tournament_id, draw_rounds)

    size = next_pow2(draw_size)
    rounds = int(log2(size))
    first_pairs = size // 2
    slot_seeds = _coerce_seeds(seeds, size, stage)

    base_rules = sanitize_rules(rules)
    semi_only = sanitize_rules(semi_rules) if semi_rules else None
    final_only = sanitize_rules(final_rules) if final_rules else None
    bronze_only = sanitize_rules(third_place_rules) if third_place_rules else (final_only or semi_only or base_rules)

    def pick_rules(round_: int, idx: int) -> Dict[str, Any]:
        if round_ == rounds and idx == 0 and final_only:
            return final_only
        if rounds >= 2 and round_ == rounds - 1 and semi_only:
            return semi_only
        return base_rules

    meta: Dict[str, Any] = {
        "draw_size": size,
        "max_rounds": rounds,
        "expected_first_round_matches": first_pairs,
        "third_place": bool(third_place),
    }
    if draw_rounds is not None:
        meta["draw_rounds"] = draw_rounds

    bracket = repo.create_bracket(
        Bracket(
            tournament_id=tournament_id,
            name=name,
            type=BracketType.knockout.value,
            stage=stage,
            order=order,
            meta=meta,
            rules=base_rules,
        )
    )

    created: Dict[int, List[Match]] = {}

    # Round 1: seeds, missing slots are byes
    r1: List[Match] = []
    title = round_title_by_pairs(first_pairs)
    for i in range(first_pairs):
        seed_a = slot_seeds[2 * i] or SeedReference.bye()
        seed_b = slot_seeds[2 * i + 1] or SeedReference.bye()
        r1.append(
            Match(
                tournament_id=tournament_id,
                bracket_id=bracket.id,
                stage=stage,
                round=1,
                order=i,
                label=f"{title}{i + 1}",
                rules=pick_rules(1, i),
                **seed_fields(SIDE_A, seed_a),
                **seed_fields(SIDE_B, seed_b),
            )
        )
    created[1] = repo.insert_matches(r1)

    # Rounds 2..R: consecutive pairs of the previous round
    for r in range(2, rounds + 1):
        prev = created[r - 1]
        pairs = len(prev) // 2
        title = round_title_by_pairs(pairs)
        ms = [
            Match(
                tournament_id=tournament_id,
                bracket_id=bracket.id,
                stage=stage,
                round=r,
                order=i,
                label=f"{title}{i + 1}",
                previous_a_id=prev[2 * i].id,
                previous_b_id=prev[2 * i + 1].id,
                rules=pick_rules(r, i),
            )
            for i in range(pairs)
        ]
        created[r] = repo.insert_matches(ms)

        # Inverse edges: even child feeds A, odd child feeds B
        for i, m_next in enumerate(created[r]):
            repo.update_match_fields(prev[2 * i].id, {"next_match_id": m_next.id, "next_slot": SIDE_A})
            repo.update_match_fields(prev[2 * i + 1].id, {"next_match_id": m_next.id, "next_slot": SIDE_B})

    if third_place and rounds >= 2:
        semis = created[rounds - 1]
        bronze = Match(
            tournament_id=tournament_id,
            bracket_id=bracket.id,
            stage=stage,
            round=rounds,
            order=len(created[rounds]),
            label="3P",
            rules=bronze_only,
            **seed_fields(SIDE_A, SeedReference.match_loser(stage, rounds - 1, semis[0].order)),
            **seed_fields(SIDE_B, SeedReference.match_loser(stage, rounds - 1, semis[1].order)),
        )
        created[rounds] = created[rounds] + repo.insert_matches([bronze])

    logger.info(
        "Built knockout bracket %s (tournament=%s stage=%s size=%s rounds=%s third_place=%s)",
        bracket.id, tournament_id, stage, size, rounds, bool(third_place),
    )

    compile_bracket(repo, bracket.id)
    return BuildResult(bracket=bracket, matches_by_round=created)


# =============================================================================
# Round elimination (progressive ladder)
# =============================================================================

def round_elim_pairs(draw_size: int, round_: int) -> int:
    """Matches in round r: ceil(N/2) for r=1, then floor(previous/2)."""
    n = max(0, draw_size)
    pairs = max(1, ceil(n / 2))
    for _ in range(2, round_ + 1):
        pairs //= 2
    return pairs


def build_round_elim(
    repo: BracketRepository,
    tournament_id: int,
    draw_size: int,
    max_rounds: int = 1,
    seeds: Optional[Sequence[Any]] = None,
    stage: int = 1,
    order: int = 2,
    name: str = "Play-off",
    rules: Optional[Dict[str, Any]] = None,
    round_rules: Optional[List[Dict[str, Any]]] = None,
    draw_rounds: Optional[int] = None,
) -> BuildResult:
    """
    Build a round-elimination ladder: winners of each round leave as qualifiers,
    losers meet again in the next round.

    Round 1 has ceil(N/2) matches; unfilled slots are placeholders awaiting a
    draw, and the last B side is a bye when N is odd. Round r > 1 pairs the
    losers of matches (2i, 2i+1) of round r-1; a missing right source is a bye.
    """
    repo.get_tournament(tournament_id)
    if draw_size is None or draw_size < 2:
        raise BracketValidationError(f"Round-elimination draw_size must be >= 2 (got {draw_size})")
    max_rounds = max(1, int(max_rounds or 1))
    _check_stage_free(repo, tournament_id, stage)
    _check_draw_rounds(repo, tournament_id, draw_rounds)

    paid = repo.get_paid_entrant_count(tournament_id)
    if paid > 0 and max_rounds > 1 and max_rounds > max_rounds_for_entrants(paid):
        raise BracketValidationError(
            f"max_rounds is at most {max_rounds_for_entrants(paid)} for {paid} paid entrants, got {max_rounds}"
        )

    r1_pairs = round_elim_pairs(draw_size, 1)
    slot_seeds = _coerce_seeds(seeds, r1_pairs * 2, stage)

    base_rules = sanitize_rules(rules)
    per_round = [sanitize_rules(r) for r in (round_rules or [])]

    def rules_for_round(r: int) -> Dict[str, Any]:
        return per_round[r - 1] if r - 1 < len(per_round) else base_rules

    meta: Dict[str, Any] = {
        "draw_size": draw_size,
        "max_rounds": max_rounds,
        "expected_first_round_matches": r1_pairs,
        "round_rules": per_round,
    }
    if draw_rounds is not None:
        meta["draw_rounds"] = draw_rounds

    bracket = repo.create_bracket(
        Bracket(
            tournament_id=tournament_id,
            name=name,
            type=BracketType.round_elim.value,
            stage=stage,
            order=order,
            meta=meta,
            rules=base_rules,
        )
    )

    created: Dict[int, List[Match]] = {}

    r1: List[Match] = []
    for i in range(r1_pairs):
        slot_a, slot_b = 2 * i + 1, 2 * i + 2  # 1-based entrant numbers
        seed_a = slot_seeds[2 * i] or SeedReference.registration(None, f"Entrant {slot_a}")
        if slot_seeds[2 * i + 1]:
            seed_b = slot_seeds[2 * i + 1]
        elif slot_b <= draw_size:
            seed_b = SeedReference.registration(None, f"Entrant {slot_b}")
        else:
            seed_b = SeedReference.bye()
        r1.append(
            Match(
                tournament_id=tournament_id,
                bracket_id=bracket.id,
                stage=stage,
                round=1,
                order=i,
                label=f"R1-{i + 1}",
                rules=rules_for_round(1),
                **seed_fields(SIDE_A, seed_a),
                **seed_fields(SIDE_B, seed_b),
            )
        )
    created[1] = repo.insert_matches(r1)

    for r in range(2, max_rounds + 1):
        pairs = round_elim_pairs(draw_size, r)
        if pairs <= 0:
            break
        prev_pairs = round_elim_pairs(draw_size, r - 1)
        ms: List[Match] = []
        for i in range(pairs):
            left, right = 2 * i, 2 * i + 1
            seed_a = SeedReference.match_loser(stage, r - 1, left)
            seed_b = SeedReference.match_loser(stage, r - 1, right) if right < prev_pairs else SeedReference.bye()
            ms.append(
                Match(
                    tournament_id=tournament_id,
                    bracket_id=bracket.id,
                    stage=stage,
                    round=r,
                    order=i,
                    label=f"R{r}-{i + 1}",
                    rules=rules_for_round(r),
                    **seed_fields(SIDE_A, seed_a),
                    **seed_fields(SIDE_B, seed_b),
                )
            )
        created[r] = repo.insert_matches(ms)

    logger.info(
        "Built round-elimination bracket %s (tournament=%s stage=%s N=%s rounds=%s)",
        bracket.id, tournament_id, stage, draw_size, len(created),
    )

    compile_bracket(repo, bracket.id)
    return BuildResult(bracket=bracket, matches_by_round=created)


# =============================================================================
# Groups
# =============================================================================

def build_group(
    repo: BracketRepository,
    tournament_id: int,
    group_count: Optional[int] = None,
    group_size: Optional[int] = None,
    entrant_ids: Optional[Sequence[int]] = None,
    group_sizes: Optional[Sequence[int]] = None,
    policy: Optional[GroupPlanPolicy] = None,
    double_round_robin: bool = False,
    stage: int = 1,
    order: int = 0,
    name: str = "Group Stage",
    rules: Optional[Dict[str, Any]] = None,
) -> BuildResult:
    """
    Build named group buckets (A, B, C, ...).

    Sizing, first match wins:
        1. explicit group_sizes
        2. entrant_ids given -> plan_groups(len(entrant_ids), policy)
        3. group_count x group_size
        4. group_count buckets with expected size 0 (filled by a draw)

    When entrant_ids are given they are dealt into the buckets in order
    (bye slots sit at group tails) and fixtures are generated right away.
    Otherwise fixtures come later from generate_group_matches.
    """
    repo.get_tournament(tournament_id)
    _check_stage_free(repo, tournament_id, stage)

    ids = [int(i) for i in entrant_ids] if entrant_ids else []
    if len(set(ids)) != len(ids):
        raise BracketValidationError("entrant_ids contains duplicates")

    if group_sizes:
        sizes = [max(0, int(s)) for s in group_sizes]
        if group_count is not None and group_count != len(sizes):
            raise BracketValidationError(f"group_sizes has {len(sizes)} entries for group_count={group_count}")
    elif ids:
        plan_policy = policy or GroupPlanPolicy(group_size=group_size, group_count=group_count)
        sizes = plan_groups(len(ids), plan_policy).group_sizes
    elif group_count is not None and group_count >= 1:
        sizes = [max(0, int(group_size or 0))] * group_count
    else:
        raise BracketValidationError(f"group_count must be >= 1 (got {group_count})")

    if not sizes:
        raise BracketValidationError("group_count must be >= 1")

    if ids and sum(sizes) < len(ids):
        raise BracketValidationError(f"{len(ids)} entrants do not fit groups of total size {sum(sizes)}")
    # Unused capacity sits at group tails
    bye_counts = distribute_byes(sizes, sum(sizes) - len(ids)) if ids else [0] * len(sizes)

    groups: List[Dict[str, Any]] = []
    cursor = 0
    for key, size, bye_count in zip(group_keys(len(sizes)), sizes, bye_counts):
        take = size - bye_count if ids else 0
        groups.append({"name": key, "expected_size": size, "entrant_ids": ids[cursor:cursor + take]})
        cursor += take

    bracket = repo.create_bracket(
        Bracket(
            tournament_id=tournament_id,
            name=name,
            type=BracketType.group.value,
            stage=stage,
            order=order,
            groups=groups,
            meta={
                "group_count": len(groups),
                "double_round_robin": bool(double_round_robin),
                "byes": sum(bye_counts),
                "max_rounds": 1,
            },
            rules=sanitize_rules(rules),
        )
    )

    logger.info(
        "Built group bracket %s (tournament=%s stage=%s sizes=%s)",
        bracket.id, tournament_id, stage, sizes,
    )

    matches_by_round: Dict[int, List[Match]] = {}
    if ids:
        matches_by_round = generate_group_matches(repo, bracket.id, double_round_robin)
    return BuildResult(bracket=bracket, matches_by_round=matches_by_round)


def generate_group_matches(
    repo: BracketRepository,
    bracket_id: int,
    double_round_robin: Optional[bool] = None,
) -> Dict[int, List[Match]]:
    """
    Round-robin fixtures for every group of a group bracket.

    Match.round is the rotation round; Match.order counts up within a round
    across all groups, so (bracket, round, order) stays unique. Each match is
    tagged pool={"id": group index, "name": group key}.
    """
    bracket = repo.get_bracket(bracket_id)
    if bracket.type != BracketType.group.value:
        raise BracketValidationError(f"Bracket {bracket_id} is {bracket.type}, not a group bracket")
    if repo.list_matches(bracket_id):
        raise BracketValidationError(f"Bracket {bracket_id} already has fixtures")

    if double_round_robin is None:
        double_round_robin = bool((bracket.meta or {}).get("double_round_robin"))

    next_order: Dict[int, int] = {}
    pending: List[Match] = []
    for g_index, group in enumerate(bracket.groups or []):
        members = list(group.get("entrant_ids") or [])
        code = group.get("name") or group_keys(g_index + 1)[-1]
        for round_, seq, idx_a, idx_b in rr_fixtures(len(members), double_round_robin):
            order = next_order.get(round_, 0)
            next_order[round_] = order + 1
            a_id, b_id = members[idx_a], members[idx_b]
            pending.append(
                Match(
                    tournament_id=bracket.tournament_id,
                    bracket_id=bracket.id,
                    stage=bracket.stage,
                    round=round_,
                    order=order,
                    label=f"{code}{round_}-{seq}",
                    pair_a_id=a_id,
                    pair_b_id=b_id,
                    pool={"id": g_index, "name": code},
                    rules=dict(bracket.rules or {}),
                    **seed_fields(SIDE_A, SeedReference.registration(a_id)),
                    **seed_fields(SIDE_B, SeedReference.registration(b_id)),
                )
            )

    inserted = repo.insert_matches(pending)
    by_round: Dict[int, List[Match]] = {}
    for m in inserted:
        by_round.setdefault(m.round, []).append(m)

    logger.info("Generated %d group fixtures for bracket %s", len(inserted), bracket_id)
    return by_round
