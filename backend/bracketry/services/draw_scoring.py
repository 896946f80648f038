"""
Draw candidate scoring (pure functions, no storage).

Lower penalty is better. Group mode balances skill across groups, spreads
pots and keeps protected seeds apart; knockout mode balances skill inside a
pair and never pairs two protected seeds in round 1.
"""
import math
import random
from copy import deepcopy
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from bracketry.models.draw_session import DRAW_MODE_GROUP
from bracketry.models.match import SIDE_A, SIDE_B
from bracketry.services.skill import NEUTRAL_SKILL, SkillRecord

BYE_SLOT = "BYE"
HARD_FAIL = math.inf


@dataclass
class LookaheadSettings:
    enabled: bool = True
    width: int = 5


@dataclass
class DrawConstraints:
    balance_skill_across_groups: bool = True
    target_group_avg_skill: float = 0.5
    use_pots: bool = False
    pot_by: str = "skill"  # skill | rank
    pot_count: Optional[int] = None
    protect_top_seeds: int = 0
    avoid_rematch_within_days: int = 90
    balance_skill_in_pair: bool = True
    pair_target_skill_diff: float = 0.12
    max_rounds_seed_separation: int = 1


@dataclass
class DrawWeights:
    skill_avg_variance: float = 1.0
    skill_std: float = 0.6
    pot_clash: float = 0.7
    seed_clash: float = 1.2
    rematch: float = 1.0
    ko_skill_diff: float = 0.9


@dataclass
class DrawSettings:
    seed: int = 0
    randomness: float = 0.02
    lookahead: LookaheadSettings = field(default_factory=LookaheadSettings)
    constraints: DrawConstraints = field(default_factory=DrawConstraints)
    weights: DrawWeights = field(default_factory=DrawWeights)
    recent_days: int = 120
    planner: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], default_seed: int = 0) -> "DrawSettings":
        data = data or {}
        la = data.get("lookahead") or {}
        c = data.get("constraints") or {}
        w = data.get("weights") or {}
        defaults_c = DrawConstraints()
        defaults_w = DrawWeights()
        pot_count = c.get("pot_count")
        return cls(
            seed=int(data["seed"]) if data.get("seed") is not None else default_seed,
            randomness=float(data.get("randomness", 0.02)),
            lookahead=LookaheadSettings(
                enabled=bool(la.get("enabled", True)),
                width=max(1, int(la.get("width", 5))),
            ),
            constraints=DrawConstraints(
                balance_skill_across_groups=c.get("balance_skill_across_groups") is not False,
                target_group_avg_skill=float(c.get("target_group_avg_skill", defaults_c.target_group_avg_skill)),
                use_pots=bool(c.get("use_pots", False)),
                pot_by="rank" if c.get("pot_by") == "rank" else "skill",
                pot_count=int(pot_count) if pot_count else None,
                protect_top_seeds=int(c.get("protect_top_seeds", 0)),
                avoid_rematch_within_days=int(c.get("avoid_rematch_within_days", 90)),
                balance_skill_in_pair=c.get("balance_skill_in_pair") is not False,
                pair_target_skill_diff=float(c.get("pair_target_skill_diff", defaults_c.pair_target_skill_diff)),
                max_rounds_seed_separation=int(c.get("max_rounds_seed_separation", 1)),
            ),
            weights=DrawWeights(
                skill_avg_variance=float(w.get("skill_avg_variance", defaults_w.skill_avg_variance)),
                skill_std=float(w.get("skill_std", defaults_w.skill_std)),
                pot_clash=float(w.get("pot_clash", defaults_w.pot_clash)),
                seed_clash=float(w.get("seed_clash", defaults_w.seed_clash)),
                rematch=float(w.get("rematch", defaults_w.rematch)),
                ko_skill_diff=float(w.get("ko_skill_diff", defaults_w.ko_skill_diff)),
            ),
            recent_days=int((data.get("recent") or {}).get("days", 120)),
            planner=dict(data.get("planner") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["recent"] = {"days": data.pop("recent_days")}
        return data


# =============================================================================
# Board helpers
# =============================================================================

def is_entrant(slot: Any) -> bool:
    return isinstance(slot, int) and not isinstance(slot, bool)


def advance_cursor(board: Dict[str, Any], mode: str) -> Optional[Dict[str, Any]]:
    """
    First empty slot: row-major over groups, or pair by pair (A before B)
    for knockout. None when the board is full.
    """
    if mode == DRAW_MODE_GROUP:
        for gi, group in enumerate(board.get("groups") or []):
            for si, slot in enumerate(group.get("slots") or []):
                if slot is None:
                    return {"g_index": gi, "slot_index": si}
        return None

    for pi, pair in enumerate(board.get("pairs") or []):
        if pair.get("a") is None:
            return {"pair_index": pi, "side": SIDE_A}
        if pair.get("b") is None:
            return {"pair_index": pi, "side": SIDE_B}
    return None


def place(board: Dict[str, Any], cursor: Dict[str, Any], mode: str, entrant_id: int) -> None:
    if mode == DRAW_MODE_GROUP:
        board["groups"][cursor["g_index"]]["slots"][cursor["slot_index"]] = entrant_id
    else:
        key = "a" if cursor["side"] == SIDE_A else "b"
        board["pairs"][cursor["pair_index"]][key] = entrant_id


def board_entrants(board: Dict[str, Any], mode: str) -> List[int]:
    if mode == DRAW_MODE_GROUP:
        return [s for g in board.get("groups") or [] for s in g.get("slots") or [] if is_entrant(s)]
    return [s for p in board.get("pairs") or [] for s in (p.get("a"), p.get("b")) if is_entrant(s)]


# =============================================================================
# Pots and seeds
# =============================================================================

def assign_pots(skills: Dict[int, SkillRecord], settings: DrawSettings, group_count: int) -> None:
    """Write meta["pot"] (0 = strongest) in place."""
    if not settings.constraints.use_pots or not skills:
        return
    pot_count = settings.constraints.pot_count or group_count or 4

    if settings.constraints.pot_by == "rank":
        # Ranked entrants first (rank ascending), then the rest by skill
        ordered = sorted(
            skills.values(),
            key=lambda r: (
                r.meta.get("rank") is None,
                r.meta.get("rank") or 0,
                -r.skill,
                r.id,
            ),
        )
    else:
        ordered = sorted(skills.values(), key=lambda r: (-r.skill, r.id))

    chunk = math.ceil(len(ordered) / pot_count)
    for idx, record in enumerate(ordered):
        record.meta["pot"] = min(idx // chunk, pot_count - 1)


def ensure_seeds(skills: Dict[int, SkillRecord], protect_top_seeds: int) -> None:
    """When most entrants (>= 60%) lack a seed, seed everybody by descending skill."""
    if not protect_top_seeds or protect_top_seeds <= 0 or not skills:
        return
    unseeded = sum(1 for r in skills.values() if r.meta.get("seed") is None)
    if unseeded / max(1, len(skills)) < 0.6:
        return
    for i, record in enumerate(sorted(skills.values(), key=lambda r: (-r.skill, r.id))):
        record.meta["seed"] = i + 1


def _is_protected(record: Optional[SkillRecord], settings: DrawSettings) -> bool:
    if record is None:
        return False
    seed = record.meta.get("seed") or 0
    return 0 < seed <= settings.constraints.protect_top_seeds


# =============================================================================
# Scoring
# =============================================================================

def _skill_of(skills: Dict[int, SkillRecord], entrant_id: int) -> float:
    record = skills.get(entrant_id)
    return record.skill if record else NEUTRAL_SKILL


def score_candidate(
    candidate_id: int,
    mode: str,
    board: Dict[str, Any],
    cursor: Dict[str, Any],
    skills: Dict[int, SkillRecord],
    settings: DrawSettings,
    recent_opponents: Optional[Dict[int, Set[int]]] = None,
) -> float:
    """Penalty for placing candidate_id at cursor. math.inf is a hard fail."""
    record = skills.get(candidate_id)
    sk = record.skill if record else NEUTRAL_SKILL
    faced = (recent_opponents or {}).get(candidate_id, set())
    c, w = settings.constraints, settings.weights

    if mode == DRAW_MODE_GROUP:
        group = board["groups"][cursor["g_index"]]
        members = [s for s in group.get("slots") or [] if is_entrant(s)]
        size = len(members)
        avg = sum(_skill_of(skills, m) for m in members) / size if size else NEUTRAL_SKILL

        penalty = 0.0
        if c.balance_skill_across_groups:
            new_avg = (avg * size + sk) / (size + 1)
            penalty += w.skill_avg_variance * abs(new_avg - c.target_group_avg_skill)
            penalty += w.skill_std * abs(sk - new_avg)

        pot = record.meta.get("pot") if record else None
        if c.use_pots and pot is not None:
            pot_count = c.pot_count or len(board["groups"]) or 4
            same_pot = sum(1 for m in members if skills.get(m) and skills[m].meta.get("pot") == pot)
            ideal = math.ceil((size + 1) / pot_count)
            if same_pot + 1 > ideal:
                penalty += w.pot_clash * (same_pot + 1 - ideal)

        if c.protect_top_seeds > 0 and _is_protected(record, settings):
            if any(_is_protected(skills.get(m), settings) for m in members):
                penalty += w.seed_clash

        if c.avoid_rematch_within_days > 0 and faced:
            penalty += w.rematch * sum(1 for m in members if m in faced)

        return penalty

    pair = board["pairs"][cursor["pair_index"]]
    rival = pair.get("b") if cursor["side"] == SIDE_A else pair.get("a")
    if not is_entrant(rival):
        return abs(sk - NEUTRAL_SKILL) * 0.1

    rival_record = skills.get(rival)
    if c.max_rounds_seed_separation > 0 and c.protect_top_seeds > 0:
        if _is_protected(record, settings) and _is_protected(rival_record, settings):
            return HARD_FAIL

    penalty = 0.0
    if c.balance_skill_in_pair:
        diff = abs(sk - _skill_of(skills, rival))
        penalty += w.ko_skill_diff * max(0.0, diff - c.pair_target_skill_diff)
    if c.avoid_rematch_within_days > 0 and rival in faced:
        penalty += w.rematch
    return penalty


def seeded_noise(seed: int, index: int) -> float:
    """Deterministic uniform draw in [0, 1) keyed by (seed, pool index)."""
    return random.Random(seed * 1_000_003 + index).random()


def lookahead_score(
    base_score: float,
    candidate_id: int,
    mode: str,
    board: Dict[str, Any],
    cursor: Dict[str, Any],
    pool: Iterable[int],
    skills: Dict[int, SkillRecord],
    settings: DrawSettings,
    recent_opponents: Optional[Dict[int, Set[int]]] = None,
) -> float:
    """base + 0.5 * best penalty of the following slot, on a copy of the board."""
    trial = deepcopy(board)
    place(trial, cursor, mode, candidate_id)
    next_cursor = advance_cursor(trial, mode)
    remaining = [e for e in pool if e != candidate_id]
    if next_cursor is None or not remaining:
        return base_score

    best_next = min(
        score_candidate(e, mode, trial, next_cursor, skills, settings, recent_opponents)
        for e in remaining
    )
    if math.isinf(best_next):
        best_next = 0.0
    return base_score + 0.5 * best_next


def rank_candidates(
    pool: List[int],
    mode: str,
    board: Dict[str, Any],
    cursor: Dict[str, Any],
    skills: Dict[int, SkillRecord],
    settings: DrawSettings,
    recent_opponents: Optional[Dict[int, Set[int]]] = None,
) -> List[Dict[str, Any]]:
    """Candidates sorted best first: [{"id", "score"}]. Ties keep pool order."""
    scored = []
    for i, entrant_id in enumerate(pool):
        score = score_candidate(entrant_id, mode, board, cursor, skills, settings, recent_opponents)
        score += (seeded_noise(settings.seed, i) - 0.5) * settings.randomness
        scored.append({"id": entrant_id, "score": score})
    scored.sort(key=lambda o: o["score"])

    if settings.lookahead.enabled and len(scored) > 1:
        width = min(settings.lookahead.width, len(scored))
        refined = [
            {
                "id": o["id"],
                "score": lookahead_score(
                    o["score"], o["id"], mode, board, cursor, pool, skills, settings, recent_opponents
                ),
            }
            for o in scored[:width]
        ]
        refined.sort(key=lambda o: o["score"])
        return refined + scored[width:]
    return scored


def select_next_candidate(
    pool: List[int],
    mode: str,
    board: Dict[str, Any],
    cursor: Optional[Dict[str, Any]],
    skills: Dict[int, SkillRecord],
    settings: DrawSettings,
    recent_opponents: Optional[Dict[int, Set[int]]] = None,
) -> Optional[int]:
    if not pool or cursor is None:
        return None
    ranked = rank_candidates(pool, mode, board, cursor, skills, settings, recent_opponents)
    return ranked[0]["id"] if ranked else None
