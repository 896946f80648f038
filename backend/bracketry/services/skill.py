"""
Skill Estimator

Blends base rating and match history into one strength score in [0, 1] per
entrant, used by the draw engine to balance groups and pairs.

    skill = 0.45 * base_rating
          + 0.20 * set_win_pct
          + 0.15 * margin_norm
          + 0.10 * strength_of_schedule
          + 0.07 * recent_form
          + 0.03 * volume_bonus
          - 0.10 * (1 - volume_bonus)

Every term defaults to 0.5 when there is nothing to measure, so sparse data
pulls an entrant toward the middle rather than either end.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from bracketry import config
from bracketry.models.match import Match
from bracketry.services.repository import BracketRepository

logger = logging.getLogger(__name__)

NEUTRAL_SKILL = 0.5


def _clamp01(x: float) -> float:
    return max(0.0, min(1.0, x))


def _round3(x: float) -> float:
    return round(x * 1000) / 1000


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they were written as UTC
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def normalize_rating(rating: Optional[float]) -> float:
    """Base rating on the RATING_SCALE mapped to [0, 1]; missing -> 0.5."""
    if rating is None:
        return NEUTRAL_SKILL
    scale = config.RATING_SCALE or 10.0
    return _clamp01(float(rating) / scale)


@dataclass
class SkillRecord:
    id: int
    skill: float = NEUTRAL_SKILL
    matches: int = 0
    set_win_pct: float = 0.5
    point_margin: float = 0.0
    recent_form: float = 0.5
    sos: float = 0.5
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _History:
    matches: int = 0
    sets_won: int = 0
    sets_lost: int = 0
    points_for: int = 0
    points_against: int = 0
    recent_wins: int = 0
    recent_matches: int = 0
    opponents: Set[int] = field(default_factory=set)


def _tally(history: Iterable[Match], wanted: Set[int], since: datetime) -> Dict[int, _History]:
    stats: Dict[int, _History] = {}
    for m in history:
        a, b = m.pair_a_id, m.pair_b_id
        if a is None or b is None:
            continue

        sets_a = sets_b = points_a = points_b = 0
        for game in m.game_scores or []:
            ga, gb = int(game.get("a") or 0), int(game.get("b") or 0)
            if ga > gb:
                sets_a += 1
            elif gb > ga:
                sets_b += 1
            points_a += ga
            points_b += gb

        finished = _as_utc(m.finished_at) or _as_utc(m.created_at)
        is_recent = finished is not None and finished >= since

        for me, opp, won, lost, pf, pa in ((a, b, sets_a, sets_b, points_a, points_b),
                                           (b, a, sets_b, sets_a, points_b, points_a)):
            if me not in wanted:
                continue
            s = stats.setdefault(me, _History())
            s.matches += 1
            s.sets_won += won
            s.sets_lost += lost
            s.points_for += pf
            s.points_against += pa
            s.opponents.add(opp)
            if is_recent:
                s.recent_matches += 1
                if won > lost:
                    s.recent_wins += 1
    return stats


def compute_skill_map(
    repo: BracketRepository,
    entrant_ids: Iterable[int],
    recent_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Dict[int, SkillRecord]:
    """
    Skill records keyed by entrant id.

    Args:
        recent_days: recent-form window (defaults to SKILL_RECENT_DAYS).
        now: reference time for the window (defaults to current UTC time).

    Guarantees:
        - skill in [0, 1], rounded to 3 decimals
        - entrants with no registration and no history get exactly 0.5
        - explicit registration seeds show up as meta["seed"] / meta["rank"]
    """
    ids: List[int] = sorted({int(i) for i in entrant_ids if i is not None})
    if not ids:
        return {}

    window = max(1, int(recent_days if recent_days is not None else config.SKILL_RECENT_DAYS))
    since = (now or datetime.now(timezone.utc)) - timedelta(days=window)
    saturation = max(1, config.SKILL_VOLUME_SATURATION)

    registrations = {r.id: r for r in repo.get_registrations(ids)}
    stats = _tally(repo.get_match_history(ids), set(ids), since)

    opponent_ids = set()
    for s in stats.values():
        opponent_ids |= s.opponents
    rating_by_id = {rid: normalize_rating(r.rating) for rid, r in registrations.items()}
    missing = opponent_ids - set(rating_by_id)
    if missing:
        rating_by_id.update({r.id: normalize_rating(r.rating) for r in repo.get_registrations(missing)})

    result: Dict[int, SkillRecord] = {}
    for entrant_id in ids:
        reg = registrations.get(entrant_id)
        s = stats.get(entrant_id)
        if reg is None and s is None:
            result[entrant_id] = SkillRecord(id=entrant_id)
            continue
        s = s or _History()

        base = rating_by_id.get(entrant_id, NEUTRAL_SKILL)
        set_total = s.sets_won + s.sets_lost
        set_win_pct = s.sets_won / set_total if set_total > 0 else 0.5
        point_margin = (s.points_for - s.points_against) / max(1, s.matches) if s.matches else 0.0
        margin_norm = _clamp01(0.5 + point_margin / 20)
        sos = (
            sum(rating_by_id.get(o, NEUTRAL_SKILL) for o in s.opponents) / len(s.opponents)
            if s.opponents else 0.5
        )
        recent_form = s.recent_wins / s.recent_matches if s.recent_matches > 0 else 0.5
        volume_bonus = min(1.0, s.matches / saturation)

        skill = (
            0.45 * base
            + 0.20 * set_win_pct
            + 0.15 * margin_norm
            + 0.10 * sos
            + 0.07 * recent_form
            + 0.03 * volume_bonus
            - 0.10 * (1 - volume_bonus)
        )

        meta: Dict[str, Any] = {}
        if reg is not None and reg.seed is not None:
            meta["seed"] = reg.seed
            meta["rank"] = reg.seed

        result[entrant_id] = SkillRecord(
            id=entrant_id,
            skill=_round3(_clamp01(skill)),
            matches=s.matches,
            set_win_pct=_round3(set_win_pct),
            point_margin=_round3(point_margin),
            recent_form=_round3(recent_form),
            sos=_round3(sos),
            meta=meta,
        )

    logger.debug("Computed skill for %d entrants (%d with history)", len(result), len(stats))
    return result
