"""
Group standings over finished round-robin matches.

Order: wins desc, point differential desc, points for desc, entrant id asc.
Only entrants with at least one finished match are ranked.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from bracketry.models.bracket import Bracket
from bracketry.models.match import SIDE_A, SIDE_B, STATUS_FINISHED, Match
from bracketry.services.repository import BracketRepository
from bracketry.services.seed_refs import normalize_group_code


@dataclass
class StandingRow:
    entrant_id: int
    played: int = 0
    wins: int = 0
    losses: int = 0
    points_for: int = 0
    points_against: int = 0

    @property
    def diff(self) -> int:
        return self.points_for - self.points_against


@dataclass
class GroupStandings:
    code: str
    complete: bool = False
    total_matches: int = 0
    finished_matches: int = 0
    rows: List[StandingRow] = field(default_factory=list)

    def entrant_at(self, rank: int) -> Optional[int]:
        """1-based rank lookup; None when nobody holds that rank yet."""
        if rank < 1 or rank > len(self.rows):
            return None
        return self.rows[rank - 1].entrant_id


def _group_index(bracket: Bracket, code: str) -> Optional[int]:
    token = normalize_group_code(code)
    for idx, group in enumerate(bracket.groups or []):
        if normalize_group_code(group.get("name")) == token or str(idx + 1) == token:
            return idx
    return None


def _in_group(m: Match, index: int, name: str) -> bool:
    pool = m.pool or {}
    if pool.get("id") is not None and pool.get("id") == index:
        return True
    return normalize_group_code(pool.get("name")) == name


def _is_decided(m: Match) -> bool:
    return m.status == STATUS_FINISHED and m.winner in (SIDE_A, SIDE_B)


def standings_from_matches(code: str, matches: List[Match]) -> GroupStandings:
    result = GroupStandings(code=code, total_matches=len(matches))
    table: Dict[int, StandingRow] = {}

    for m in matches:
        if not _is_decided(m):
            continue
        result.finished_matches += 1
        a, b = m.pair_a_id, m.pair_b_id
        if a is None or b is None:
            continue

        points_a = sum(int(g.get("a") or 0) for g in m.game_scores or [])
        points_b = sum(int(g.get("b") or 0) for g in m.game_scores or [])
        row_a = table.setdefault(a, StandingRow(entrant_id=a))
        row_b = table.setdefault(b, StandingRow(entrant_id=b))
        row_a.played += 1
        row_b.played += 1
        row_a.points_for += points_a
        row_a.points_against += points_b
        row_b.points_for += points_b
        row_b.points_against += points_a
        if m.winner == SIDE_A:
            row_a.wins += 1
            row_b.losses += 1
        else:
            row_b.wins += 1
            row_a.losses += 1

    result.complete = result.total_matches > 0 and result.finished_matches == result.total_matches
    result.rows = sorted(
        (r for r in table.values() if r.played > 0),
        key=lambda r: (-r.wins, -r.diff, -r.points_for, r.entrant_id),
    )
    return result


def compute_group_standings(repo: BracketRepository, bracket: Bracket, group_code: str) -> Optional[GroupStandings]:
    """Standings for one group of `bracket`; None when the group does not exist."""
    index = _group_index(bracket, group_code)
    if index is None:
        return None
    name = normalize_group_code((bracket.groups or [])[index].get("name"))
    matches = [m for m in repo.list_matches(bracket.id) if _in_group(m, index, name)]
    return standings_from_matches(name, matches)


def compute_bracket_standings(repo: BracketRepository, bracket_id: int) -> List[GroupStandings]:
    """Standings for every group of a group bracket, in group order."""
    bracket = repo.get_bracket(bracket_id)
    all_matches = repo.list_matches(bracket_id)
    result: List[GroupStandings] = []
    for index, group in enumerate(bracket.groups or []):
        name = normalize_group_code(group.get("name"))
        result.append(standings_from_matches(name, [m for m in all_matches if _in_group(m, index, name)]))
    return result
