"""
Bracket construction: capacity planning, topology builders, group fixtures,
standings and skill lookups.
"""
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session

from bracketry.database import get_session
from bracketry.models.bracket import Bracket
from bracketry.models.match import Match
from bracketry.services.bracket_builder import (
    BuildResult,
    build_group,
    build_knockout,
    build_round_elim,
    generate_group_matches,
)
from bracketry.services.group_planner import GroupPlanPolicy, plan_groups, plan_progressive_ladder
from bracketry.services.propagation import compile_bracket
from bracketry.services.repository import SqlBracketRepository, unit_of_work
from bracketry.services.skill import compute_skill_map
from bracketry.services.standings import compute_bracket_standings
from bracketry.utils.http_errors import service_errors

router = APIRouter()

SeedInput = Optional[Union[int, Dict[str, Any]]]


# ============================================================================
# Schemas
# ============================================================================

class MatchState(BaseModel):
    id: int
    tournament_id: int
    bracket_id: int
    stage: int
    round: int
    order: int
    label: str
    pair_a_id: Optional[int] = None
    pair_b_id: Optional[int] = None
    seed_a: Optional[Dict[str, Any]] = None
    seed_b: Optional[Dict[str, Any]] = None
    previous_a_id: Optional[int] = None
    previous_b_id: Optional[int] = None
    next_match_id: Optional[int] = None
    next_slot: Optional[str] = None
    pool: Optional[Dict[str, Any]] = None
    status: str
    winner: str = ""
    game_scores: List[Dict[str, int]] = Field(default_factory=list)
    rules: Dict[str, Any] = Field(default_factory=dict)
    finished_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class BracketState(BaseModel):
    id: int
    tournament_id: int
    name: str
    type: str
    stage: int
    order: int
    groups: Optional[List[Dict[str, Any]]] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    rules: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        from_attributes = True


class BracketBuildResponse(BaseModel):
    bracket: BracketState
    matches: List[MatchState]


def match_to_state(m: Match) -> MatchState:
    return MatchState.model_validate(m)


def bracket_to_state(b: Bracket) -> BracketState:
    return BracketState(
        id=b.id,
        tournament_id=b.tournament_id,
        name=b.name,
        type=str(getattr(b.type, "value", b.type)),
        stage=b.stage,
        order=b.order,
        groups=b.groups,
        meta=b.meta or {},
        rules=b.rules or {},
    )


def _build_response(result: BuildResult) -> BracketBuildResponse:
    matches = [m for r in sorted(result.matches_by_round) for m in result.matches_by_round[r]]
    return BracketBuildResponse(
        bracket=bracket_to_state(result.bracket),
        matches=[match_to_state(m) for m in matches],
    )


class GroupPlanRequest(BaseModel):
    n: int
    policy: Optional[Dict[str, Any]] = None


class GroupPlanResponse(BaseModel):
    group_sizes: List[int]
    byes: int


class LadderPlanRequest(BaseModel):
    entrants: int
    max_rounds: int = 10
    target_qualifiers: Optional[int] = None


class KnockoutCreate(BaseModel):
    draw_size: int
    seeds: Optional[List[SeedInput]] = None
    stage: int = 1
    order: int = 1
    name: str = "Knockout"
    third_place: bool = False
    rules: Optional[Dict[str, Any]] = None
    semi_rules: Optional[Dict[str, Any]] = None
    final_rules: Optional[Dict[str, Any]] = None
    third_place_rules: Optional[Dict[str, Any]] = None
    draw_rounds: Optional[int] = None


class RoundElimCreate(BaseModel):
    draw_size: int
    max_rounds: int = 1
    seeds: Optional[List[SeedInput]] = None
    stage: int = 1
    order: int = 2
    name: str = "Play-off"
    rules: Optional[Dict[str, Any]] = None
    round_rules: Optional[List[Dict[str, Any]]] = None
    draw_rounds: Optional[int] = None


class GroupCreate(BaseModel):
    group_count: Optional[int] = None
    group_size: Optional[int] = None
    entrant_ids: Optional[List[int]] = None
    group_sizes: Optional[List[int]] = None
    policy: Optional[Dict[str, Any]] = None
    double_round_robin: bool = False
    stage: int = 1
    order: int = 0
    name: str = "Group Stage"
    rules: Optional[Dict[str, Any]] = None


class GroupMatchesRequest(BaseModel):
    double_round_robin: Optional[bool] = None


class SkillRequest(BaseModel):
    entrant_ids: List[int]
    recent_days: Optional[int] = None


# ============================================================================
# Planner
# ============================================================================

@router.post("/planner/groups", response_model=GroupPlanResponse)
def plan_groups_endpoint(payload: GroupPlanRequest) -> GroupPlanResponse:
    plan = plan_groups(payload.n, GroupPlanPolicy.from_dict(payload.policy))
    return GroupPlanResponse(group_sizes=plan.group_sizes, byes=plan.byes)


@router.post("/planner/ladder")
def plan_ladder_endpoint(payload: LadderPlanRequest) -> Dict[str, Any]:
    return asdict(plan_progressive_ladder(payload.entrants, payload.max_rounds, payload.target_qualifiers))


# ============================================================================
# Builders
# ============================================================================

@router.post(
    "/tournaments/{tournament_id}/brackets/knockout",
    response_model=BracketBuildResponse,
    status_code=201,
)
def create_knockout(
    tournament_id: int,
    payload: KnockoutCreate,
    session: Session = Depends(get_session),
) -> BracketBuildResponse:
    repo = SqlBracketRepository(session)
    with service_errors(), unit_of_work(repo):
        result = build_knockout(repo, tournament_id, **payload.model_dump())
    return _build_response(result)


@router.post(
    "/tournaments/{tournament_id}/brackets/round-elim",
    response_model=BracketBuildResponse,
    status_code=201,
)
def create_round_elim(
    tournament_id: int,
    payload: RoundElimCreate,
    session: Session = Depends(get_session),
) -> BracketBuildResponse:
    repo = SqlBracketRepository(session)
    with service_errors(), unit_of_work(repo):
        result = build_round_elim(repo, tournament_id, **payload.model_dump())
    return _build_response(result)


@router.post(
    "/tournaments/{tournament_id}/brackets/group",
    response_model=BracketBuildResponse,
    status_code=201,
)
def create_group(
    tournament_id: int,
    payload: GroupCreate,
    session: Session = Depends(get_session),
) -> BracketBuildResponse:
    repo = SqlBracketRepository(session)
    data = payload.model_dump()
    policy = data.pop("policy")
    with service_errors(), unit_of_work(repo):
        result = build_group(
            repo,
            tournament_id,
            policy=GroupPlanPolicy.from_dict(policy) if policy else None,
            **data,
        )
    return _build_response(result)


@router.get("/tournaments/{tournament_id}/brackets", response_model=List[BracketState])
def list_brackets(tournament_id: int, session: Session = Depends(get_session)) -> List[BracketState]:
    repo = SqlBracketRepository(session)
    with service_errors():
        repo.get_tournament(tournament_id)
        return [bracket_to_state(b) for b in repo.list_brackets(tournament_id)]


@router.get("/brackets/{bracket_id}", response_model=BracketState)
def get_bracket(bracket_id: int, session: Session = Depends(get_session)) -> BracketState:
    with service_errors():
        return bracket_to_state(SqlBracketRepository(session).get_bracket(bracket_id))


@router.get("/brackets/{bracket_id}/matches", response_model=List[MatchState])
def list_bracket_matches(bracket_id: int, session: Session = Depends(get_session)) -> List[MatchState]:
    """Stable order: round, order."""
    repo = SqlBracketRepository(session)
    with service_errors():
        repo.get_bracket(bracket_id)
        return [match_to_state(m) for m in repo.list_matches(bracket_id)]


@router.post("/brackets/{bracket_id}/group-matches", response_model=List[MatchState], status_code=201)
def create_group_matches(
    bracket_id: int,
    payload: Optional[GroupMatchesRequest] = None,
    session: Session = Depends(get_session),
) -> List[MatchState]:
    repo = SqlBracketRepository(session)
    double = payload.double_round_robin if payload else None
    with service_errors(), unit_of_work(repo):
        by_round = generate_group_matches(repo, bracket_id, double)
    return [match_to_state(m) for r in sorted(by_round) for m in by_round[r]]


@router.post("/brackets/{bracket_id}/compile")
def compile_bracket_endpoint(bracket_id: int, session: Session = Depends(get_session)) -> Dict[str, int]:
    """Resolve every currently resolvable seed and auto-advance byes."""
    repo = SqlBracketRepository(session)
    with service_errors(), unit_of_work(repo):
        result = compile_bracket(repo, bracket_id)
    return result.to_dict()


@router.get("/brackets/{bracket_id}/standings")
def get_bracket_standings(bracket_id: int, session: Session = Depends(get_session)) -> List[Dict[str, Any]]:
    repo = SqlBracketRepository(session)
    with service_errors():
        standings = compute_bracket_standings(repo, bracket_id)
    return [
        {
            "code": s.code,
            "complete": s.complete,
            "total_matches": s.total_matches,
            "finished_matches": s.finished_matches,
            "rows": [{**asdict(r), "diff": r.diff} for r in s.rows],
        }
        for s in standings
    ]


@router.post("/tournaments/{tournament_id}/skill")
def get_skill_map(
    tournament_id: int,
    payload: SkillRequest,
    session: Session = Depends(get_session),
) -> Dict[int, Dict[str, Any]]:
    repo = SqlBracketRepository(session)
    with service_errors():
        repo.get_tournament(tournament_id)
        skills = compute_skill_map(repo, payload.entrant_ids, recent_days=payload.recent_days)
    return {entrant_id: asdict(record) for entrant_id, record in skills.items()}
