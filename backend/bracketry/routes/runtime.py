"""
Runtime: match status + results. No topology mutation.
When a match is finished, propagation fills the slots that depend on it.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlmodel import Session

from bracketry.database import get_session
from bracketry.models.match import STATUS_FINISHED, STATUS_LIVE, STATUS_SCHEDULED
from bracketry.routes.brackets import MatchState, match_to_state
from bracketry.services.propagation import on_match_finished, record_result, resolve_tournament
from bracketry.services.repository import SqlBracketRepository, unit_of_work
from bracketry.utils.http_errors import service_errors

router = APIRouter()


class MatchRuntimeUpdate(BaseModel):
    status: Optional[str] = None
    winner: Optional[str] = None
    game_scores: Optional[List[Dict[str, Any]]] = None


class MatchRuntimeUpdateResponse(BaseModel):
    match: MatchState
    updated_slots: int = 0
    conflicts: int = 0


class ResolveTournamentResponse(BaseModel):
    """Response for bulk resolution"""
    matches_processed: int
    updated_slots: int
    conflicts: int
    unresolved_before: int
    unresolved_after: int


def _validate_status_transition(current: str, new: str) -> None:
    if new not in (STATUS_SCHEDULED, STATUS_LIVE, STATUS_FINISHED):
        raise HTTPException(status_code=422, detail=f"Invalid status: {new}")
    if current == STATUS_FINISHED and new != STATUS_FINISHED:
        raise HTTPException(status_code=422, detail="finished is terminal; cannot revert")
    if new == STATUS_SCHEDULED and current != STATUS_SCHEDULED:
        raise HTTPException(status_code=422, detail="Cannot revert to scheduled")


@router.patch(
    "/tournaments/{tournament_id}/runtime/matches/{match_id}",
    response_model=MatchRuntimeUpdateResponse,
)
def update_match_runtime(
    tournament_id: int,
    match_id: int,
    payload: MatchRuntimeUpdate,
    session: Session = Depends(get_session),
) -> MatchRuntimeUpdateResponse:
    """Update match status/scores/winner. Match must belong to tournament.
    Setting status to finished records the result and propagates it."""
    repo = SqlBracketRepository(session)
    with service_errors():
        repo.get_tournament(tournament_id)
        match = repo.get_match(match_id)
    if match.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Match not found")

    current = match.status or STATUS_SCHEDULED
    new_status = payload.status or current
    _validate_status_transition(current, new_status)

    updated_slots = conflicts = 0
    with service_errors(), unit_of_work(repo):
        if new_status == STATUS_FINISHED:
            winner = payload.winner or match.winner
            if not winner:
                raise HTTPException(status_code=422, detail="winner required when setting status to finished")
            scores = payload.game_scores if payload.game_scores is not None else match.game_scores
            result = record_result(repo, match_id, winner, scores)
            updated_slots, conflicts = result.updated_slots, result.conflicts
        else:
            fields: Dict[str, Any] = {"status": new_status}
            if payload.game_scores is not None:
                fields["game_scores"] = [
                    {"a": int(g.get("a") or 0), "b": int(g.get("b") or 0)} for g in payload.game_scores
                ]
            repo.update_match_fields(match_id, fields)

    return MatchRuntimeUpdateResponse(
        match=match_to_state(repo.get_match(match_id)),
        updated_slots=updated_slots,
        conflicts=conflicts,
    )


@router.post(
    "/tournaments/{tournament_id}/runtime/matches/{match_id}/advance",
    response_model=Dict[str, int],
)
def advance_match(
    tournament_id: int,
    match_id: int,
    session: Session = Depends(get_session),
) -> Dict[str, int]:
    """Manually re-run propagation for a finished match (repair/testing)."""
    repo = SqlBracketRepository(session)
    with service_errors():
        repo.get_tournament(tournament_id)
        match = repo.get_match(match_id)
    if match.tournament_id != tournament_id:
        raise HTTPException(status_code=404, detail="Match not found")
    if match.status != STATUS_FINISHED:
        raise HTTPException(status_code=422, detail="Match must be finished to propagate")

    with service_errors(), unit_of_work(repo):
        result = on_match_finished(repo, match_id)
    return result.to_dict()


@router.get(
    "/tournaments/{tournament_id}/runtime/matches",
    response_model=List[MatchState],
)
def get_runtime_matches(tournament_id: int, session: Session = Depends(get_session)) -> List[MatchState]:
    """All matches of a tournament. Stable order: match id."""
    repo = SqlBracketRepository(session)
    with service_errors():
        repo.get_tournament(tournament_id)
        return [match_to_state(m) for m in repo.list_tournament_matches(tournament_id)]


@router.post(
    "/tournaments/{tournament_id}/runtime/resolve",
    response_model=ResolveTournamentResponse,
)
def resolve_tournament_endpoint(
    tournament_id: int,
    session: Session = Depends(get_session),
) -> ResolveTournamentResponse:
    """
    Bulk repair: replay propagation for every finished match, then refresh
    every groupRank reference. Useful after:
    - Batch importing match results
    - Recovering from interrupted propagation

    Guarantees:
    - Idempotent (safe to call multiple times)
    - Deterministic ordering (processes by match id)
    """
    repo = SqlBracketRepository(session)
    with service_errors(), unit_of_work(repo):
        result = resolve_tournament(repo, tournament_id)
    return ResolveTournamentResponse(**result)
