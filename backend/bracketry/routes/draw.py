"""
Interactive draw sessions. Every mutating call accepts expected_step; a stale
step is answered with 409 so the client can reload the session.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlmodel import Session

from bracketry.database import get_session
from bracketry.models.draw_session import DrawSession
from bracketry.services.draw_service import (
    advance,
    cancel_draw,
    commit_draw,
    create_draw_session,
    get_draw_session,
    next_candidate,
    pick_next,
    rank_draw_candidates,
)
from bracketry.services.repository import SqlBracketRepository, unit_of_work
from bracketry.utils.http_errors import service_errors

router = APIRouter()


class DrawCreate(BaseModel):
    settings: Optional[Dict[str, Any]] = None
    mode: Optional[str] = None
    entrant_ids: Optional[List[int]] = None


class DrawAdvance(BaseModel):
    entrant_id: int
    expected_step: Optional[int] = None


class DrawPick(BaseModel):
    expected_step: Optional[int] = None


class DrawState(BaseModel):
    id: int
    tournament_id: int
    bracket_id: int
    mode: str
    status: str
    step: int
    board: Dict[str, Any]
    cursor: Dict[str, Any]
    pool: List[int]
    taken: List[int]
    settings: Dict[str, Any]
    planned: Dict[str, Any] = Field(default_factory=dict)
    history: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    committed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DrawNextResponse(BaseModel):
    candidate_id: Optional[int]
    step: int
    ranking: List[Dict[str, Any]] = Field(default_factory=list)


class DrawPickResponse(BaseModel):
    placed_id: int
    session: DrawState


def _to_state(draw: DrawSession) -> DrawState:
    return DrawState.model_validate(draw)


@router.post("/brackets/{bracket_id}/draw", response_model=DrawState, status_code=201)
def start_draw(
    bracket_id: int,
    payload: Optional[DrawCreate] = None,
    session: Session = Depends(get_session),
) -> DrawState:
    payload = payload or DrawCreate()
    repo = SqlBracketRepository(session)
    with service_errors(), unit_of_work(repo):
        draw = create_draw_session(
            repo,
            bracket_id,
            settings=payload.settings,
            mode=payload.mode,
            entrant_ids=payload.entrant_ids,
        )
    return _to_state(draw)


@router.get("/draw/{session_id}", response_model=DrawState)
def read_draw(session_id: int, session: Session = Depends(get_session)) -> DrawState:
    with service_errors():
        return _to_state(get_draw_session(SqlBracketRepository(session), session_id))


@router.get("/draw/{session_id}/next", response_model=DrawNextResponse)
def suggest_next(
    session_id: int,
    explain: bool = False,
    session: Session = Depends(get_session),
) -> DrawNextResponse:
    """Suggested entrant for the slot at the cursor. Does not change the session."""
    repo = SqlBracketRepository(session)
    with service_errors():
        draw = get_draw_session(repo, session_id)
        if explain:
            ranking = rank_draw_candidates(repo, session_id)
            candidate = ranking[0]["id"] if ranking else None
        else:
            ranking = []
            candidate = next_candidate(repo, session_id)
    return DrawNextResponse(candidate_id=candidate, step=draw.step, ranking=ranking)


@router.post("/draw/{session_id}/advance", response_model=DrawState)
def place_entrant(
    session_id: int,
    payload: DrawAdvance,
    session: Session = Depends(get_session),
) -> DrawState:
    repo = SqlBracketRepository(session)
    with service_errors(), unit_of_work(repo):
        draw = advance(repo, session_id, payload.entrant_id, expected_step=payload.expected_step)
    return _to_state(draw)


@router.post("/draw/{session_id}/pick", response_model=DrawPickResponse)
def pick_and_place(
    session_id: int,
    payload: Optional[DrawPick] = None,
    session: Session = Depends(get_session),
) -> DrawPickResponse:
    repo = SqlBracketRepository(session)
    expected = payload.expected_step if payload else None
    with service_errors(), unit_of_work(repo):
        draw, placed = pick_next(repo, session_id, expected_step=expected)
    return DrawPickResponse(placed_id=placed, session=_to_state(draw))


@router.post("/draw/{session_id}/commit", response_model=DrawState)
def commit(session_id: int, session: Session = Depends(get_session)) -> DrawState:
    """Write the board into the bracket. All or nothing."""
    repo = SqlBracketRepository(session)
    with service_errors(), unit_of_work(repo):
        draw = commit_draw(repo, session_id)
    return _to_state(draw)


@router.post("/draw/{session_id}/cancel", response_model=DrawState)
def cancel(session_id: int, session: Session = Depends(get_session)) -> DrawState:
    repo = SqlBracketRepository(session)
    with service_errors(), unit_of_work(repo):
        draw = cancel_draw(repo, session_id)
    return _to_state(draw)
