from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, field_validator
from sqlmodel import Session, select

from bracketry.database import get_session
from bracketry.models.registration import Registration
from bracketry.models.tournament import Tournament

router = APIRouter()


class TournamentCreate(BaseModel):
    name: str
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError("name is required")
        return v.strip()


class TournamentResponse(BaseModel):
    id: int
    name: str
    notes: Optional[str]
    created_at: datetime

    class Config:
        from_attributes = True


class RegistrationCreate(BaseModel):
    name: str
    rating: Optional[float] = None
    seed: Optional[int] = None
    paid: bool = True

    @field_validator("seed")
    @classmethod
    def validate_seed(cls, v):
        if v is not None and v < 1:
            raise ValueError("seed must be >= 1")
        return v


class RegistrationResponse(BaseModel):
    id: int
    tournament_id: int
    name: str
    rating: Optional[float]
    seed: Optional[int]
    paid: bool

    class Config:
        from_attributes = True


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    return session.exec(select(Tournament).order_by(Tournament.id)).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    tournament = Tournament(**tournament_data.model_dump())
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.post(
    "/tournaments/{tournament_id}/registrations",
    response_model=List[RegistrationResponse],
    status_code=201,
)
def create_registrations(
    tournament_id: int,
    payload: List[RegistrationCreate],
    session: Session = Depends(get_session),
):
    """Register entrants in bulk. Seeds must be unique within the tournament."""
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")

    seeds = [r.seed for r in payload if r.seed is not None]
    taken = set(
        session.exec(
            select(Registration.seed).where(
                Registration.tournament_id == tournament_id,
                Registration.seed.is_not(None),
            )
        ).all()
    )
    if len(seeds) != len(set(seeds)) or taken.intersection(seeds):
        raise HTTPException(status_code=409, detail="Duplicate seed within tournament")

    created = [Registration(tournament_id=tournament_id, **r.model_dump()) for r in payload]
    for reg in created:
        session.add(reg)
    session.commit()
    for reg in created:
        session.refresh(reg)
    return created


@router.get("/tournaments/{tournament_id}/registrations", response_model=List[RegistrationResponse])
def list_registrations(tournament_id: int, session: Session = Depends(get_session)):
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return session.exec(
        select(Registration).where(Registration.tournament_id == tournament_id).order_by(Registration.id)
    ).all()
