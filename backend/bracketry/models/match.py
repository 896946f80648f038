from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from bracketry.models.bracket import Bracket

STATUS_SCHEDULED = "scheduled"
STATUS_LIVE = "live"
STATUS_FINISHED = "finished"

SIDE_A = "A"
SIDE_B = "B"


class Match(SQLModel, table=True):
    __table_args__ = (SAUniqueConstraint("bracket_id", "round", "order", name="uq_match_bracket_position"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    bracket_id: int = Field(foreign_key="bracket.id", index=True)
    stage: int = Field(default=1, index=True)  # Copied from bracket.stage for reference lookups
    round: int
    order: int  # 0-based position within the round
    label: str = Field(default="")

    # Resolved entrants (authoritative once set)
    pair_a_id: Optional[int] = Field(default=None, foreign_key="registration.id")
    pair_b_id: Optional[int] = Field(default=None, foreign_key="registration.id")

    # Typed seed references ({"type", "ref", "label"}) and their lookup keys
    seed_a: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    seed_b: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    seed_a_key: Optional[str] = Field(default=None, index=True)
    seed_b_key: Optional[str] = Field(default=None, index=True)

    # Tree edges (knockout)
    previous_a_id: Optional[int] = Field(default=None, foreign_key="match.id")
    previous_b_id: Optional[int] = Field(default=None, foreign_key="match.id")
    next_match_id: Optional[int] = Field(default=None, foreign_key="match.id")
    next_slot: Optional[str] = Field(default=None)  # "A" | "B"

    # Group fixtures: {"id": <group index>, "name": "A"}
    pool: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))

    status: str = Field(default=STATUS_SCHEDULED)  # scheduled | live | finished
    winner: str = Field(default="")  # "A" | "B" | ""
    game_scores: List[Dict[str, int]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    rules: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    finished_at: Optional[datetime] = Field(default=None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    bracket: "Bracket" = Relationship(back_populates="matches")

    def pair(self, side: str) -> Optional[int]:
        return self.pair_a_id if side == SIDE_A else self.pair_b_id

    def seed(self, side: str) -> Optional[Dict[str, Any]]:
        return self.seed_a if side == SIDE_A else self.seed_b

    def previous(self, side: str) -> Optional[int]:
        return self.previous_a_id if side == SIDE_A else self.previous_b_id

    @property
    def winner_id(self) -> Optional[int]:
        if self.winner in (SIDE_A, SIDE_B):
            return self.pair(self.winner)
        return None

    @property
    def loser_id(self) -> Optional[int]:
        if self.winner == SIDE_A:
            return self.pair_b_id
        if self.winner == SIDE_B:
            return self.pair_a_id
        return None
