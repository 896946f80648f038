from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from sqlalchemy import JSON, String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from bracketry.models.match import Match
    from bracketry.models.tournament import Tournament


class BracketType(str, Enum):
    knockout = "knockout"
    round_elim = "roundElim"
    group = "group"


class Bracket(SQLModel, table=True):
    # One bracket per stage: (stage, round, order) must address a single match
    __table_args__ = (SAUniqueConstraint("tournament_id", "stage", name="uq_tournament_stage"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    type: BracketType = Field(sa_column=Column(String, nullable=False))  # immutable after creation
    stage: int = Field(default=1)
    order: int = Field(default=0)

    # Group brackets: [{"name": "A", "expected_size": 4, "entrant_ids": [..]}]
    groups: Optional[List[Dict[str, Any]]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    # {"draw_size", "max_rounds", "expected_first_round_matches", "round_rules"}
    meta: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    rules: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="brackets")
    matches: List["Match"] = Relationship(back_populates="bracket")

    @property
    def max_rounds(self) -> int:
        return int((self.meta or {}).get("max_rounds") or 0)

    def group_by_code(self, code: str) -> Optional[Dict[str, Any]]:
        token = (code or "").strip().upper()
        for idx, group in enumerate(self.groups or []):
            if (group.get("name") or "").upper() == token or str(idx + 1) == token:
                return group
        return None
