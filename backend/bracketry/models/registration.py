from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from bracketry.models.tournament import Tournament


class Registration(SQLModel, table=True):
    """An entrant (single player or pair) registered for a tournament."""

    __table_args__ = (
        # Enforce unique seeds within a tournament (where seed is not null)
        SAUniqueConstraint("tournament_id", "seed", name="uq_tournament_seed"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    name: str
    rating: Optional[float] = Field(default=None)  # Base rating on the RATING_SCALE (0..10 by default)
    seed: Optional[int] = Field(default=None)  # 1-based explicit seed (1=highest)
    paid: bool = Field(default=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="registrations")
