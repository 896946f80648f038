from datetime import datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from bracketry.models.bracket import Bracket
    from bracketry.models.registration import Registration


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Relationships
    registrations: List["Registration"] = Relationship(back_populates="tournament")
    brackets: List["Bracket"] = Relationship(back_populates="tournament")
