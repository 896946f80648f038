from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

DRAW_ACTIVE = "active"
DRAW_COMMITTED = "committed"
DRAW_CANCELED = "canceled"

DRAW_MODE_GROUP = "group"
DRAW_MODE_KNOCKOUT = "knockout"


class DrawSession(SQLModel, table=True):
    """Single-writer draw in progress for one bracket.

    board:
      group    -> {"groups": [{"key": "A", "size": 4, "slots": [id | None | "BYE", ...]}]}
      knockout -> {"pairs": [{"index": 0, "a": id | None | "BYE", "b": ...}]}
    cursor:
      group    -> {"g_index": 0, "slot_index": 0}
      knockout -> {"pair_index": 0, "side": "A"}
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    bracket_id: int = Field(foreign_key="bracket.id", index=True)
    mode: str  # "group" | "knockout"
    status: str = Field(default=DRAW_ACTIVE, index=True)
    step: int = Field(default=0)  # Incremented on every placement

    board: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    cursor: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    pool: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    taken: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    history: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    # {"group_sizes": [...], "byes": n} or {"pairs": n, "byes": n}
    planned: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    committed_at: Optional[datetime] = Field(default=None)
    canceled_at: Optional[datetime] = Field(default=None)
