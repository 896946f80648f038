"""
Storage boundary for the bracket services.

The services only ever talk to a BracketRepository. SqlBracketRepository is the
SQLModel-backed adapter used by the HTTP layer and the tests.

Repository methods and services flush but never commit. Callers (routes,
tests) wrap each exposed operation in `unit_of_work`, so one operation is one
transaction.
"""
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy import func, or_, update
from sqlmodel import Session, select

from bracketry.models.bracket import Bracket
from bracketry.models.draw_session import DRAW_ACTIVE, DrawSession
from bracketry.models.match import SIDE_A, STATUS_FINISHED, Match
from bracketry.models.registration import Registration
from bracketry.models.tournament import Tournament
from bracketry.services.seed_refs import group_rank_key_prefix, stage_match_key


class NotFoundError(LookupError):
    """A tournament, bracket, match or draw session does not exist."""


class BracketRepository(ABC):
    # Entrants
    @abstractmethod
    def get_tournament(self, tournament_id: int) -> Tournament: ...

    @abstractmethod
    def get_registrations(self, ids: Iterable[int]) -> List[Registration]: ...

    @abstractmethod
    def get_match_history(self, ids: Iterable[int], window_days: Optional[int] = None) -> List[Match]: ...

    @abstractmethod
    def get_rating(self, entrant_id: int) -> Optional[float]: ...

    @abstractmethod
    def get_paid_entrant_count(self, tournament_id: int) -> int: ...

    @abstractmethod
    def list_paid_registration_ids(self, tournament_id: int) -> List[int]: ...

    # Brackets
    @abstractmethod
    def create_bracket(self, bracket: Bracket) -> Bracket: ...

    @abstractmethod
    def save_bracket(self, bracket: Bracket) -> Bracket: ...

    @abstractmethod
    def get_bracket(self, bracket_id: int) -> Bracket: ...

    @abstractmethod
    def find_bracket_by_stage(self, tournament_id: int, stage: int) -> Optional[Bracket]: ...

    @abstractmethod
    def list_brackets(self, tournament_id: int) -> List[Bracket]: ...

    # Matches
    @abstractmethod
    def insert_matches(self, matches: List[Match]) -> List[Match]: ...

    @abstractmethod
    def update_match_fields(self, match_id: int, fields: Dict[str, Any]) -> Match: ...

    @abstractmethod
    def fill_match_slot(self, match_id: int, side: str, entrant_id: int) -> bool: ...

    @abstractmethod
    def get_match(self, match_id: int) -> Match: ...

    @abstractmethod
    def list_matches(self, bracket_id: int) -> List[Match]: ...

    @abstractmethod
    def list_tournament_matches(self, tournament_id: int) -> List[Match]: ...

    @abstractmethod
    def find_match_at(self, tournament_id: int, stage: int, round_: int, order: int) -> Optional[Match]: ...

    @abstractmethod
    def find_matches_referencing(
        self,
        tournament_id: int,
        stage_index: int,
        round_: Optional[int] = None,
        order: Optional[int] = None,
        group_code: Optional[str] = None,
    ) -> List[Match]: ...

    # Draw sessions
    @abstractmethod
    def add_draw_session(self, draw: DrawSession) -> DrawSession: ...

    @abstractmethod
    def get_draw_session(self, session_id: int) -> DrawSession: ...

    @abstractmethod
    def save_draw_session(self, draw: DrawSession) -> DrawSession: ...

    @abstractmethod
    def find_active_draw_session(self, bracket_id: int) -> Optional[DrawSession]: ...

    # Transactions
    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...


@contextmanager
def unit_of_work(repo: BracketRepository) -> Iterator[BracketRepository]:
    """Commit on success, roll back and re-raise on any failure."""
    try:
        yield repo
        repo.commit()
    except Exception:
        repo.rollback()
        raise


class SqlBracketRepository(BracketRepository):
    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Entrants
    # ------------------------------------------------------------------

    def get_tournament(self, tournament_id: int) -> Tournament:
        tournament = self.session.get(Tournament, tournament_id)
        if not tournament:
            raise NotFoundError(f"Tournament {tournament_id} not found")
        return tournament

    def get_registrations(self, ids: Iterable[int]) -> List[Registration]:
        id_list = sorted({int(i) for i in ids if i is not None})
        if not id_list:
            return []
        return list(
            self.session.exec(
                select(Registration).where(Registration.id.in_(id_list)).order_by(Registration.id)
            ).all()
        )

    def get_match_history(self, ids: Iterable[int], window_days: Optional[int] = None) -> List[Match]:
        """Finished matches involving any of the given entrants, oldest first."""
        id_list = sorted({int(i) for i in ids if i is not None})
        if not id_list:
            return []
        query = select(Match).where(
            Match.status == STATUS_FINISHED,
            or_(Match.pair_a_id.in_(id_list), Match.pair_b_id.in_(id_list)),
        )
        if window_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
            query = query.where(Match.finished_at >= cutoff)
        return list(self.session.exec(query.order_by(Match.finished_at, Match.id)).all())

    def get_rating(self, entrant_id: int) -> Optional[float]:
        registration = self.session.get(Registration, entrant_id)
        return registration.rating if registration else None

    def get_paid_entrant_count(self, tournament_id: int) -> int:
        return int(
            self.session.exec(
                select(func.count(Registration.id)).where(
                    Registration.tournament_id == tournament_id,
                    Registration.paid == True,  # noqa: E712
                )
            ).one()
        )

    def list_paid_registration_ids(self, tournament_id: int) -> List[int]:
        return list(
            self.session.exec(
                select(Registration.id)
                .where(
                    Registration.tournament_id == tournament_id,
                    Registration.paid == True,  # noqa: E712
                )
                .order_by(Registration.id)
            ).all()
        )

    # ------------------------------------------------------------------
    # Brackets
    # ------------------------------------------------------------------

    def create_bracket(self, bracket: Bracket) -> Bracket:
        self.session.add(bracket)
        self.session.flush()
        self.session.refresh(bracket)
        return bracket

    def save_bracket(self, bracket: Bracket) -> Bracket:
        self.session.add(bracket)
        self.session.flush()
        return bracket

    def get_bracket(self, bracket_id: int) -> Bracket:
        bracket = self.session.get(Bracket, bracket_id)
        if not bracket:
            raise NotFoundError(f"Bracket {bracket_id} not found")
        return bracket

    def find_bracket_by_stage(self, tournament_id: int, stage: int) -> Optional[Bracket]:
        return self.session.exec(
            select(Bracket).where(Bracket.tournament_id == tournament_id, Bracket.stage == stage)
        ).first()

    def list_brackets(self, tournament_id: int) -> List[Bracket]:
        return list(
            self.session.exec(
                select(Bracket).where(Bracket.tournament_id == tournament_id).order_by(Bracket.stage)
            ).all()
        )

    # ------------------------------------------------------------------
    # Matches
    # ------------------------------------------------------------------

    def insert_matches(self, matches: List[Match]) -> List[Match]:
        for m in matches:
            self.session.add(m)
        self.session.flush()
        return matches

    def update_match_fields(self, match_id: int, fields: Dict[str, Any]) -> Match:
        match = self.get_match(match_id)
        for name, value in fields.items():
            setattr(match, name, value)
        self.session.add(match)
        self.session.flush()
        return match

    def fill_match_slot(self, match_id: int, side: str, entrant_id: int) -> bool:
        """Set pair_a_id/pair_b_id only while it is still empty. Returns True when written."""
        column = Match.pair_a_id if side == SIDE_A else Match.pair_b_id
        self.session.flush()
        result = self.session.execute(
            update(Match)
            .where(Match.id == match_id, column.is_(None))
            .values({column.key: entrant_id})
            .execution_options(synchronize_session=False)
        )
        self.session.refresh(self.get_match(match_id))
        return result.rowcount == 1

    def get_match(self, match_id: int) -> Match:
        match = self.session.get(Match, match_id)
        if not match:
            raise NotFoundError(f"Match {match_id} not found")
        return match

    def list_matches(self, bracket_id: int) -> List[Match]:
        return list(
            self.session.exec(
                select(Match).where(Match.bracket_id == bracket_id).order_by(Match.round, Match.order)
            ).all()
        )

    def list_tournament_matches(self, tournament_id: int) -> List[Match]:
        return list(
            self.session.exec(
                select(Match).where(Match.tournament_id == tournament_id).order_by(Match.id)
            ).all()
        )

    def find_match_at(self, tournament_id: int, stage: int, round_: int, order: int) -> Optional[Match]:
        return self.session.exec(
            select(Match).where(
                Match.tournament_id == tournament_id,
                Match.stage == stage,
                Match.round == round_,
                Match.order == order,
            )
        ).first()

    def find_matches_referencing(
        self,
        tournament_id: int,
        stage_index: int,
        round_: Optional[int] = None,
        order: Optional[int] = None,
        group_code: Optional[str] = None,
    ) -> List[Match]:
        """Matches whose seed_a/seed_b points at a match (round/order) or a group's ranks."""
        if group_code is not None:
            prefix = group_rank_key_prefix(stage_index, group_code)
            condition = or_(Match.seed_a_key.startswith(prefix), Match.seed_b_key.startswith(prefix))
        else:
            if round_ is None or order is None:
                raise ValueError("round_ and order are required for match references")
            keys = [stage_match_key(p, stage_index, round_, order) for p in ("W", "L")]
            condition = or_(Match.seed_a_key.in_(keys), Match.seed_b_key.in_(keys))

        return list(
            self.session.exec(
                select(Match).where(Match.tournament_id == tournament_id, condition).order_by(Match.id)
            ).all()
        )

    # ------------------------------------------------------------------
    # Draw sessions
    # ------------------------------------------------------------------

    def add_draw_session(self, draw: DrawSession) -> DrawSession:
        self.session.add(draw)
        self.session.flush()
        self.session.refresh(draw)
        return draw

    def get_draw_session(self, session_id: int) -> DrawSession:
        draw = self.session.get(DrawSession, session_id)
        if not draw:
            raise NotFoundError(f"Draw session {session_id} not found")
        return draw

    def save_draw_session(self, draw: DrawSession) -> DrawSession:
        self.session.add(draw)
        self.session.flush()
        return draw

    def find_active_draw_session(self, bracket_id: int) -> Optional[DrawSession]:
        return self.session.exec(
            select(DrawSession).where(DrawSession.bracket_id == bracket_id, DrawSession.status == DRAW_ACTIVE)
        ).first()

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()
