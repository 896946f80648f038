from bracketry.models.bracket import Bracket, BracketType
from bracketry.models.draw_session import DrawSession
from bracketry.models.match import Match
from bracketry.models.registration import Registration
from bracketry.models.tournament import Tournament

__all__ = [
    "Tournament",
    "Registration",
    "Bracket",
    "BracketType",
    "Match",
    "DrawSession",
]
