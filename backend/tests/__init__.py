# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from bracketry.models.bracket import Bracket  # noqa: F401
from bracketry.models.draw_session import DrawSession  # noqa: F401
from bracketry.models.match import Match  # noqa: F401
from bracketry.models.registration import Registration  # noqa: F401
from bracketry.models.tournament import Tournament  # noqa: F401
