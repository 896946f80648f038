"""
Runtime configuration read from the environment (.env supported).

All tunables live here so services never call os.getenv directly.
"""
import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return int(raw)


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bracketry.db")
SQL_ECHO = _env_bool("SQL_ECHO", "false")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]

# Skill estimator
SKILL_RECENT_DAYS = _env_int("SKILL_RECENT_DAYS", 120)
SKILL_VOLUME_SATURATION = _env_int("SKILL_VOLUME_SATURATION", 20)
RATING_SCALE = float(os.getenv("RATING_SCALE", "10"))

# Seed resolution: groupRank waits for a finished group unless disabled
GROUP_RANK_REQUIRE_COMPLETE = _env_bool("GROUP_RANK_REQUIRE_COMPLETE", "true")
