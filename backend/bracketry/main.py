import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bracketry import config
from bracketry.database import init_db
from bracketry.routes import brackets, draw, runtime, tournaments

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "Bracketry API"

app = FastAPI(title=APP_NAME)

_cors_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_cors_origins.extend(config.CORS_ORIGINS)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tournaments.router, prefix="/api", tags=["tournaments"])
app.include_router(brackets.router, prefix="/api", tags=["brackets"])
app.include_router(draw.router, prefix="/api", tags=["draw"])
# Runtime (match status + results; no topology mutation)
app.include_router(runtime.router, prefix="/api", tags=["runtime"])


@app.on_event("startup")
def on_startup():
    init_db()  # Use centralized init_db() which imports models and creates tables
    route_count = sum(1 for r in app.routes if getattr(r, "path", None))
    logger.info("%s started with %d routes", APP_NAME, route_count)


@app.get("/api/health")
def health_check():
    """Diagnostic endpoint to verify which code is running"""
    return {"app_name": APP_NAME, "status": "healthy"}


# Only for debugging
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("bracketry.main:app", host="127.0.0.1", port=8000, reload=True)
