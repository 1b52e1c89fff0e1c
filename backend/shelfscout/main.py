from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from functools import partial
import logging
import os
from datetime import datetime

from shelfscout.core.config import settings
from shelfscout.database import SessionLocal, init_db
from shelfscout.routers import actions, recommendations
from shelfscout.scheduler import RecommendationScheduler
from shelfscout.services.action_tracker import ActivitySessions
from shelfscout.services.collection_store import load_collection
from shelfscout.services.metadata_client import OmdbMetadataClient
from shelfscout.services.recommendation_cache import RecommendationCache, build_cache_store
from shelfscout.services.recommendation_engine import RecommendationEngine
from shelfscout.services.recommendation_service import RecommendationService

# ----------------------------
# Logging
# ----------------------------
logger = logging.getLogger("shelfscout")
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

SERVER_BOOT_ID = f"shelfscout-backend::{os.getpid()}::{datetime.utcnow().isoformat()}"

app = FastAPI(debug=settings.DEBUG)

# ----------------------------
# CORS
# ----------------------------
cors_origins = settings.cors_origins_list
logger.info("[CORS] allow_origins=%s", cors_origins)

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("[UNHANDLED] %s %s", request.method, request.url.path)

    response = JSONResponse(
        status_code=500,
        content={"detail": "Internal Server Error"}
    )

    # Error responses bypass the CORS middleware
    origin = request.headers.get("origin")
    if origin and origin in cors_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"

    return response


# ----------------------------
# Routers
# ----------------------------
app.include_router(recommendations.router, prefix="/api")
app.include_router(actions.router, prefix="/api")


def build_components(target: FastAPI) -> None:
    """Wire the long-lived recommendation components into app.state."""
    client = OmdbMetadataClient()
    engine = RecommendationEngine(metadata_client=client)
    cache = RecommendationCache(build_cache_store(session_factory=SessionLocal))
    service = RecommendationService(engine, cache, sessions=ActivitySessions())
    scheduler = RecommendationScheduler(
        service,
        collection_loader=partial(load_collection, session_factory=SessionLocal),
        session_factory=SessionLocal,
    )
    target.state.metadata_client = client
    target.state.recommendation_service = service
    target.state.scheduler = scheduler


@app.on_event("startup")
async def on_startup() -> None:
    logger.info("[BOOT] %s", SERVER_BOOT_ID)
    logger.info("[BOOT] database=%s cache_backend=%s", settings.get_masked_database_url(), settings.CACHE_BACKEND)
    init_db()
    build_components(app)
    app.state.scheduler.start()


@app.on_event("shutdown")
async def on_shutdown() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        scheduler.shutdown()


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/api/health")
def api_health_check():
    return {"status": "ok"}
