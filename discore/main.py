import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text

from discore.db.base import SessionLocal, get_db
from discore.core.config import settings
from discore.routers import ingest as ingest_router
from discore.routers import guilds as guilds_router
from discore.routers import platform as platform_router
from discore.routers import users as users_router
from discore.core.errors import (
    DiscoreException,
    discore_exception_handler,
    validation_exception_handler,
    unhandled_exception_handler,
)
from discore.services.gateway import SqlPersistenceGateway
from discore.services.model_client import GeminiModelClient
from discore.services.pipeline import build_pipeline
from discore.services.scheduler import AnalysisScheduler
from discore.services.user_analysis import UserAnalyzer

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("discore")


@asynccontextmanager
async def lifespan(app: FastAPI):
    gateway = SqlPersistenceGateway(SessionLocal)
    model = GeminiModelClient.from_settings(settings)
    pipeline = build_pipeline(settings, gateway, model)
    scheduler = AnalysisScheduler.from_settings(settings, pipeline, gateway)
    app.state.scheduler = scheduler
    app.state.user_analyzer = UserAnalyzer(
        model,
        temperature=settings.MODEL_TEMPERATURE,
        max_tokens=settings.MODEL_MAX_OUTPUT_TOKENS,
    )

    if settings.SCHEDULER_ENABLED:
        if not settings.GEMINI_API_KEY:
            logger.warning("GEMINI_API_KEY is empty; every message will fall back to neutral scores")
        scheduler.start()
    else:
        logger.info("Hourly scheduler disabled")

    yield

    await scheduler.stop()


app = FastAPI(
    title="Discore API",
    description=(
        "**Discord community health analysis**\n\n"
        "Ingests guild messages from the bot, scores them with a generative model "
        "and serves per-guild health, leaderboards, user readings and platform totals.\n\n"
        "All error responses follow the `{code, message, details}` envelope."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception handlers (most specific first) ---
app.add_exception_handler(DiscoreException, discore_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Routers ---
app.include_router(ingest_router.router)
app.include_router(guilds_router.router)
app.include_router(platform_router.router)
app.include_router(users_router.router)


@app.get("/health", tags=["health"], summary="Health check")
def health(db: Session = Depends(get_db)):
    """
    Returns `{"status": "ok", "db": "ok"}` when both the API and the database
    are reachable. Returns HTTP 503 if the DB is down.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception:
        logger.exception("Database health check failed")
        db_status = "unreachable"

    if db_status != "ok":
        return JSONResponse(
            status_code=503,
            content={"status": "error", "db": db_status},
        )
    return {"status": "ok", "db": "ok", "env": settings.APP_ENV}
