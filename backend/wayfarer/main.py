from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging
import os

from wayfarer.api import trips, system, health
from wayfarer.config import get_settings
from wayfarer.context import build_context
from wayfarer.database import engine, Base
from wayfarer.models import Trip, TripStatusHistory

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


def _ensure_sqlite_dir(url: str) -> None:
    path = url.replace("sqlite:///", "", 1)
    directory = os.path.dirname(path)
    if path != ":memory:" and directory:
        os.makedirs(directory, exist_ok=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🚀 Starting Wayfarer")

    if settings.database_url.startswith("sqlite"):
        logger.info("SQLite detected - creating tables if needed")
        _ensure_sqlite_dir(settings.database_url)
        Base.metadata.create_all(bind=engine)

    context = build_context(settings)
    app.state.context = context

    try:
        context.start()
    except Exception as e:
        logger.error(f"❌ Startup failed: {e}")

    yield

    logger.info("🛑 Shutting down Wayfarer")
    try:
        context.shutdown()
        logger.info("✅ Background jobs stopped")
    except Exception as e:
        logger.error(f"❌ Shutdown error: {e}")


app = FastAPI(
    title="Wayfarer",
    description="Trip lifecycle status engine with dependency circuit breakers",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)

app.include_router(trips.router, prefix="/trips", tags=["trips"])
app.include_router(system.router, tags=["system"])
app.include_router(health.router, tags=["health"])


@app.get("/ping")
async def ping():
    """Simple ping endpoint for health checks."""
    return {"status": "ok"}
