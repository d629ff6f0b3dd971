"""
PipeTrak Progress Core API
FastAPI backend over async PostgreSQL: take-off import, milestone updates,
component metadata and drawing listings.
"""
import os
import logging
import time
from contextlib import asynccontextmanager

# Load .env before pipetrak.config reads the environment
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI

from pipetrak.config import LOG_JSON, LOG_LEVEL
from pipetrak.services.logging_config import setup_logging
from pipetrak.services.middleware import RequestTimingMiddleware
from pipetrak.api.import_routes import router as import_router
from pipetrak.api.component_routes import router as component_router

setup_logging(level=LOG_LEVEL, json_output=LOG_JSON)
logger = logging.getLogger("pipetrak-api")

_PROCESS_START = time.monotonic()

if not os.getenv("DATABASE_URL"):
    logger.warning("MISSING env var: DATABASE_URL — running in dev mode")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        from pipetrak.db import init_db
        await init_db()
    except Exception as e:
        logger.warning(f"Table init warning (OK if using Alembic): {e}")
    yield


app = FastAPI(
    title="PipeTrak Progress Core API",
    version="1.0.0",
    description="Component identity, quantity aggregation and milestone progress",
    lifespan=lifespan,
)

app.add_middleware(RequestTimingMiddleware)

app.include_router(import_router)
app.include_router(component_router)


@app.get("/health")
async def health_check():
    return {
        "status": "active",
        "version": "1.0.0",
        "db_configured": bool(os.getenv("DATABASE_URL")),
        "uptime_s": round(time.monotonic() - _PROCESS_START, 1),
    }
