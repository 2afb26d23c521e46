"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from codegate.api.routes import analyses
from codegate.config import get_settings
from codegate.database import engine, init_db
from codegate.services.docker_runner import DockerRunner

logger = logging.getLogger(__name__)
settings = get_settings()

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    await init_db()
    yield
    # Shutdown
    await engine.dispose()


app = FastAPI(
    title="CodeGate API",
    description="Analysis execution core: health and quality gate evaluation",
    version=VERSION,
    lifespan=lifespan,
    docs_url="/docs" if not settings.is_production else None,
    redoc_url="/redoc" if not settings.is_production else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(analyses.router, prefix="/api/analyses", tags=["Analyses"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


async def check_database() -> None:
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))


async def check_docker() -> None:
    await DockerRunner().check_health()


@app.get("/ready")
async def readiness_check():
    """Readiness of the database and the Docker daemon."""
    checks = {}
    for name, check in (("database", check_database), ("docker", check_docker)):
        try:
            await check()
            checks[name] = "ok"
        except Exception as exc:
            logger.warning("Readiness check %s failed: %s", name, exc)
            checks[name] = "unavailable"

    ready = all(value == "ok" for value in checks.values())
    return JSONResponse(
        status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if ready else "not_ready", "checks": checks},
    )
