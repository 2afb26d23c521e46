"""Analysis job task."""

import asyncio
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from codegate.celery_app import celery_app
from codegate.config import get_settings
from codegate.schemas.job import AnalysisJobPayload
from codegate.services.orchestrator import AnalysisOrchestrator, JobOutcome, JobState

logger = logging.getLogger(__name__)
settings = get_settings()


async def run_analysis_async(
    payload: AnalysisJobPayload, attempts_made: int, max_attempts: int
) -> JobOutcome:
    # asyncio.run() gives every task its own loop, so the engine is per task
    engine = create_async_engine(settings.database_url, pool_size=5, pool_pre_ping=True)
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    try:
        async with session_factory() as db:
            orchestrator = AnalysisOrchestrator(db)
            try:
                return await orchestrator.handle_job(payload, attempts_made, max_attempts)
            finally:
                await orchestrator.publisher.aclose()
    finally:
        await engine.dispose()


def enqueue_analysis(payload: AnalysisJobPayload) -> str:
    """Queue a job. Used by the enqueueing side and by tests."""
    result = run_analysis.apply_async(
        args=[payload.model_dump(by_alias=True, mode="json")],
        queue=settings.worker_queue,
    )
    return result.id


@celery_app.task(bind=True, name="analysis", max_retries=None)
def run_analysis(self, payload: dict[str, Any]) -> dict[str, Any]:
    """Celery task entrypoint for analysis jobs."""
    job = AnalysisJobPayload.model_validate(payload)
    max_attempts = settings.worker_job_attempts
    attempts_made = self.request.retries

    logger.info(
        "Analysis %s: attempt %d/%d started", job.analysis_id, attempts_made + 1, max_attempts
    )
    outcome = asyncio.run(run_analysis_async(job, attempts_made, max_attempts))

    if outcome.state == JobState.RETRYING:
        raise self.retry(exc=outcome.error, countdown=(outcome.backoff_ms or 0) / 1000)
    if outcome.state == JobState.FAILED:
        raise outcome.error

    return {
        "analysisId": job.analysis_id,
        "state": outcome.state.value,
        "gateStatus": outcome.gate_status.value if outcome.gate_status else None,
        "attempt": outcome.attempt,
    }
