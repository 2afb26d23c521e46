"""Tests for the Celery analysis task."""

import uuid
from unittest.mock import AsyncMock, patch

import pytest
from celery.exceptions import Retry


@pytest.fixture
def payload():
    return {"analysisId": str(uuid.uuid4()), "projectKey": "proj", "commitSha": "abc123"}


class TestRunAnalysisTask:
    def test_success_returns_summary(self, payload):
        from codegate.models.enums import GateStatus
        from codegate.services.orchestrator import JobOutcome, JobState
        from codegate.tasks.run_analysis import run_analysis

        outcome = JobOutcome(state=JobState.SUCCEEDED, attempt=1, gate_status=GateStatus.PASS)
        with patch("codegate.tasks.run_analysis.run_analysis_async", new=AsyncMock(return_value=outcome)):
            result = run_analysis(payload)

        assert result == {
            "analysisId": payload["analysisId"],
            "state": "succeeded",
            "gateStatus": "PASS",
            "attempt": 1,
        }

    def test_retrying_outcome_schedules_retry(self, payload):
        """The orchestrator's backoff becomes the retry countdown in seconds."""
        from codegate.services.orchestrator import JobOutcome, JobState
        from codegate.tasks.run_analysis import run_analysis

        error = RuntimeError("analyzer failed")
        outcome = JobOutcome(state=JobState.RETRYING, attempt=1, error=error, backoff_ms=5000)
        with patch("codegate.tasks.run_analysis.run_analysis_async", new=AsyncMock(return_value=outcome)), \
                patch.object(run_analysis, "retry", side_effect=Retry()) as retry:
            with pytest.raises(Retry):
                run_analysis(payload)

        retry.assert_called_once_with(exc=error, countdown=5.0)

    def test_failed_outcome_raises(self, payload):
        from codegate.services.orchestrator import JobOutcome, JobState
        from codegate.tasks.run_analysis import run_analysis

        outcome = JobOutcome(state=JobState.FAILED, attempt=2, error=RuntimeError("boom"))
        with patch("codegate.tasks.run_analysis.run_analysis_async", new=AsyncMock(return_value=outcome)):
            with pytest.raises(RuntimeError, match="boom"):
                run_analysis(payload)

    def test_attempt_counter_passed_through(self, payload):
        from codegate.services.orchestrator import JobOutcome, JobState
        from codegate.tasks.run_analysis import run_analysis

        mock_run = AsyncMock(return_value=JobOutcome(state=JobState.SUCCEEDED, attempt=2))
        with patch("codegate.tasks.run_analysis.run_analysis_async", new=mock_run):
            run_analysis.apply(args=[payload], retries=1).get()

        job, attempts_made, max_attempts = mock_run.call_args.args
        assert job.analysis_id == payload["analysisId"]
        assert attempts_made == 1

    def test_invalid_payload_rejected(self):
        from pydantic import ValidationError

        from codegate.tasks.run_analysis import run_analysis

        with pytest.raises(ValidationError):
            run_analysis({"projectKey": "proj"})


class TestEnqueue:
    def test_enqueue_uses_worker_queue(self, payload):
        from codegate.schemas.job import AnalysisJobPayload
        from codegate.tasks import run_analysis as module

        job = AnalysisJobPayload.model_validate(payload)
        with patch.object(module.run_analysis, "apply_async") as apply_async:
            apply_async.return_value.id = "task-1"
            task_id = module.enqueue_analysis(job)

        assert task_id == "task-1"
        kwargs = apply_async.call_args.kwargs
        assert kwargs["queue"] == module.settings.worker_queue
        assert kwargs["args"][0]["analysisId"] == payload["analysisId"]
        assert kwargs["args"][0]["commitSha"] == "abc123"
