"""Analysis job orchestration.

One job drives one analysis through baseline resolution, sequential analyzer
runs, metric aggregation, quality gate evaluation and technical debt. Failures
are reported as a typed outcome so the queue layer can decide on retries with
plain control flow.
"""

import asyncio
import logging
import os
import shutil
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from codegate.config import get_settings
from codegate.exceptions import AnalysisNotFoundError, AnalyzerRunError
from codegate.models.analysis import Analysis
from codegate.models.enums import AnalysisStatus, GateStatus
from codegate.models.issue import Issue
from codegate.models.project import Project
from codegate.schemas.job import AnalysisJobPayload
from codegate.schemas.report import AnalyzerIssue, AnalyzerReport
from codegate.services.analyzer_registry import ActiveAnalyzer, AnalyzerRegistry
from codegate.services.artifact_service import (
    ArtifactFiles,
    ArtifactService,
    write_measures,
    write_report,
)
from codegate.services.baseline_service import BaselineData, BaselineResolver
from codegate.services.docker_runner import DockerRunner, ExecutionResult
from codegate.services.issue_service import IssueService, ensure_fingerprints
from codegate.services.metrics_service import (
    MetricsService,
    compute_metrics_from_issues,
    merge_metrics,
    normalize_issue_metrics,
)
from codegate.services.quality_gate_service import QualityGateService
from codegate.services.storage_service import ObjectStorage
from codegate.services.technical_debt_service import TechnicalDebtService
from codegate.services.vcs_service import NewIssuesSummary, VcsStatusPublisher
from codegate.services.workspace_service import WorkspaceService, detect_languages

logger = logging.getLogger(__name__)
settings = get_settings()

NO_ANALYZER_KEY = "none"


class JobState(str, Enum):
    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    FAILED = "failed"


@dataclass
class JobOutcome:
    """Result of one processing attempt."""

    state: JobState
    attempt: int
    gate_status: GateStatus | None = None
    error: Exception | None = None
    backoff_ms: int | None = None

    @property
    def succeeded(self) -> bool:
        return self.state == JobState.SUCCEEDED


def compute_backoff_ms(base_ms: int, attempts_made: int) -> int:
    """Exponential backoff after ``attempts_made`` failed attempts (>= 1)."""
    return int(base_ms * 2 ** (max(attempts_made, 1) - 1))


class AnalysisOrchestrator:
    """Runs analysis jobs against the store, object storage and Docker."""

    def __init__(
        self,
        db: AsyncSession,
        runner: DockerRunner | None = None,
        storage: ObjectStorage | None = None,
        publisher: VcsStatusPublisher | None = None,
    ):
        self.db = db
        self.runner = runner or DockerRunner()
        self.storage = storage or ObjectStorage()
        self.publisher = publisher or VcsStatusPublisher()
        self.registry = AnalyzerRegistry(db)
        self.baselines = BaselineResolver(db)
        self.issues = IssueService(db)
        self.metrics = MetricsService(db)
        self.gates = QualityGateService(db)
        self.debt = TechnicalDebtService(db)
        self.artifacts = ArtifactService(db, self.storage)
        self.workspaces = WorkspaceService(self.storage)

    async def handle_job(
        self,
        payload: AnalysisJobPayload,
        attempts_made: int = 0,
        max_attempts: int | None = None,
    ) -> JobOutcome:
        """Process one attempt of a job.

        ``attempts_made`` counts previous attempts, so 0 is the first one.
        Never raises: errors up to and including the final status commit are
        carried by the outcome.
        """
        max_attempts = max_attempts or settings.worker_job_attempts
        attempt = attempts_made + 1
        is_last_attempt = attempt >= max_attempts
        analysis_id = payload.analysis_id

        try:
            analysis = await self._load_analysis(analysis_id)
            if AnalysisStatus(analysis.status).is_terminal:
                logger.warning(
                    "Analysis %s already %s, skipping job", analysis_id, analysis.status
                )
                return JobOutcome(state=JobState.SUCCEEDED, attempt=attempt)

            if attempts_made == 0:
                await self._set_status(analysis, AnalysisStatus.RUNNING)
                await self.publisher.publish_status(payload, "pending", "Analysis pending")
                logger.info("Analysis %s: status set to RUNNING", analysis_id)
            else:
                logger.info(
                    "Analysis %s: retrying (attempt %d/%d)", analysis_id, attempt, max_attempts
                )

            gate_status = await self.process_analyzers(payload, analysis)
            await self._set_status(analysis, AnalysisStatus.SUCCESS)
            await self._notify_success(payload, gate_status)
        except Exception as exc:
            await self._rollback()
            logger.error(
                "Analysis %s failed on attempt %d/%d: %s",
                analysis_id,
                attempt,
                max_attempts,
                exc,
            )
            if not is_last_attempt:
                backoff_ms = compute_backoff_ms(settings.worker_backoff_ms, attempt)
                logger.info(
                    "Analysis %s will be retried in %dms (next attempt %d/%d)",
                    analysis_id,
                    backoff_ms,
                    attempt + 1,
                    max_attempts,
                )
                return JobOutcome(
                    state=JobState.RETRYING, attempt=attempt, error=exc, backoff_ms=backoff_ms
                )

            logger.error(
                "Analysis %s: all %d attempts exhausted, marking FAILED", analysis_id, attempt
            )
            await self._finalize_failure(payload)
            return JobOutcome(state=JobState.FAILED, attempt=attempt, error=exc)

        logger.info(
            "Analysis %s completed, quality gate %s", analysis_id, gate_status.value
        )
        return JobOutcome(state=JobState.SUCCEEDED, attempt=attempt, gate_status=gate_status)

    async def process_analyzers(
        self, payload: AnalysisJobPayload, analysis: Analysis
    ) -> GateStatus:
        """Run every active analyzer, then aggregate, gate and compute debt.

        Aborts on the first analyzer failure.
        """
        analyzers = await self.registry.get_active_analyzers(payload.project_key)
        if not analyzers:
            logger.warning(
                "Analysis %s: no active analyzers for project %s",
                analysis.id,
                payload.project_key,
            )
            await self._write_empty_run(analysis)
            return await self._finish(analysis, {})

        out_dirs: list[str] = []
        try:
            workspace = await self.workspaces.resolve_workspace(
                str(analysis.id), payload.source_object_key, payload.workspace_path
            )
            await self._update_languages(analysis, workspace)

            # full baseline set before any issue is diffed
            baseline = await self.baselines.resolve(analysis)

            aggregated_metrics: dict[str, float] = {}
            all_issues: list[AnalyzerIssue] = []
            for analyzer in analyzers:
                out_dir = await self.workspaces.prepare_out_dir(str(analysis.id), analyzer.key)
                out_dirs.append(out_dir)
                issues, metrics = await self._run_analyzer(
                    payload, analysis, analyzer, workspace, out_dir, baseline
                )
                all_issues.extend(issues)
                merge_metrics(aggregated_metrics, metrics)

            if not aggregated_metrics:
                aggregated_metrics = compute_metrics_from_issues(all_issues)
            return await self._finish(analysis, normalize_issue_metrics(aggregated_metrics))
        finally:
            if payload.source_object_key:
                self.workspaces.cleanup(str(analysis.id))
            for out_dir in out_dirs:
                shutil.rmtree(out_dir, ignore_errors=True)

    async def _run_analyzer(
        self,
        payload: AnalysisJobPayload,
        analysis: Analysis,
        analyzer: ActiveAnalyzer,
        workspace: str,
        out_dir: str,
        baseline: BaselineData,
    ) -> tuple[list[AnalyzerIssue], dict[str, float]]:
        result = await self.runner.run(
            image=analyzer.docker_image,
            workspace_path=workspace,
            output_path=out_dir,
            env=analyzer.container_env(str(analysis.id), payload.project_key, payload.commit_sha),
            timeout_ms=settings.analyzer_timeout_ms,
            memory_mb=settings.analyzer_memory_mb,
            cpu_limit=settings.analyzer_cpu_limit,
        )

        if not result.success or result.report is None:
            logger.error(
                "Analysis %s: analyzer %s (%s) failed [%s] exit=%s container=%s: %s",
                analysis.id,
                analyzer.key,
                analyzer.docker_image,
                result.error_type.value if result.error_type else "unknown",
                result.exit_code,
                result.container_id,
                result.error,
            )
            await self.artifacts.upload_artifacts(analysis.id, analyzer.key, self._files(result))
            raise AnalyzerRunError(analyzer.key, result)

        issues = ensure_fingerprints(list(result.report.issues), seed=payload.project_key)
        await self.issues.register_rules_from_catalog(analyzer.key, result.report.rules)
        # only issues kept by the rule profile count towards metrics
        issues = await self.issues.persist_issues(analysis.id, analyzer.key, issues, baseline)

        metrics = result.measures or compute_metrics_from_issues(issues)
        await self.artifacts.upload_artifacts(analysis.id, analyzer.key, self._files(result))

        logger.info(
            "Analysis %s: analyzer %s completed with %d issues",
            analysis.id,
            analyzer.key,
            len(issues),
        )
        return issues, metrics

    def _files(self, result: ExecutionResult) -> ArtifactFiles:
        return ArtifactFiles(
            log_path=result.log_path,
            report_path=result.report_path,
            measures_path=result.measures_path,
        )

    async def _write_empty_run(self, analysis: Analysis) -> None:
        """Degenerate artifacts for a job with no analyzers."""
        out_dir = await self.workspaces.prepare_out_dir(str(analysis.id), NO_ANALYZER_KEY)
        try:
            log_path = os.path.join(out_dir, DockerRunner.LOG_FILE)
            with open(log_path, "w", encoding="utf-8") as handle:
                handle.write("No analyzers active for this project.\n")
            files = ArtifactFiles(
                log_path=log_path,
                report_path=write_report(out_dir, AnalyzerReport.empty("aggregate", "0.0.0")),
                measures_path=write_measures(out_dir, compute_metrics_from_issues([])),
            )
            await self.artifacts.upload_artifacts(analysis.id, NO_ANALYZER_KEY, files)
        finally:
            shutil.rmtree(out_dir, ignore_errors=True)

    async def _finish(self, analysis: Analysis, analyzer_metrics: dict[str, float]) -> GateStatus:
        """Store metrics, evaluate the gate, then compute debt, in that order."""
        await self.metrics.mark_analysis_metrics(analysis, analyzer_metrics)
        evaluation = await self.gates.evaluate(analysis.id)
        await self.debt.calculate_and_save(analysis.id)
        return evaluation.status

    async def _update_languages(self, analysis: Analysis, workspace: str) -> None:
        try:
            languages = await asyncio.to_thread(detect_languages, workspace)
            if not languages:
                return
            project = await self.db.get(Project, analysis.project_id)
            if project is not None:
                project.languages = languages
                await self.db.commit()
            logger.info("Analysis %s: detected languages %s", analysis.id, ", ".join(languages))
        except Exception as exc:
            await self._rollback()
            logger.warning(
                "Analysis %s: language detection failed, continuing: %s", analysis.id, exc
            )

    async def _load_analysis(self, analysis_id: str) -> Analysis:
        analysis = await self.db.get(Analysis, uuid.UUID(str(analysis_id)))
        if analysis is None:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")
        return analysis

    async def _set_status(self, analysis: Analysis, status: AnalysisStatus) -> None:
        """Move the analysis forward; terminal states are never left."""
        if AnalysisStatus(analysis.status).is_terminal:
            logger.warning(
                "Analysis %s: refusing %s -> %s", analysis.id, analysis.status, status.value
            )
            return
        analysis.status = status.value
        if status == AnalysisStatus.RUNNING:
            analysis.started_at = datetime.utcnow()
        elif status.is_terminal:
            analysis.finished_at = datetime.utcnow()
        await self.db.commit()

    async def _finalize_failure(self, payload: AnalysisJobPayload) -> None:
        await self.publisher.publish_status(payload, "failure", "Analysis failed")
        await self.publisher.publish_comment(payload, GateStatus.FAIL, await self._summary(payload))
        try:
            analysis = await self._load_analysis(payload.analysis_id)
        except (AnalysisNotFoundError, ValueError):
            logger.error("Analysis %s cannot be marked FAILED: not found", payload.analysis_id)
            return
        try:
            await self._set_status(analysis, AnalysisStatus.FAILED)
        except Exception as exc:
            await self._rollback()
            logger.error("Analysis %s could not be marked FAILED: %s", payload.analysis_id, exc)

    async def _notify_success(self, payload: AnalysisJobPayload, gate_status: GateStatus) -> None:
        if gate_status == GateStatus.FAIL:
            await self.publisher.publish_status(payload, "failure", "Quality gate FAIL")
        elif gate_status == GateStatus.PASS:
            await self.publisher.publish_status(payload, "success", "Quality gate PASS")
        else:
            await self.publisher.publish_status(payload, "success", "Analysis completed")
        await self.publisher.publish_comment(payload, gate_status, await self._summary(payload))

    async def _summary(self, payload: AnalysisJobPayload) -> NewIssuesSummary | None:
        """New-issue counts by severity for the PR comment."""
        if payload.pull_request is None:
            return None
        try:
            result = await self.db.execute(
                select(Issue.severity, func.count())
                .where(Issue.analysis_id == uuid.UUID(str(payload.analysis_id)), Issue.is_new.is_(True))
                .group_by(Issue.severity)
            )
        except Exception as exc:
            await self._rollback()
            logger.warning("Analysis %s: new issue summary failed: %s", payload.analysis_id, exc)
            return None
        by_severity = {severity: int(count) for severity, count in result.all()}
        return NewIssuesSummary(total_new=sum(by_severity.values()), by_severity=by_severity)

    async def _rollback(self) -> None:
        try:
            await self.db.rollback()
        except Exception as exc:
            logger.warning("Session rollback failed: %s", exc)
