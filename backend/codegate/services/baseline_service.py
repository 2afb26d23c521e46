"""Baseline selection for new-issue detection."""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codegate.models.analysis import Analysis
from codegate.models.enums import AnalysisStatus, LeakPeriodType
from codegate.models.issue import Issue
from codegate.models.project import Branch, Project, PullRequest

logger = logging.getLogger(__name__)


@dataclass
class BaselineData:
    """Fingerprints of the baseline analysis.

    ``fingerprints`` is None only when the analysis itself is unknown; an
    empty set means every issue is new.
    """

    fingerprints: set[str] | None = field(default_factory=set)
    baseline_analysis_id: uuid.UUID | None = None


def parse_cutoff(value: str | None) -> datetime | None:
    """Parse a leak-period date. Returns None for missing or invalid values."""
    if not value:
        return None
    try:
        cutoff = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    # Stored timestamps are naive UTC
    if cutoff.tzinfo is not None:
        cutoff = cutoff.astimezone(timezone.utc).replace(tzinfo=None)
    return cutoff


class BaselineResolver:
    """Resolves the baseline fingerprint set of an analysis.

    The explicit ``baseline_analysis_id`` set when the analysis was created is
    authoritative. The project's leak period (LAST_ANALYSIS, DATE,
    BASE_BRANCH) is only consulted when no explicit baseline exists.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve_for_id(self, analysis_id: uuid.UUID) -> BaselineData:
        analysis = await self.db.get(Analysis, analysis_id)
        if analysis is None:
            logger.warning("Analysis %s not found, no baseline", analysis_id)
            return BaselineData(fingerprints=None)
        return await self.resolve(analysis)

    async def resolve(self, analysis: Analysis) -> BaselineData:
        if analysis.baseline_analysis_id:
            fingerprints = await self._fingerprints(analysis.baseline_analysis_id)
            logger.info(
                "Analysis %s: explicit baseline %s with %d fingerprints",
                analysis.id,
                analysis.baseline_analysis_id,
                len(fingerprints),
            )
            return BaselineData(fingerprints, analysis.baseline_analysis_id)

        project = await self.db.get(Project, analysis.project_id)
        leak_type = (project.leak_period_type if project else None) or LeakPeriodType.LAST_ANALYSIS.value
        leak_value = project.leak_period_value if project else None

        if leak_type == LeakPeriodType.DATE.value:
            baseline = await self._by_date(analysis, leak_value)
        elif leak_type == LeakPeriodType.BASE_BRANCH.value:
            baseline = await self._by_base_branch(analysis, leak_value)
        else:
            baseline = await self._last_analysis(analysis)

        if baseline is None:
            logger.info("Analysis %s: no baseline (%s), all issues are new", analysis.id, leak_type)
            return BaselineData()

        fingerprints = await self._fingerprints(baseline.id)
        logger.info(
            "Analysis %s: %s baseline %s with %d fingerprints",
            analysis.id,
            leak_type,
            baseline.id,
            len(fingerprints),
        )
        return BaselineData(fingerprints, baseline.id)

    async def _fingerprints(self, analysis_id: uuid.UUID) -> set[str]:
        result = await self.db.execute(
            select(Issue.fingerprint).where(Issue.analysis_id == analysis_id)
        )
        return set(result.scalars().all())

    async def _scope_branch_id(self, analysis: Analysis) -> uuid.UUID | None:
        """Branch to compare against: the analysis branch, or a PR's target branch."""
        if analysis.pull_request_id is None:
            return analysis.branch_id

        pr = await self.db.get(PullRequest, analysis.pull_request_id)
        if pr is None or not pr.target_branch:
            return None
        return await self._branch_id(analysis.project_id, pr.target_branch)

    async def _branch_id(self, project_id: uuid.UUID, name: str) -> uuid.UUID | None:
        result = await self.db.execute(
            select(Branch.id).where(Branch.project_id == project_id, Branch.name == name)
        )
        return result.scalar_one_or_none()

    def _latest_success(self, analysis: Analysis, branch_id: uuid.UUID):
        return (
            select(Analysis)
            .where(
                Analysis.project_id == analysis.project_id,
                Analysis.branch_id == branch_id,
                Analysis.status == AnalysisStatus.SUCCESS.value,
                Analysis.id != analysis.id,
            )
            .order_by(
                Analysis.finished_at.desc().nulls_last(),
                Analysis.created_at.desc(),
            )
            .limit(1)
        )

    async def _last_analysis(self, analysis: Analysis) -> Analysis | None:
        branch_id = await self._scope_branch_id(analysis)
        if branch_id is None:
            return None
        result = await self.db.execute(self._latest_success(analysis, branch_id))
        return result.scalar_one_or_none()

    async def _by_date(self, analysis: Analysis, value: str | None) -> Analysis | None:
        cutoff = parse_cutoff(value)
        if cutoff is None:
            logger.warning("Analysis %s: invalid leak period date %r", analysis.id, value)
            return None
        branch_id = await self._scope_branch_id(analysis)
        if branch_id is None:
            return None
        stmt = self._latest_success(analysis, branch_id).where(Analysis.created_at <= cutoff)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def _by_base_branch(self, analysis: Analysis, value: str | None) -> Analysis | None:
        if not value:
            return None
        branch_id = await self._branch_id(analysis.project_id, value)
        if branch_id is None:
            logger.info("Analysis %s: base branch %r does not exist", analysis.id, value)
            return None
        result = await self.db.execute(self._latest_success(analysis, branch_id))
        return result.scalar_one_or_none()
