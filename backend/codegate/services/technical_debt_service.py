"""Technical debt: remediation cost, debt ratio and maintainability rating."""

import logging
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codegate.models.analysis import Analysis
from codegate.models.enums import IssueSeverity, IssueStatus, MaintainabilityRating
from codegate.models.issue import Issue
from codegate.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)

# Minutes to fix one issue
REMEDIATION_COST = {
    IssueSeverity.INFO.value: 5,
    IssueSeverity.MINOR.value: 10,
    IssueSeverity.MAJOR.value: 20,
    IssueSeverity.CRITICAL.value: 60,
    IssueSeverity.BLOCKER.value: 120,
}

# 30 person-days per 25,000 lines at 8h/day, in minutes per line
DEVELOPMENT_COST_PER_LINE = 0.576
DEFAULT_LINES_OF_CODE = 10_000

# Inclusive upper bounds of the debt ratio (%)
RATING_THRESHOLDS = [
    (5, MaintainabilityRating.A),
    (10, MaintainabilityRating.B),
    (20, MaintainabilityRating.C),
    (50, MaintainabilityRating.D),
]


@dataclass
class TechnicalDebt:
    remediation_cost: int
    development_cost: float
    debt_ratio: float
    rating: MaintainabilityRating
    lines_of_code: float


def remediation_cost(severities: Iterable[str]) -> int:
    return sum(REMEDIATION_COST.get(getattr(s, "value", s), 0) for s in severities)


def maintainability_rating(debt_ratio: float) -> MaintainabilityRating:
    for upper, rating in RATING_THRESHOLDS:
        if debt_ratio <= upper:
            return rating
    return MaintainabilityRating.E


def calculate_debt(
    severities: Iterable[str], lines_of_code: float = DEFAULT_LINES_OF_CODE
) -> TechnicalDebt:
    cost = remediation_cost(severities)
    development_cost = lines_of_code * DEVELOPMENT_COST_PER_LINE
    ratio = (cost / development_cost) * 100 if development_cost > 0 else 0
    ratio = round(ratio, 2)
    return TechnicalDebt(
        remediation_cost=cost,
        development_cost=development_cost,
        debt_ratio=ratio,
        rating=maintainability_rating(ratio),
        lines_of_code=lines_of_code,
    )


class TechnicalDebtService:
    """Computes debt for an analysis and stores it on the row and as a metric."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.metrics = MetricsService(db)

    async def calculate_and_save(self, analysis_id: uuid.UUID) -> TechnicalDebt | None:
        analysis = await self.db.get(Analysis, analysis_id)
        if analysis is None:
            return None

        result = await self.db.execute(
            select(Issue.severity).where(
                Issue.analysis_id == analysis_id,
                Issue.status == IssueStatus.OPEN.value,
            )
        )
        severities = result.scalars().all()

        lines_of_code = await self.metrics.get_metric(analysis_id, "lines_of_code")
        if lines_of_code is None:
            lines_of_code = DEFAULT_LINES_OF_CODE

        debt = calculate_debt(severities, lines_of_code)

        analysis.debt_ratio = debt.debt_ratio
        analysis.remediation_cost = debt.remediation_cost
        analysis.maintainability_rating = debt.rating.value
        await self.db.commit()

        await self.metrics.add_metrics(analysis, {"debt_ratio": debt.debt_ratio})

        logger.info(
            "Analysis %s: debt ratio %.2f%% (%s), remediation %d min, %d lines",
            analysis_id,
            debt.debt_ratio,
            debt.rating.value,
            debt.remediation_cost,
            lines_of_code,
        )
        return debt
