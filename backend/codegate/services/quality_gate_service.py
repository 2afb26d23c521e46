"""Quality gate evaluation.

A condition passes when ``value <operator> threshold`` holds for the metric in
its scope. An unknown operator never passes. The gate passes when every
condition passes. Evaluation only reads data, so it can be repeated for
the same analysis at any time.
"""

import logging
import operator
import uuid
from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codegate.exceptions import AnalysisNotFoundError
from codegate.models.analysis import Analysis
from codegate.models.enums import GateOperator, GateScope, GateStatus
from codegate.models.quality_gate import QualityGate
from codegate.schemas.quality_gate import ConditionResult, GateInfo, QualityGateEvaluation
from codegate.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)

OPERATORS = {
    GateOperator.GT: operator.gt,
    GateOperator.LT: operator.lt,
    GateOperator.EQ: operator.eq,
}


def evaluate_condition(
    condition: Any, metrics_by_scope: Mapping[str, Mapping[str, float]]
) -> ConditionResult:
    """Evaluate one condition against the metric map of its scope."""
    scope = GateScope(condition.scope or GateScope.ALL.value)
    metrics = metrics_by_scope.get(scope.value)
    if metrics is None:
        metrics = metrics_by_scope.get(GateScope.ALL.value, {})
    value = float(metrics.get(condition.metric, 0))
    threshold = float(condition.threshold)

    compare = OPERATORS.get(condition.operator)
    if compare is None:
        logger.warning("Unknown gate operator %r on %s", condition.operator, condition.metric)
        passed = False
    else:
        passed = compare(value, threshold)

    return ConditionResult(
        metric=condition.metric,
        operator=str(getattr(condition.operator, "value", condition.operator)),
        threshold=threshold,
        value=value,
        scope=scope,
        passed=passed,
    )


def evaluate_conditions(
    conditions: Iterable[Any], metrics_by_scope: Mapping[str, Mapping[str, float]]
) -> tuple[GateStatus, list[ConditionResult]]:
    results = [evaluate_condition(c, metrics_by_scope) for c in conditions]
    status = GateStatus.PASS if all(r.passed for r in results) else GateStatus.FAIL
    return status, results


class QualityGateService:
    """Evaluates a project's quality gate for an analysis."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.metrics = MetricsService(db)

    async def get_gate(self, project_id: uuid.UUID) -> QualityGate | None:
        result = await self.db.execute(
            select(QualityGate).where(QualityGate.project_id == project_id)
        )
        return result.scalar_one_or_none()

    async def evaluate(self, analysis_id: uuid.UUID) -> QualityGateEvaluation:
        """Evaluate the gate. Status is UNKNOWN when the project has no gate."""
        analysis = await self.db.get(Analysis, analysis_id)
        if analysis is None:
            raise AnalysisNotFoundError(f"Analysis {analysis_id} not found")

        gate = await self.get_gate(analysis.project_id)
        if gate is None:
            logger.info("Analysis %s: project has no quality gate", analysis_id)
            return QualityGateEvaluation(status=GateStatus.UNKNOWN)

        metrics_by_scope = await self.metrics.metrics_by_scope(analysis_id)
        status, results = evaluate_conditions(gate.conditions, metrics_by_scope)

        logger.info(
            "Analysis %s: quality gate %s (%d/%d conditions passed)",
            analysis_id,
            status.value,
            sum(1 for r in results if r.passed),
            len(results),
        )
        return QualityGateEvaluation(
            status=status,
            gate=GateInfo(id=gate.id, name=gate.name),
            conditions=results,
            metrics=metrics_by_scope[GateScope.ALL.value],
            metrics_new=metrics_by_scope[GateScope.NEW.value],
        )
