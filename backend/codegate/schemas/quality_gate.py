"""Quality gate evaluation schemas."""

from uuid import UUID

from pydantic import BaseModel

from codegate.models.enums import GateScope, GateStatus


class ConditionResult(BaseModel):
    """Outcome of one gate condition."""

    metric: str
    operator: str
    threshold: float
    value: float
    scope: GateScope
    passed: bool


class GateInfo(BaseModel):
    id: UUID
    name: str


class QualityGateEvaluation(BaseModel):
    """Gate status of an analysis with the metric snapshot it was computed from."""

    status: GateStatus
    gate: GateInfo | None = None
    conditions: list[ConditionResult] = []
    metrics: dict[str, float] = {}
    metrics_new: dict[str, float] = {}
