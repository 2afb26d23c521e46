"""Analysis routes."""

from uuid import UUID

from fastapi import APIRouter, HTTPException, status

from codegate.api.deps import GateService
from codegate.exceptions import AnalysisNotFoundError
from codegate.schemas.quality_gate import QualityGateEvaluation

router = APIRouter()


@router.get("/{analysis_id}/quality-gate", response_model=QualityGateEvaluation)
async def get_quality_gate(analysis_id: UUID, service: GateService) -> QualityGateEvaluation:
    """Re-evaluate the project's quality gate for an analysis. Read-only."""
    try:
        return await service.evaluate(analysis_id)
    except AnalysisNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
