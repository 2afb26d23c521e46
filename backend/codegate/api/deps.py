"""API dependencies for dependency injection."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from codegate.database import get_db
from codegate.services.quality_gate_service import QualityGateService

# Type aliases for cleaner signatures
DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_quality_gate_service(db: DbSession) -> QualityGateService:
    return QualityGateService(db)


GateService = Annotated[QualityGateService, Depends(get_quality_gate_service)]
