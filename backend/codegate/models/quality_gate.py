"""Quality gate models. Read-only from the worker."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, String, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from codegate.database import Base
from codegate.models.enums import GateScope


class QualityGate(Base):
    """Quality gate for a project."""

    __tablename__ = "quality_gates"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    conditions: Mapped[list["QualityGateCondition"]] = relationship(
        "QualityGateCondition",
        back_populates="gate",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class QualityGateCondition(Base):
    """Threshold condition of a gate."""

    __tablename__ = "quality_gate_conditions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    gate_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("quality_gates.id", ondelete="CASCADE"), nullable=False
    )
    metric: Mapped[str] = mapped_column(String(100), nullable=False)
    # Allowed: GT, LT, EQ
    operator: Mapped[str] = mapped_column(String(2), nullable=False)
    threshold: Mapped[float] = mapped_column(Float, nullable=False)
    # Allowed: ALL, NEW
    scope: Mapped[str] = mapped_column(String(3), default=GateScope.ALL.value)

    gate: Mapped["QualityGate"] = relationship("QualityGate", back_populates="conditions")
