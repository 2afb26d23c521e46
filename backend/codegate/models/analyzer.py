"""Analyzer registry models."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from codegate.database import Base


class Analyzer(Base):
    """Containerized analyzer available to all projects."""

    __tablename__ = "analyzers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    docker_image: Mapped[str] = mapped_column(String(500), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class ProjectAnalyzer(Base):
    """Per-project analyzer override."""

    __tablename__ = "project_analyzers"
    __table_args__ = (
        UniqueConstraint("project_id", "analyzer_id", name="uq_project_analyzers"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    analyzer_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("analyzers.id", ondelete="CASCADE"), nullable=False
    )
    enabled: Mapped[bool | None] = mapped_column(Boolean)
    config_json: Mapped[dict | None] = mapped_column(JSONB)
