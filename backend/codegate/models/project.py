"""Project, branch and pull request models."""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from codegate.database import Base
from codegate.models.enums import LeakPeriodType


class Project(Base):
    """Project under analysis."""

    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Legacy baseline selection, used only when an analysis has no explicit baseline
    leak_period_type: Mapped[str] = mapped_column(
        String(20), default=LeakPeriodType.LAST_ANALYSIS.value
    )
    # ISO date for DATE, branch name for BASE_BRANCH
    leak_period_value: Mapped[str | None] = mapped_column(String(255))

    active_rule_profile_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("rule_profiles.id", ondelete="SET NULL", use_alter=True)
    )
    languages: Mapped[list] = mapped_column(JSONB, default=list)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Branch(Base):
    """Branch of a project."""

    __tablename__ = "branches"
    __table_args__ = (UniqueConstraint("project_id", "name", name="uq_branches_project_name"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class PullRequest(Base):
    """Pull/merge request tracked for a project."""

    __tablename__ = "pull_requests"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    provider: Mapped[str] = mapped_column(String(20), nullable=False)
    repo: Mapped[str] = mapped_column(String(500), nullable=False)
    pr_number: Mapped[int] = mapped_column(Integer, nullable=False)
    source_branch: Mapped[str] = mapped_column(String(255), nullable=False)
    target_branch: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
