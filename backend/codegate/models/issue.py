"""Issue and rule catalog models."""

import uuid
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from codegate.database import Base
from codegate.models.enums import IssueStatus


class Issue(Base):
    """One static-analysis finding. Never mutated by the worker after insert."""

    __tablename__ = "issues"
    __table_args__ = (
        UniqueConstraint("analysis_id", "fingerprint", name="uq_issues_analysis_fingerprint"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    analysis_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("analyses.id", ondelete="CASCADE"), nullable=False
    )
    analyzer_key: Mapped[str] = mapped_column(String(100), nullable=False)
    rule_key: Mapped[str] = mapped_column(String(255), nullable=False)
    # Allowed: INFO, MINOR, MAJOR, CRITICAL, BLOCKER
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    # Allowed: BUG, VULNERABILITY, CODE_SMELL
    type: Mapped[str] = mapped_column(String(20), nullable=False)

    file_path: Mapped[str] = mapped_column(String(1000), nullable=False)
    line: Mapped[int | None] = mapped_column(Integer)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    language: Mapped[str | None] = mapped_column(String(50))

    fingerprint: Mapped[str] = mapped_column(String(128), nullable=False)
    is_new: Mapped[bool] = mapped_column(Boolean, default=False)
    baseline_analysis_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("analyses.id", ondelete="SET NULL")
    )
    status: Mapped[str] = mapped_column(String(20), default=IssueStatus.OPEN.value)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Rule(Base):
    """Rule catalog entry registered from analyzer reports."""

    __tablename__ = "rules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    analyzer_key: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    default_severity: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str | None] = mapped_column(String(20))
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class RuleProfile(Base):
    """Named set of rule toggles for a project."""

    __tablename__ = "rule_profiles"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class RuleProfileRule(Base):
    """Rule toggle inside a profile. Rules without a row are enabled."""

    __tablename__ = "rule_profile_rules"
    __table_args__ = (
        UniqueConstraint("rule_profile_id", "rule_key", name="uq_rule_profile_rules_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    rule_profile_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("rule_profiles.id", ondelete="CASCADE"), nullable=False
    )
    rule_key: Mapped[str] = mapped_column(String(255), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
