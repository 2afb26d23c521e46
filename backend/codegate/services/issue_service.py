"""Issue persistence: rule filtering, new-issue diffing and rule catalog registration."""

import hashlib
import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codegate.models.analysis import Analysis
from codegate.models.issue import Issue, Rule, RuleProfile, RuleProfileRule
from codegate.models.project import Project
from codegate.schemas.report import AnalyzerIssue, AnalyzerRule
from codegate.services.baseline_service import BaselineData
from codegate.services.workspace_service import detect_language_from_path

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_NAME = "Default"


def build_fingerprint(
    seed: str,
    rule_key: str,
    file_path: str,
    message: str,
    line: int | None = None,
) -> str:
    """Deterministic identity of a finding across runs."""
    parts = [seed, rule_key, file_path, message, "" if line is None else str(line)]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def ensure_fingerprints(issues: list[AnalyzerIssue], seed: str) -> list[AnalyzerIssue]:
    """Fill in fingerprints for issues whose analyzer did not emit one."""
    for issue in issues:
        if not issue.fingerprint:
            issue.fingerprint = build_fingerprint(
                seed, issue.rule_key, issue.file_path, issue.message, issue.line
            )
    return issues


def is_new_issue(fingerprint: str, baseline_fingerprints: set[str] | None) -> bool:
    """An issue is new iff a baseline set is known and does not contain it."""
    if baseline_fingerprints is None:
        return False
    return fingerprint not in baseline_fingerprints


def filter_disabled(
    issues: list[AnalyzerIssue], disabled_rule_keys: set[str]
) -> list[AnalyzerIssue]:
    if not disabled_rule_keys:
        return issues
    return [issue for issue in issues if issue.rule_key not in disabled_rule_keys]


class IssueService:
    """Persists analyzer findings for one analysis."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def persist_issues(
        self,
        analysis_id: uuid.UUID,
        analyzer_key: str,
        issues: list[AnalyzerIssue],
        baseline: BaselineData,
    ) -> list[AnalyzerIssue]:
        """Insert issues with duplicate-skip. Returns the issues that survived the rule profile."""
        if not issues:
            logger.warning("Analysis %s: analyzer %s reported no issues", analysis_id, analyzer_key)
            return []

        await self.register_rules(analyzer_key, issues)

        disabled = await self.get_disabled_rule_keys(
            analysis_id, [issue.rule_key for issue in issues]
        )
        kept = filter_disabled(issues, disabled)
        if not kept:
            logger.info(
                "Analysis %s: all %d issues from %s skipped (disabled rules)",
                analysis_id,
                len(issues),
                analyzer_key,
            )
            return []

        rows = [
            {
                "id": uuid.uuid4(),
                "analysis_id": analysis_id,
                "analyzer_key": analyzer_key,
                "rule_key": issue.rule_key,
                "severity": issue.severity.value,
                "type": issue.type.value,
                "file_path": issue.file_path,
                "line": issue.line,
                "message": issue.message,
                "fingerprint": issue.fingerprint,
                "language": detect_language_from_path(issue.file_path),
                "is_new": is_new_issue(issue.fingerprint, baseline.fingerprints),
                "baseline_analysis_id": baseline.baseline_analysis_id,
            }
            for issue in kept
        ]

        stmt = insert(Issue).values(rows).on_conflict_do_nothing(
            index_elements=["analysis_id", "fingerprint"]
        )
        await self.db.execute(stmt)
        await self.db.commit()

        logger.info(
            "Analysis %s: persisted %d issues from %s (%d skipped by rule profile)",
            analysis_id,
            len(kept),
            analyzer_key,
            len(issues) - len(kept),
        )
        return kept

    async def ensure_active_rule_profile_id(self, project_id: uuid.UUID) -> uuid.UUID | None:
        """Return the project's active profile, creating a default one if none is set."""
        project = await self.db.get(Project, project_id)
        if project is None:
            return None
        if project.active_rule_profile_id:
            return project.active_rule_profile_id

        result = await self.db.execute(
            select(RuleProfile).where(
                RuleProfile.project_id == project.id,
                RuleProfile.name == DEFAULT_PROFILE_NAME,
            )
        )
        profile = result.scalar_one_or_none()
        if profile is None:
            profile = RuleProfile(id=uuid.uuid4(), project_id=project.id, name=DEFAULT_PROFILE_NAME)
            self.db.add(profile)
            await self.db.flush()

        project.active_rule_profile_id = profile.id
        await self.db.commit()
        return profile.id

    async def get_disabled_rule_keys(
        self, analysis_id: uuid.UUID, rule_keys: Iterable[str]
    ) -> set[str]:
        unique_keys = sorted({key for key in rule_keys if key})
        if not unique_keys:
            return set()

        analysis = await self.db.get(Analysis, analysis_id)
        if analysis is None:
            return set()

        profile_id = await self.ensure_active_rule_profile_id(analysis.project_id)
        if profile_id is None:
            return set()

        result = await self.db.execute(
            select(RuleProfileRule.rule_key).where(
                RuleProfileRule.rule_profile_id == profile_id,
                RuleProfileRule.enabled.is_(False),
                RuleProfileRule.rule_key.in_(unique_keys),
            )
        )
        return set(result.scalars().all())

    async def register_rules(self, analyzer_key: str, issues: list[AnalyzerIssue]) -> None:
        """Register rules referenced by issues. Never fails the pipeline."""
        unique: dict[str, dict] = {}
        for issue in issues:
            if issue.rule_key in unique:
                continue
            unique[issue.rule_key] = {
                "id": uuid.uuid4(),
                "key": issue.rule_key,
                "analyzer_key": analyzer_key,
                "name": issue.rule_name or issue.rule_key,
                "description": issue.rule_description or "",
                "default_severity": issue.severity.value,
                "type": issue.type.value,
            }
        await self._insert_rules(list(unique.values()))

    async def register_rules_from_catalog(
        self, analyzer_key: str, rules: list[AnalyzerRule] | None
    ) -> None:
        if not rules:
            return
        rows = [
            {
                "id": uuid.uuid4(),
                "key": rule.key,
                "analyzer_key": analyzer_key,
                "name": rule.name,
                "description": rule.description,
                "default_severity": rule.severity.value,
                "type": rule.type.value,
            }
            for rule in rules
        ]
        if await self._insert_rules(rows):
            logger.info("Registered %d rules from %s catalog", len(rows), analyzer_key)

    async def _insert_rules(self, rows: list[dict]) -> bool:
        if not rows:
            return False
        try:
            await self.db.execute(insert(Rule).values(rows).on_conflict_do_nothing())
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.warning("Rule registration failed: %s", exc)
            return False
        return True
