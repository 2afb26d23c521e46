"""Metric aggregation: analyzer measures, issue breakdowns and gate snapshots."""

import logging
import math
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codegate.models.analysis import Analysis, AnalysisMetric
from codegate.models.enums import GateScope, IssueSeverity, IssueStatus, IssueType
from codegate.models.issue import Issue

logger = logging.getLogger(__name__)

# canonical key -> legacy alias
ISSUE_METRIC_ALIASES = {
    "total_issues": "issues_total",
    "blocker_issues": "issues_blocker",
    "critical_issues": "issues_critical",
    "major_issues": "issues_major",
    "minor_issues": "issues_minor",
    "info_issues": "issues_info",
}

SEVERITY_KEYS = {
    IssueSeverity.BLOCKER.value: "blocker",
    IssueSeverity.CRITICAL.value: "critical",
    IssueSeverity.MAJOR.value: "major",
    IssueSeverity.MINOR.value: "minor",
    IssueSeverity.INFO.value: "info",
}


@dataclass(frozen=True)
class IssueFacts:
    """The fields of an issue that metrics depend on."""

    severity: str
    type: str
    is_new: bool = False


def _value(obj: Any, name: str) -> Any:
    value = obj.get(name) if isinstance(obj, Mapping) else getattr(obj, name, None)
    # enums from analyzer reports, plain strings from the database
    return getattr(value, "value", value)


def merge_metrics(target: dict[str, float], source: Mapping[str, Any]) -> dict[str, float]:
    """Sum ``source`` into ``target`` per key, ignoring non-numeric values."""
    for key, value in source.items():
        try:
            number = float(value)
        except (TypeError, ValueError):
            continue
        if not math.isfinite(number):
            continue
        target[key] = target.get(key, 0) + number
    return target


def normalize_issue_metrics(metrics: Mapping[str, float]) -> dict[str, float]:
    """Populate canonical issue keys and their legacy aliases from whichever is present."""
    normalized = dict(metrics)
    for canonical, legacy in ISSUE_METRIC_ALIASES.items():
        value = metrics.get(canonical, metrics.get(legacy, 0))
        normalized[canonical] = value
        normalized[legacy] = metrics.get(legacy, value)
    return normalized


def compute_metrics_from_issues(issues: Iterable[Any]) -> dict[str, float]:
    """Fallback measures for an analyzer that reports none."""
    metrics = {
        "total_issues": 0,
        "blocker_issues": 0,
        "critical_issues": 0,
        "major_issues": 0,
        "minor_issues": 0,
        "info_issues": 0,
        "vulnerabilities_total": 0,
    }
    for issue in issues:
        metrics["total_issues"] += 1
        if _value(issue, "type") == IssueType.VULNERABILITY.value:
            metrics["vulnerabilities_total"] += 1
        severity = SEVERITY_KEYS.get(_value(issue, "severity"))
        if severity:
            metrics[f"{severity}_issues"] += 1
    return normalize_issue_metrics(metrics)


def _empty_breakdown() -> dict[str, float]:
    return {
        "issues_total": 0,
        "issues_blocker": 0,
        "issues_critical": 0,
        "issues_major": 0,
        "issues_minor": 0,
        "issues_info": 0,
        "vulnerabilities_total": 0,
    }


def _add_issue(target: dict[str, float], severity: str, issue_type: str) -> None:
    target["issues_total"] += 1
    if issue_type == IssueType.VULNERABILITY.value:
        target["vulnerabilities_total"] += 1
    key = SEVERITY_KEYS.get(severity)
    if key:
        target[f"issues_{key}"] += 1


def compute_metrics_by_scope(issues: Iterable[Any]) -> dict[str, dict[str, float]]:
    """Issue counts for the ALL and NEW scopes, under canonical and legacy names."""
    all_scope = _empty_breakdown()
    new_scope = _empty_breakdown()
    for issue in issues:
        severity = _value(issue, "severity")
        issue_type = _value(issue, "type")
        _add_issue(all_scope, severity, issue_type)
        if _value(issue, "is_new"):
            _add_issue(new_scope, severity, issue_type)
    return {
        GateScope.ALL.value: normalize_issue_metrics(all_scope),
        GateScope.NEW.value: normalize_issue_metrics(new_scope),
    }


def merge_stored_metrics(
    by_scope: dict[str, dict[str, float]], stored: Mapping[str, float]
) -> dict[str, dict[str, float]]:
    """Overlay issue breakdowns on stored analysis metrics.

    ``new_*`` keys (e.g. ``new_coverage``) belong to the NEW scope, everything
    else to ALL. Counts computed from issues take precedence.
    """
    all_base = {k: v for k, v in stored.items() if not k.startswith("new_")}
    new_base = {k: v for k, v in stored.items() if k.startswith("new_")}
    return {
        GateScope.ALL.value: {**all_base, **by_scope[GateScope.ALL.value]},
        GateScope.NEW.value: {**new_base, **by_scope[GateScope.NEW.value]},
    }


def issue_metric_rows(issues: Iterable[Any]) -> dict[str, float]:
    """Per-analysis issue metrics persisted as AnalysisMetric rows."""
    totals = {"ALL": dict.fromkeys(SEVERITY_KEYS.values(), 0), "NEW": dict.fromkeys(SEVERITY_KEYS.values(), 0)}
    total = new = 0
    for issue in issues:
        severity = SEVERITY_KEYS.get(_value(issue, "severity"))
        total += 1
        if severity:
            totals["ALL"][severity] += 1
        if _value(issue, "is_new"):
            new += 1
            if severity:
                totals["NEW"][severity] += 1

    rows: dict[str, float] = {"issues_total": total, "issues_new": new}
    for severity, count in totals["ALL"].items():
        rows[f"issues_{severity}"] = count
    for severity, count in totals["NEW"].items():
        rows[f"issues_new_{severity}"] = count
    return rows


class MetricsService:
    """Reads and writes AnalysisMetric rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_issue_facts(
        self, analysis_id: uuid.UUID, open_only: bool = False
    ) -> list[IssueFacts]:
        stmt = select(Issue.severity, Issue.type, Issue.is_new).where(
            Issue.analysis_id == analysis_id
        )
        if open_only:
            stmt = stmt.where(Issue.status == IssueStatus.OPEN.value)
        result = await self.db.execute(stmt)
        return [IssueFacts(severity=s, type=t, is_new=bool(n)) for s, t, n in result.all()]

    async def load_stored_metrics(self, analysis_id: uuid.UUID) -> dict[str, float]:
        """Stored metrics by key; the latest row wins for repeated keys."""
        result = await self.db.execute(
            select(AnalysisMetric.metric_key, AnalysisMetric.value)
            .where(AnalysisMetric.analysis_id == analysis_id)
            .order_by(AnalysisMetric.created_at.desc())
        )
        metrics: dict[str, float] = {}
        for key, value in result.all():
            metrics.setdefault(key, float(value))
        return metrics

    async def get_metric(self, analysis_id: uuid.UUID, metric_key: str) -> float | None:
        result = await self.db.execute(
            select(AnalysisMetric.value)
            .where(
                AnalysisMetric.analysis_id == analysis_id,
                AnalysisMetric.metric_key == metric_key,
            )
            .order_by(AnalysisMetric.created_at.desc())
            .limit(1)
        )
        value = result.scalar_one_or_none()
        return float(value) if value is not None else None

    async def metrics_by_scope(self, analysis_id: uuid.UUID) -> dict[str, dict[str, float]]:
        """Gate snapshot: open-issue breakdowns merged over stored metrics."""
        issues = await self.load_issue_facts(analysis_id, open_only=True)
        stored = await self.load_stored_metrics(analysis_id)
        return merge_stored_metrics(compute_metrics_by_scope(issues), stored)

    async def add_metrics(self, analysis: Analysis, metrics: Mapping[str, float]) -> None:
        """Append metric rows. Rows are never updated."""
        if not metrics:
            return
        self.db.add_all(
            AnalysisMetric(
                analysis_id=analysis.id,
                project_id=analysis.project_id,
                branch_id=analysis.branch_id,
                metric_key=key,
                value=float(value),
            )
            for key, value in metrics.items()
        )
        await self.db.commit()

    async def mark_analysis_metrics(
        self, analysis: Analysis, analyzer_metrics: Mapping[str, float] | None = None
    ) -> dict[str, float]:
        """Persist issue counts plus aggregated analyzer measures not covered by them."""
        issues = await self.load_issue_facts(analysis.id)
        rows = issue_metric_rows(issues)
        for key, value in (analyzer_metrics or {}).items():
            if key in rows or key in ISSUE_METRIC_ALIASES:
                continue
            rows[key] = value
        await self.add_metrics(analysis, rows)
        logger.info("Analysis %s: stored %d metrics", analysis.id, len(rows))
        return rows
