"""SQLAlchemy models."""

from codegate.models.project import Project, Branch, PullRequest
from codegate.models.analysis import Analysis, AnalysisArtifact, AnalysisMetric
from codegate.models.issue import Issue, Rule, RuleProfile, RuleProfileRule
from codegate.models.analyzer import Analyzer, ProjectAnalyzer
from codegate.models.quality_gate import QualityGate, QualityGateCondition

__all__ = [
    "Project",
    "Branch",
    "PullRequest",
    "Analysis",
    "AnalysisArtifact",
    "AnalysisMetric",
    "Issue",
    "Rule",
    "RuleProfile",
    "RuleProfileRule",
    "Analyzer",
    "ProjectAnalyzer",
    "QualityGate",
    "QualityGateCondition",
]
