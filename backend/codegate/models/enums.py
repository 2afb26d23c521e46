"""Enumerations shared by models, schemas and services."""

from enum import Enum


class AnalysisStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (AnalysisStatus.SUCCESS, AnalysisStatus.FAILED)


class IssueSeverity(str, Enum):
    INFO = "INFO"
    MINOR = "MINOR"
    MAJOR = "MAJOR"
    CRITICAL = "CRITICAL"
    BLOCKER = "BLOCKER"


# Display order, most severe first
SEVERITY_ORDER = [
    IssueSeverity.BLOCKER,
    IssueSeverity.CRITICAL,
    IssueSeverity.MAJOR,
    IssueSeverity.MINOR,
    IssueSeverity.INFO,
]


class IssueType(str, Enum):
    BUG = "BUG"
    VULNERABILITY = "VULNERABILITY"
    CODE_SMELL = "CODE_SMELL"


class IssueStatus(str, Enum):
    OPEN = "OPEN"
    FALSE_POSITIVE = "FALSE_POSITIVE"
    ACCEPTED_RISK = "ACCEPTED_RISK"
    RESOLVED = "RESOLVED"


class ArtifactKind(str, Enum):
    REPORT = "REPORT"
    MEASURES = "MEASURES"
    LOG = "LOG"
    SOURCE_ZIP = "SOURCE_ZIP"


class GateOperator(str, Enum):
    GT = "GT"
    LT = "LT"
    EQ = "EQ"


class GateScope(str, Enum):
    ALL = "ALL"
    NEW = "NEW"


class GateStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"
    UNKNOWN = "UNKNOWN"


class LeakPeriodType(str, Enum):
    LAST_ANALYSIS = "LAST_ANALYSIS"
    DATE = "DATE"
    BASE_BRANCH = "BASE_BRANCH"


class MaintainabilityRating(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    E = "E"


class VcsProvider(str, Enum):
    GITHUB = "GITHUB"
    GITLAB = "GITLAB"
    BITBUCKET = "BITBUCKET"
