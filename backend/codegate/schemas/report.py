"""Analyzer output contract: report.json and measures.json."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

from codegate.models.enums import IssueSeverity, IssueType

NonEmptyStr = Annotated[str, Field(min_length=1)]
MetricValue = Annotated[float, Field(strict=True)]


class ContractModel(BaseModel):
    """Camel-case wire format, snake-case attributes."""

    model_config = ConfigDict(populate_by_name=True, use_enum_values=False)


class AnalyzerInfo(ContractModel):
    name: NonEmptyStr
    version: NonEmptyStr


class AnalyzerIssue(ContractModel):
    """One finding as emitted by an analyzer."""

    rule_key: NonEmptyStr = Field(alias="ruleKey")
    severity: IssueSeverity
    type: IssueType
    file_path: NonEmptyStr = Field(alias="filePath")
    line: int | None = None
    message: NonEmptyStr
    fingerprint: str | None = None
    rule_name: str | None = Field(default=None, alias="ruleName")
    rule_description: str | None = Field(default=None, alias="ruleDescription")


class AnalyzerRule(ContractModel):
    """Rule catalog entry shipped alongside a report."""

    key: NonEmptyStr
    name: NonEmptyStr
    description: str
    severity: IssueSeverity
    type: IssueType


class AnalyzerReport(ContractModel):
    """Contents of report.json."""

    analyzer: AnalyzerInfo
    issues: list[AnalyzerIssue]
    rules: list[AnalyzerRule] | None = None

    @classmethod
    def empty(cls, name: str = "unknown", version: str = "unknown") -> "AnalyzerReport":
        return cls(analyzer=AnalyzerInfo(name=name, version=version), issues=[])

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


class AnalyzerMeasures(ContractModel):
    """Contents of measures.json."""

    metrics: dict[str, MetricValue]

    @field_validator("metrics")
    @classmethod
    def validate_keys(cls, v: dict[str, float]) -> dict[str, float]:
        for key in v:
            if not key:
                raise ValueError("Invalid metric key")
        return v

    @classmethod
    def empty(cls) -> "AnalyzerMeasures":
        return cls(metrics={})

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)
