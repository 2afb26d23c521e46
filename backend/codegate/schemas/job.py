"""Queue job payload schemas."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from codegate.models.enums import VcsProvider


class JobAnalyzer(BaseModel):
    """Analyzer requested at enqueue time."""

    model_config = ConfigDict(populate_by_name=True)

    key: str
    docker_image: str = Field(alias="dockerImage")
    config_json: dict[str, Any] | None = Field(default=None, alias="configJson")


class PullRequestRef(BaseModel):
    """Pull request the analysis reports back to."""

    model_config = ConfigDict(populate_by_name=True)

    provider: VcsProvider
    repo: str
    pr_number: int = Field(alias="prNumber")
    source_branch: str | None = Field(default=None, alias="sourceBranch")
    target_branch: str | None = Field(default=None, alias="targetBranch")


class AnalysisJobPayload(BaseModel):
    """Payload of an `analysis` job."""

    model_config = ConfigDict(populate_by_name=True)

    analysis_id: str = Field(alias="analysisId")
    project_key: str = Field(alias="projectKey")
    branch_name: str | None = Field(default=None, alias="branchName")
    commit_sha: str = Field(alias="commitSha")
    analyzers: list[JobAnalyzer] = Field(default_factory=list)
    source_object_key: str | None = Field(default=None, alias="sourceObjectKey")
    workspace_path: str | None = Field(default=None, alias="workspacePath")
    pull_request_id: str | None = Field(default=None, alias="pullRequestId")
    pull_request: PullRequestRef | None = Field(default=None, alias="pullRequest")
