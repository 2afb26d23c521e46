"""Publishes analysis status back to the pull request's source-control host."""

import logging
from dataclasses import dataclass, field
from typing import Literal
from urllib.parse import quote

import httpx

from codegate.config import get_settings
from codegate.models.enums import SEVERITY_ORDER, GateStatus, VcsProvider
from codegate.schemas.job import AnalysisJobPayload

logger = logging.getLogger(__name__)
settings = get_settings()

StatusState = Literal["pending", "success", "failure"]

STATUS_CONTEXT = "Code Quality"
COMMENT_MARKER_PREFIX = "<!-- codegate-analysis:"
GITHUB_API_URL = "https://api.github.com"


@dataclass
class NewIssuesSummary:
    total_new: int = 0
    by_severity: dict[str, int] = field(default_factory=dict)


def comment_marker(analysis_id: str) -> str:
    return f"{COMMENT_MARKER_PREFIX}{analysis_id} -->"


def analysis_url(analysis_id: str) -> str:
    return f"{settings.web_app_url.rstrip('/')}/analyses/{analysis_id}"


def build_comment_body(
    analysis_id: str, gate_status: GateStatus, summary: NewIssuesSummary | None
) -> str:
    lines = [comment_marker(analysis_id), f"**Code Quality: {gate_status.value}**"]
    if summary is not None:
        lines.append(f"New issues: {summary.total_new}")
        lines.append(
            " · ".join(
                f"{severity.value}: {summary.by_severity.get(severity.value, 0)}"
                for severity in SEVERITY_ORDER
            )
        )
    lines.append(f"Analysis: {analysis_url(analysis_id)}")
    return "\n".join(lines)


class VcsStatusPublisher:
    """Commit status and PR comment publishing for GitHub and GitLab.

    Every failure is logged and swallowed: the analysis outcome never depends
    on the source-control host being reachable.
    """

    TIMEOUT = 15.0

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.TIMEOUT)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _github_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {settings.github_token}",
            "User-Agent": "codegate-worker",
            "Accept": "application/vnd.github+json",
        }

    def _gitlab_headers(self) -> dict[str, str]:
        return {"Private-Token": settings.gitlab_token or ""}

    async def publish_status(
        self, payload: AnalysisJobPayload, state: StatusState, description: str
    ) -> None:
        pr = payload.pull_request
        if pr is None:
            return
        target_url = analysis_url(payload.analysis_id)

        try:
            if pr.provider == VcsProvider.GITHUB and settings.github_token:
                url = f"{GITHUB_API_URL}/repos/{pr.repo}/statuses/{payload.commit_sha}"
                response = await self._http().post(
                    url,
                    headers=self._github_headers(),
                    json={
                        "state": state,
                        "context": STATUS_CONTEXT,
                        "description": description,
                        "target_url": target_url,
                    },
                )
            elif pr.provider == VcsProvider.GITLAB and settings.gitlab_token:
                project_id = quote(pr.repo, safe="")
                url = f"{settings.gitlab_api_base_url}/projects/{project_id}/statuses/{payload.commit_sha}"
                response = await self._http().post(
                    url,
                    headers=self._gitlab_headers(),
                    data={
                        "state": "failed" if state == "failure" else state,
                        "context": STATUS_CONTEXT,
                        "description": description,
                        "target_url": target_url,
                    },
                )
            else:
                return
            if response.is_error:
                logger.warning(
                    "Analysis %s: failed to publish %s status (%s): %s",
                    payload.analysis_id,
                    pr.provider.value,
                    response.status_code,
                    response.text,
                )
        except httpx.HTTPError as exc:
            logger.warning("Analysis %s: error publishing PR status: %s", payload.analysis_id, exc)

    async def publish_comment(
        self,
        payload: AnalysisJobPayload,
        gate_status: GateStatus,
        summary: NewIssuesSummary | None,
    ) -> None:
        pr = payload.pull_request
        if pr is None:
            return
        marker = comment_marker(payload.analysis_id)
        body = build_comment_body(payload.analysis_id, gate_status, summary)

        try:
            if pr.provider == VcsProvider.GITHUB and settings.github_token:
                base = f"{GITHUB_API_URL}/repos/{pr.repo}/issues"
                await self._upsert_comment(
                    list_url=f"{base}/{pr.pr_number}/comments",
                    create_url=f"{base}/{pr.pr_number}/comments",
                    update_url=lambda comment_id: f"{base}/comments/{comment_id}",
                    update_method="PATCH",
                    headers=self._github_headers(),
                    marker=marker,
                    body=body,
                )
            elif pr.provider == VcsProvider.GITLAB and settings.gitlab_token:
                project_id = quote(pr.repo, safe="")
                base = (
                    f"{settings.gitlab_api_base_url}/projects/{project_id}"
                    f"/merge_requests/{pr.pr_number}/notes"
                )
                await self._upsert_comment(
                    list_url=base,
                    create_url=base,
                    update_url=lambda note_id: f"{base}/{note_id}",
                    update_method="PUT",
                    headers=self._gitlab_headers(),
                    marker=marker,
                    body=body,
                )
        except httpx.HTTPError as exc:
            logger.warning("Analysis %s: failed to publish PR comment: %s", payload.analysis_id, exc)

    async def _upsert_comment(
        self,
        list_url: str,
        create_url: str,
        update_url,
        update_method: str,
        headers: dict[str, str],
        marker: str,
        body: str,
    ) -> None:
        """Update the comment carrying ``marker``, or create one."""
        client = self._http()
        listing = await client.get(list_url, headers=headers, params={"per_page": 50})
        comments = listing.json() if listing.is_success else []
        if listing.is_error:
            logger.warning("Failed to list comments at %s (%s)", list_url, listing.status_code)

        existing = next((c for c in comments if marker in (c.get("body") or "")), None)
        if existing is not None:
            response = await client.request(
                update_method, update_url(existing["id"]), headers=headers, json={"body": body}
            )
        else:
            response = await client.post(create_url, headers=headers, json={"body": body})

        if response.is_error:
            logger.warning(
                "Failed to write comment (%s): %s", response.status_code, response.text
            )
