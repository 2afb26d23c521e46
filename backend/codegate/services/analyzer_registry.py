"""Resolves the analyzers that run for a project."""

import json
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from codegate.exceptions import AnalysisNotFoundError
from codegate.models.analyzer import Analyzer, ProjectAnalyzer
from codegate.models.project import Project


@dataclass
class ActiveAnalyzer:
    key: str
    docker_image: str
    config_json: dict[str, Any] | None = None

    def container_env(self, analysis_id: str, project_key: str, commit_sha: str) -> dict[str, str]:
        """Environment every analyzer container receives."""
        return {
            "ANALYSIS_ID": str(analysis_id),
            "PROJECT_KEY": project_key,
            "COMMIT_SHA": commit_sha,
            "ANALYZER_KEY": self.key,
            "ANALYZER_CONFIG": json.dumps(self.config_json) if self.config_json else "",
        }


class AnalyzerRegistry:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_project(self, project_key: str) -> Project:
        result = await self.db.execute(select(Project).where(Project.key == project_key))
        project = result.scalar_one_or_none()
        if project is None:
            raise AnalysisNotFoundError(f"Project {project_key} not found")
        return project

    async def get_active_analyzers(self, project_key: str) -> list[ActiveAnalyzer]:
        """Globally enabled analyzers not disabled by the project, in creation order."""
        project = await self.get_project(project_key)

        analyzers = (
            await self.db.execute(select(Analyzer).order_by(Analyzer.created_at.asc()))
        ).scalars().all()
        overrides = (
            await self.db.execute(
                select(ProjectAnalyzer).where(ProjectAnalyzer.project_id == project.id)
            )
        ).scalars().all()
        by_analyzer = {override.analyzer_id: override for override in overrides}

        active = []
        for analyzer in analyzers:
            override = by_analyzer.get(analyzer.id)
            project_enabled = override.enabled if override and override.enabled is not None else True
            if not (analyzer.enabled and project_enabled and analyzer.docker_image):
                continue
            active.append(
                ActiveAnalyzer(
                    key=analyzer.key,
                    docker_image=analyzer.docker_image,
                    config_json=override.config_json if override else None,
                )
            )
        return active
