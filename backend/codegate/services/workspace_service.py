"""Workspace preparation: source download, extraction and language detection."""

import asyncio
import logging
import os
import shutil
import tempfile
import zipfile
from collections import Counter
from pathlib import Path

from codegate.config import get_settings
from codegate.exceptions import WorkspaceError
from codegate.services.storage_service import ObjectStorage

logger = logging.getLogger(__name__)
settings = get_settings()

EXTENSION_LANGUAGES = {
    ".js": "JavaScript/TypeScript",
    ".jsx": "JavaScript/TypeScript",
    ".ts": "JavaScript/TypeScript",
    ".tsx": "JavaScript/TypeScript",
    ".mjs": "JavaScript/TypeScript",
    ".cjs": "JavaScript/TypeScript",
    ".py": "Python",
    ".pyw": "Python",
    ".pyx": "Python",
    ".java": "Java",
    ".go": "Go",
    ".php": "PHP",
    ".rs": "Rust",
    ".cs": "C#",
    ".rb": "Ruby",
    ".swift": "Swift",
    ".kt": "Kotlin",
    ".kts": "Kotlin",
}

# Project manifests recognized by file name
MANIFEST_LANGUAGES = {
    "package.json": "JavaScript/TypeScript",
    "tsconfig.json": "JavaScript/TypeScript",
    "requirements.txt": "Python",
    "setup.py": "Python",
    "pyproject.toml": "Python",
    "pom.xml": "Java",
    "build.gradle": "Java",
    "go.mod": "Go",
    "composer.json": "PHP",
    "Cargo.toml": "Rust",
    "Gemfile": "Ruby",
    "Package.swift": "Swift",
}

IGNORED_DIRS = {
    "node_modules",
    "dist",
    "build",
    "target",
    "bin",
    "obj",
    "coverage",
    "__pycache__",
    "vendor",
}

MAX_SCAN_DEPTH = 10


def detect_language_from_path(file_path: str) -> str | None:
    name = os.path.basename(file_path)
    if name in MANIFEST_LANGUAGES:
        return MANIFEST_LANGUAGES[name]
    return EXTENSION_LANGUAGES.get(os.path.splitext(name)[1].lower())


def detect_languages(workspace_path: str) -> list[str]:
    """Languages found in the workspace, most files first."""
    counts: Counter[str] = Counter()

    def scan(directory: str, depth: int) -> None:
        if depth > MAX_SCAN_DEPTH:
            return
        try:
            entries = list(os.scandir(directory))
        except OSError as exc:
            logger.debug("Skipping %s during language detection: %s", directory, exc)
            return
        for entry in entries:
            if entry.is_dir(follow_symlinks=False):
                if entry.name in IGNORED_DIRS or entry.name.startswith("."):
                    continue
                scan(entry.path, depth + 1)
            elif entry.is_file(follow_symlinks=False):
                language = detect_language_from_path(entry.name)
                if language:
                    counts[language] += 1

    scan(workspace_path, 0)
    return [language for language, _ in counts.most_common()]


def directory_has_files(directory: str) -> bool:
    for _root, _dirs, files in os.walk(directory):
        if files:
            return True
    return False


def safe_extract(archive: zipfile.ZipFile, target: str) -> None:
    """Extract a zip, rejecting entries that resolve outside ``target``."""
    root = Path(target).resolve()
    for member in archive.infolist():
        destination = (root / member.filename).resolve()
        if destination != root and root not in destination.parents:
            raise WorkspaceError(f"Archive entry escapes workspace: {member.filename}")
    archive.extractall(root)


class WorkspaceService:
    """Prepares per-analysis source trees and analyzer output directories."""

    SOURCE_ARCHIVE = "source.zip"

    def __init__(self, storage: ObjectStorage | None = None):
        self.storage = storage or ObjectStorage()

    def workspace_root(self, analysis_id: str) -> str:
        return os.path.join(settings.workspace_base, str(analysis_id))

    async def prepare_out_dir(self, analysis_id: str, analyzer_key: str | None = None) -> str:
        """Create a fresh output directory for one analyzer run."""
        os.makedirs(settings.out_base, exist_ok=True)
        prefix = f"{analysis_id}-{analyzer_key}-" if analyzer_key else f"{analysis_id}-"
        return tempfile.mkdtemp(prefix=prefix, dir=settings.out_base)

    async def download_and_extract_source(
        self, object_key: str, analysis_id: str, bucket: str | None = None
    ) -> str:
        """Fetch the source archive and extract it. Returns the repo directory."""
        root = self.workspace_root(analysis_id)
        shutil.rmtree(root, ignore_errors=True)
        os.makedirs(root, exist_ok=True)

        data = await self.storage.get_object(bucket or settings.minio_bucket_sources, object_key)
        if not data:
            raise WorkspaceError("Empty source download")

        zip_path = os.path.join(root, self.SOURCE_ARCHIVE)
        repo_path = os.path.join(root, "repo")
        await asyncio.to_thread(self._write_and_extract, data, zip_path, repo_path)

        if not directory_has_files(repo_path):
            raise WorkspaceError(
                f"Extracted workspace is empty at {repo_path}. Source archive may be empty."
            )
        logger.info("Analysis %s: extracted %s into %s", analysis_id, object_key, repo_path)
        return repo_path

    def _write_and_extract(self, data: bytes, zip_path: str, repo_path: str) -> None:
        with open(zip_path, "wb") as handle:
            handle.write(data)
        try:
            with zipfile.ZipFile(zip_path) as archive:
                safe_extract(archive, repo_path)
        except zipfile.BadZipFile as exc:
            raise WorkspaceError(f"Invalid source archive: {exc}") from exc

    async def resolve_workspace(
        self,
        analysis_id: str,
        source_object_key: str | None,
        workspace_path: str | None,
    ) -> str:
        """Pick the source tree: uploaded archive, explicit path, then the default."""
        if source_object_key:
            path = await self.download_and_extract_source(source_object_key, analysis_id)
        else:
            path = workspace_path or settings.workspace_default

        if not directory_has_files(path):
            logger.error("Analysis %s: workspace %s is empty, aborting analyzers", analysis_id, path)
            raise WorkspaceError(f"Workspace is empty at {path}")
        return path

    def cleanup(self, analysis_id: str) -> None:
        """Remove the extracted workspace of an analysis, if any."""
        shutil.rmtree(self.workspace_root(analysis_id), ignore_errors=True)
