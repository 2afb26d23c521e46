"""Tests for workspace preparation and language detection."""

import io
import os
import zipfile
from unittest.mock import AsyncMock

import pytest


def make_zip(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, content in files.items():
            archive.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def workspace_settings(tmp_path, monkeypatch):
    from codegate.services import workspace_service

    monkeypatch.setattr(workspace_service.settings, "workspace_base", str(tmp_path / "ws"))
    monkeypatch.setattr(workspace_service.settings, "out_base", str(tmp_path / "out"))
    monkeypatch.setattr(workspace_service.settings, "workspace_default", str(tmp_path / "default"))
    return workspace_service.settings


class TestLanguageDetection:
    @pytest.mark.parametrize(
        "path,language",
        [
            ("src/app.tsx", "JavaScript/TypeScript"),
            ("main.PY", "Python"),
            ("service/Main.java", "Java"),
            ("go.mod", "Go"),
            ("Cargo.toml", "Rust"),
            ("README.md", None),
        ],
    )
    def test_detect_language_from_path(self, path, language):
        from codegate.services.workspace_service import detect_language_from_path

        assert detect_language_from_path(path) == language

    def test_most_common_first(self, tmp_path):
        from codegate.services.workspace_service import detect_languages

        (tmp_path / "a.py").write_text("")
        (tmp_path / "pkg").mkdir()
        (tmp_path / "pkg" / "b.py").write_text("")
        (tmp_path / "index.js").write_text("")

        assert detect_languages(str(tmp_path)) == ["Python", "JavaScript/TypeScript"]

    def test_ignored_and_hidden_dirs(self, tmp_path):
        from codegate.services.workspace_service import detect_languages

        for directory in ("node_modules", ".git", "vendor"):
            (tmp_path / directory).mkdir()
            (tmp_path / directory / "x.js").write_text("")
        (tmp_path / "main.go").write_text("")

        assert detect_languages(str(tmp_path)) == ["Go"]

    def test_missing_directory(self, tmp_path):
        from codegate.services.workspace_service import detect_languages

        assert detect_languages(str(tmp_path / "nope")) == []


class TestSafeExtract:
    def test_rejects_path_traversal(self, tmp_path):
        from codegate.exceptions import WorkspaceError
        from codegate.services.workspace_service import safe_extract

        data = make_zip({"../evil.txt": "x"})

        with zipfile.ZipFile(io.BytesIO(data)) as archive:
            with pytest.raises(WorkspaceError):
                safe_extract(archive, str(tmp_path / "repo"))
        assert not (tmp_path / "evil.txt").exists()


class TestWorkspaceService:
    @pytest.mark.asyncio
    async def test_download_and_extract(self, workspace_settings):
        from codegate.services.workspace_service import WorkspaceService

        storage = AsyncMock()
        storage.get_object.return_value = make_zip({"src/app.py": "print('hi')\n"})
        service = WorkspaceService(storage=storage)

        repo = await service.resolve_workspace("a1", "sources/a1.zip", None)

        assert repo == os.path.join(workspace_settings.workspace_base, "a1", "repo")
        assert os.path.isfile(os.path.join(repo, "src", "app.py"))
        storage.get_object.assert_awaited_once_with(
            workspace_settings.minio_bucket_sources, "sources/a1.zip"
        )

    @pytest.mark.asyncio
    async def test_empty_download(self, workspace_settings):
        from codegate.exceptions import WorkspaceError
        from codegate.services.workspace_service import WorkspaceService

        storage = AsyncMock()
        storage.get_object.return_value = b""

        with pytest.raises(WorkspaceError, match="Empty source download"):
            await WorkspaceService(storage=storage).resolve_workspace("a1", "k", None)

    @pytest.mark.asyncio
    async def test_archive_without_files(self, workspace_settings):
        from codegate.exceptions import WorkspaceError
        from codegate.services.workspace_service import WorkspaceService

        storage = AsyncMock()
        storage.get_object.return_value = make_zip({})

        with pytest.raises(WorkspaceError, match="empty"):
            await WorkspaceService(storage=storage).resolve_workspace("a1", "k", None)

    @pytest.mark.asyncio
    async def test_corrupt_archive(self, workspace_settings):
        from codegate.exceptions import WorkspaceError
        from codegate.services.workspace_service import WorkspaceService

        storage = AsyncMock()
        storage.get_object.return_value = b"not a zip"

        with pytest.raises(WorkspaceError, match="Invalid source archive"):
            await WorkspaceService(storage=storage).resolve_workspace("a1", "k", None)

    @pytest.mark.asyncio
    async def test_explicit_path(self, tmp_path, workspace_settings):
        from codegate.services.workspace_service import WorkspaceService

        (tmp_path / "checkout").mkdir()
        (tmp_path / "checkout" / "main.go").write_text("package main")

        path = await WorkspaceService(storage=AsyncMock()).resolve_workspace(
            "a1", None, str(tmp_path / "checkout")
        )

        assert path == str(tmp_path / "checkout")

    @pytest.mark.asyncio
    async def test_empty_default_workspace(self, workspace_settings):
        from codegate.exceptions import WorkspaceError
        from codegate.services.workspace_service import WorkspaceService

        os.makedirs(workspace_settings.workspace_default)

        with pytest.raises(WorkspaceError):
            await WorkspaceService(storage=AsyncMock()).resolve_workspace("a1", None, None)

    @pytest.mark.asyncio
    async def test_out_dirs_are_unique(self, workspace_settings):
        from codegate.services.workspace_service import WorkspaceService

        service = WorkspaceService(storage=AsyncMock())

        first = await service.prepare_out_dir("a1", "eslint")
        second = await service.prepare_out_dir("a1", "eslint")

        assert first != second
        assert os.path.basename(first).startswith("a1-eslint-")

    @pytest.mark.asyncio
    async def test_cleanup(self, workspace_settings):
        from codegate.services.workspace_service import WorkspaceService

        storage = AsyncMock()
        storage.get_object.return_value = make_zip({"a.py": "x"})
        service = WorkspaceService(storage=storage)
        await service.resolve_workspace("a1", "k", None)

        service.cleanup("a1")

        assert not os.path.exists(service.workspace_root("a1"))
