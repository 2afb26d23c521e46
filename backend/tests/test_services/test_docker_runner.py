"""Tests for the sandboxed analyzer runner."""

import json
import os
import threading
from unittest.mock import MagicMock

import docker
import pytest


def make_container(exit_code=0, oom_killed=False, logs=(b"analyzing...\n",)):
    container = MagicMock()
    container.id = "c0ffee"
    container.wait.return_value = {"StatusCode": exit_code}
    container.logs.return_value = iter(logs)
    container.attrs = {"State": {"OOMKilled": oom_killed}}
    return container


def make_runner(container):
    from codegate.services.docker_runner import DockerRunner

    client = MagicMock()
    client.containers.create.return_value = container
    return DockerRunner(client=client), client


class TestDockerRunnerSuccess:
    """Accepted exits and output loading."""

    @pytest.mark.asyncio
    async def test_exit_zero_loads_report_and_measures(self, tmp_path, sample_report, sample_measures):
        """Valid output files are parsed on exit 0."""
        (tmp_path / "report.json").write_text(json.dumps(sample_report))
        (tmp_path / "measures.json").write_text(json.dumps(sample_measures))
        container = make_container(exit_code=0)
        runner, _ = make_runner(container)

        result = await runner.run("eslint:latest", "/src", str(tmp_path), env={"A": "1"})

        assert result.success is True
        assert result.exit_code == 0
        assert result.error_type is None
        assert len(result.report.issues) == 2
        assert result.measures == {"lines_of_code": 1200, "coverage": 81.5}

    @pytest.mark.asyncio
    async def test_exit_one_is_success(self, tmp_path, sample_report):
        """Exit 1 means findings present, not failure."""
        (tmp_path / "report.json").write_text(json.dumps(sample_report))
        runner, _ = make_runner(make_container(exit_code=1))

        result = await runner.run("eslint:latest", "/src", str(tmp_path))

        assert result.success is True
        assert result.exit_code == 1

    @pytest.mark.asyncio
    async def test_missing_report_defaults_to_empty(self, tmp_path):
        """Absent report.json is replaced with an empty report that is persisted."""
        runner, _ = make_runner(make_container(exit_code=0))

        result = await runner.run("eslint:latest", "/src", str(tmp_path))

        assert result.success is True
        assert result.report.issues == []
        assert result.measures == {}
        persisted = json.loads((tmp_path / "report.json").read_text())
        assert persisted["issues"] == []
        assert json.loads((tmp_path / "measures.json").read_text()) == {"metrics": {}}

    @pytest.mark.asyncio
    async def test_invalid_report_defaults_to_empty(self, tmp_path):
        """Schema-invalid report.json is replaced rather than failing the run."""
        (tmp_path / "report.json").write_text(json.dumps({"issues": [{"ruleKey": ""}]}))
        (tmp_path / "measures.json").write_text("{not json")
        runner, _ = make_runner(make_container(exit_code=0))

        result = await runner.run("eslint:latest", "/src", str(tmp_path))

        assert result.success is True
        assert result.report.issues == []
        assert result.measures == {}

    @pytest.mark.asyncio
    async def test_logs_are_written(self, tmp_path):
        """Container output is streamed to run.log."""
        runner, _ = make_runner(make_container(logs=(b"line 1\n", b"line 2\n")))

        result = await runner.run("eslint:latest", "/src", str(tmp_path))

        assert result.log_path == os.path.join(str(tmp_path), "run.log")
        assert (tmp_path / "run.log").read_bytes() == b"line 1\nline 2\n"


class TestDockerRunnerContainerConfig:
    """Mounts, env and resource limits."""

    @pytest.mark.asyncio
    async def test_mounts_and_env(self, tmp_path):
        """Workspace is mounted read-only and output read-write."""
        runner, client = make_runner(make_container())

        await runner.run("img", "/src", str(tmp_path), env={"ANALYSIS_ID": "a1"})

        args, kwargs = client.containers.create.call_args
        assert args == ("img",)
        assert kwargs["volumes"]["/src"] == {"bind": "/workspace", "mode": "ro"}
        assert kwargs["volumes"][str(tmp_path)] == {"bind": "/out", "mode": "rw"}
        assert kwargs["environment"] == {"ANALYSIS_ID": "a1"}

    @pytest.mark.asyncio
    async def test_resource_limits_applied(self, tmp_path):
        """Memory and CPU limits map to mem_limit and nano_cpus."""
        runner, client = make_runner(make_container())

        await runner.run("img", "/src", str(tmp_path), memory_mb=512, cpu_limit=1.5)

        kwargs = client.containers.create.call_args.kwargs
        assert kwargs["mem_limit"] == 512 * 1024 * 1024
        assert kwargs["nano_cpus"] == 1_500_000_000

    @pytest.mark.asyncio
    async def test_no_limits_when_unset(self, tmp_path):
        """Limits are omitted entirely when not configured."""
        runner, client = make_runner(make_container())

        await runner.run("img", "/src", str(tmp_path))

        kwargs = client.containers.create.call_args.kwargs
        assert "mem_limit" not in kwargs
        assert "nano_cpus" not in kwargs


class TestDockerRunnerFailures:
    """Error taxonomy and cleanup."""

    @pytest.mark.asyncio
    async def test_oom_killed(self, tmp_path):
        """Exit 137 with OOMKilled state is classified as oom."""
        from codegate.services.docker_runner import ExecutionErrorType

        container = make_container(exit_code=137, oom_killed=True)
        runner, _ = make_runner(container)

        result = await runner.run("img", "/src", str(tmp_path), memory_mb=256)

        assert result.success is False
        assert result.error_type == ExecutionErrorType.OOM
        assert "256MB" in result.error
        container.remove.assert_called_once_with(force=True)

    @pytest.mark.asyncio
    async def test_sigkill_without_oom_is_exit_code(self, tmp_path):
        """Exit 137 without OOMKilled is a plain exit-code failure."""
        from codegate.services.docker_runner import ExecutionErrorType

        runner, _ = make_runner(make_container(exit_code=137, oom_killed=False))

        result = await runner.run("img", "/src", str(tmp_path))

        assert result.success is False
        assert result.error_type == ExecutionErrorType.EXIT_CODE
        assert result.exit_code == 137

    @pytest.mark.asyncio
    async def test_unsupported_exit_code(self, tmp_path, sample_report):
        """Exit codes other than 0 and 1 fail even with a report present."""
        from codegate.services.docker_runner import ExecutionErrorType

        (tmp_path / "report.json").write_text(json.dumps(sample_report))
        runner, _ = make_runner(make_container(exit_code=2))

        result = await runner.run("img", "/src", str(tmp_path))

        assert result.success is False
        assert result.error_type == ExecutionErrorType.EXIT_CODE
        assert result.report is None
        assert "code 2" in result.error

    @pytest.mark.asyncio
    async def test_timeout_kills_container(self, tmp_path):
        """A container running past its timeout is killed and removed."""
        from codegate.services.docker_runner import ExecutionErrorType

        killed = threading.Event()
        container = make_container()
        container.wait.side_effect = lambda: killed.wait(5) and {"StatusCode": 137}
        container.kill.side_effect = killed.set
        runner, _ = make_runner(container)

        result = await runner.run("img", "/src", str(tmp_path), timeout_ms=50)

        assert result.success is False
        assert result.error_type == ExecutionErrorType.TIMEOUT
        assert "50ms" in result.error
        container.kill.assert_called_once()
        container.remove.assert_called_once_with(force=True)

    @pytest.mark.asyncio
    async def test_image_pull_failure_is_docker_error(self, tmp_path):
        """Daemon and image errors are infrastructure failures."""
        from codegate.services.docker_runner import DockerRunner, ExecutionErrorType

        client = MagicMock()
        client.containers.create.side_effect = docker.errors.ImageNotFound("no such image")
        runner = DockerRunner(client=client)

        result = await runner.run("missing:latest", "/src", str(tmp_path))

        assert result.success is False
        assert result.error_type == ExecutionErrorType.DOCKER
        assert result.error.startswith("Docker error")

    @pytest.mark.asyncio
    async def test_container_removed_when_start_fails(self, tmp_path):
        """Cleanup runs even when the container fails to start."""
        from codegate.services.docker_runner import ExecutionErrorType

        container = make_container()
        container.start.side_effect = docker.errors.APIError("cannot start")
        runner, _ = make_runner(container)

        result = await runner.run("img", "/src", str(tmp_path))

        assert result.error_type == ExecutionErrorType.DOCKER
        container.remove.assert_called_once_with(force=True)

    @pytest.mark.asyncio
    async def test_unexpected_error_is_unknown(self, tmp_path):
        """Errors unrelated to Docker are classified as unknown."""
        from codegate.services.docker_runner import ExecutionErrorType

        container = make_container()
        container.wait.side_effect = RuntimeError("boom")
        runner, _ = make_runner(container)

        result = await runner.run("img", "/src", str(tmp_path))

        assert result.success is False
        assert result.error_type == ExecutionErrorType.UNKNOWN
        assert result.error == "boom"
        container.remove.assert_called_once_with(force=True)
