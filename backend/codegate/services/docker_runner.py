"""Sandboxed execution of analyzer containers."""

import asyncio
import json
import logging
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator

import docker
from docker.models.containers import Container
from pydantic import ValidationError

from codegate.config import get_settings
from codegate.schemas.report import AnalyzerMeasures, AnalyzerReport

logger = logging.getLogger(__name__)
settings = get_settings()


class ExecutionErrorType(str, Enum):
    TIMEOUT = "timeout"
    OOM = "oom"
    DOCKER = "docker"
    EXIT_CODE = "exit_code"
    UNKNOWN = "unknown"


@dataclass
class ExecutionResult:
    """Outcome of one analyzer container run."""

    success: bool
    log_path: str
    exit_code: int | None = None
    container_id: str | None = None
    report_path: str | None = None
    measures_path: str | None = None
    report: AnalyzerReport | None = None
    measures: dict[str, float] | None = None
    error: str | None = None
    error_type: ExecutionErrorType | None = None


class DockerRunner:
    """Runs one analyzer image against a read-only workspace.

    The container sees the source tree at /workspace (read-only) and writes
    report.json, measures.json into /out. Exit codes 0 and 1 are accepted,
    since many linters exit 1 when findings are present.
    """

    WORKSPACE_MOUNT = "/workspace"
    OUTPUT_MOUNT = "/out"
    OK_EXIT_CODES = frozenset({0, 1})
    SIGKILL_EXIT_CODE = 137
    REPORT_FILE = "report.json"
    MEASURES_FILE = "measures.json"
    LOG_FILE = "run.log"
    LOG_DRAIN_TIMEOUT = 10.0

    def __init__(self, client: docker.DockerClient | None = None):
        self._client = client

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.DockerClient(base_url=settings.docker_base_url)
        return self._client

    async def check_health(self) -> None:
        """Raise if the Docker daemon is not reachable."""
        await asyncio.to_thread(self.client.ping)

    async def run(
        self,
        image: str,
        workspace_path: str,
        output_path: str,
        env: dict[str, str] | None = None,
        timeout_ms: int = 5 * 60 * 1000,
        memory_mb: int | None = None,
        cpu_limit: float | None = None,
    ) -> ExecutionResult:
        """Run the analyzer and classify the outcome. Never raises."""
        os.makedirs(output_path, exist_ok=True)
        log_path = os.path.join(output_path, self.LOG_FILE)
        report_path = os.path.join(output_path, self.REPORT_FILE)
        measures_path = os.path.join(output_path, self.MEASURES_FILE)

        result = ExecutionResult(
            success=False,
            log_path=log_path,
            report_path=report_path,
            measures_path=measures_path,
        )
        timed_out = False

        try:
            async with self._container(
                image, workspace_path, output_path, env or {}, memory_mb, cpu_limit
            ) as container:
                result.container_id = container.id
                await asyncio.to_thread(container.start)
                log_task = asyncio.create_task(
                    asyncio.to_thread(self._stream_logs, container, log_path)
                )
                try:
                    status = await asyncio.wait_for(
                        asyncio.to_thread(container.wait), timeout=timeout_ms / 1000
                    )
                except asyncio.TimeoutError:
                    timed_out = True
                    await self._kill(container)
                finally:
                    await self._drain_logs(log_task)

                if timed_out:
                    return self._timeout(result, timeout_ms)

                exit_code = (status or {}).get("StatusCode", 0)
                result.exit_code = exit_code

                if exit_code == self.SIGKILL_EXIT_CODE and await self._oom_killed(container):
                    limit = f"{memory_mb}MB" if memory_mb else "default"
                    result.error = f"Analysis failed: Out of memory (limit: {limit})"
                    result.error_type = ExecutionErrorType.OOM
                    return result

                if exit_code not in self.OK_EXIT_CODES:
                    result.error = f"Container exited with code {exit_code}"
                    result.error_type = ExecutionErrorType.EXIT_CODE
                    return result

            result.report = self._load_report(report_path)
            result.measures = self._load_measures(measures_path).metrics
            result.success = True
            return result

        except docker.errors.DockerException as exc:
            if timed_out:
                return self._timeout(result, timeout_ms)
            logger.error("Docker error running %s: %s", image, exc)
            result.error = f"Docker error: {exc}"
            result.error_type = ExecutionErrorType.DOCKER
            return result
        except Exception as exc:
            if timed_out:
                return self._timeout(result, timeout_ms)
            message = str(exc) or "Docker run failed"
            lowered = message.lower()
            if any(word in lowered for word in ("docker", "container", "image")):
                result.error = f"Docker error: {message}"
                result.error_type = ExecutionErrorType.DOCKER
            else:
                result.error = message
                result.error_type = ExecutionErrorType.UNKNOWN
            logger.exception("Analyzer run failed for %s", image)
            return result

    @asynccontextmanager
    async def _container(
        self,
        image: str,
        workspace_path: str,
        output_path: str,
        env: dict[str, str],
        memory_mb: int | None,
        cpu_limit: float | None,
    ) -> AsyncIterator[Container]:
        """Create the container and always remove it afterwards."""
        kwargs = {
            "environment": env,
            "volumes": {
                workspace_path: {"bind": self.WORKSPACE_MOUNT, "mode": "ro"},
                output_path: {"bind": self.OUTPUT_MOUNT, "mode": "rw"},
            },
            "tty": False,
            "detach": True,
            "auto_remove": False,
        }
        if memory_mb is not None and memory_mb > 0:
            kwargs["mem_limit"] = memory_mb * 1024 * 1024
        if cpu_limit is not None and cpu_limit > 0:
            kwargs["nano_cpus"] = int(cpu_limit * 1e9)

        container = await asyncio.to_thread(self.client.containers.create, image, **kwargs)
        try:
            yield container
        finally:
            try:
                await asyncio.to_thread(container.remove, force=True)
            except docker.errors.DockerException as exc:
                logger.warning("Failed to remove container %s: %s", container.id, exc)

    def _stream_logs(self, container: Container, log_path: str) -> None:
        with open(log_path, "ab") as handle:
            for chunk in container.logs(stream=True, follow=True, stdout=True, stderr=True):
                handle.write(chunk)

    async def _drain_logs(self, log_task: asyncio.Task) -> None:
        try:
            await asyncio.wait_for(log_task, timeout=self.LOG_DRAIN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Log stream did not close within %ss", self.LOG_DRAIN_TIMEOUT)
        except Exception as exc:
            logger.warning("Log streaming failed: %s", exc)

    async def _kill(self, container: Container) -> None:
        try:
            await asyncio.to_thread(container.kill)
        except docker.errors.DockerException as exc:
            logger.warning("Failed to kill container %s: %s", container.id, exc)

    async def _oom_killed(self, container: Container) -> bool:
        try:
            await asyncio.to_thread(container.reload)
        except docker.errors.DockerException as exc:
            logger.warning("Failed to inspect container %s: %s", container.id, exc)
            return False
        state = (container.attrs or {}).get("State") or {}
        return bool(state.get("OOMKilled"))

    def _timeout(self, result: ExecutionResult, timeout_ms: int) -> ExecutionResult:
        result.success = False
        result.error = f"Analysis timed out after {timeout_ms}ms"
        result.error_type = ExecutionErrorType.TIMEOUT
        return result

    def _load_report(self, report_path: str) -> AnalyzerReport:
        report = self._read_json(report_path, AnalyzerReport)
        if report is None:
            logger.warning("Missing or invalid %s, substituting empty report", report_path)
            report = AnalyzerReport.empty()
            self._write_default(report_path, report.to_json())
        return report

    def _load_measures(self, measures_path: str) -> AnalyzerMeasures:
        measures = self._read_json(measures_path, AnalyzerMeasures)
        if measures is None:
            logger.warning("Missing or invalid %s, substituting empty measures", measures_path)
            measures = AnalyzerMeasures.empty()
            self._write_default(measures_path, measures.to_json())
        return measures

    def _read_json(self, path: str, model):
        try:
            with open(path, "r", encoding="utf-8") as handle:
                return model.model_validate(json.load(handle))
        except (OSError, ValueError, ValidationError):
            return None

    def _write_default(self, path: str, content: str) -> None:
        try:
            with open(path, "w", encoding="utf-8") as handle:
                handle.write(content)
        except OSError as exc:
            logger.warning("Could not persist default %s: %s", path, exc)
