"""Errors raised by the analysis pipeline."""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from codegate.services.docker_runner import ExecutionResult


class AnalysisNotFoundError(Exception):
    """The job references an analysis that does not exist."""
    pass


class WorkspaceError(Exception):
    """Source tree could not be prepared, or is empty."""
    pass


class AnalyzerRunError(Exception):
    """An analyzer container did not complete successfully. Fatal to the job."""

    def __init__(self, analyzer_key: str, result: "ExecutionResult"):
        self.analyzer_key = analyzer_key
        self.result = result
        self.error_type = result.error_type
        message = result.error or f"Analyzer {analyzer_key} failed"
        super().__init__(f"{analyzer_key}: {message}")
