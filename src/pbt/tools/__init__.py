"""Tool integrations used by the pipeline: file writes, test runs and servers."""

from .server import ServerError, ServerProcess
from .test_runner import (
    DependencyInstallError,
    Diagnostic,
    SuiteResult,
    TestRunError,
    diagnose_output,
    ensure_dependencies_installed,
    parse_test_output,
    run_test_command,
)
from .workspace import WorkspaceWriteError, snapshot_files, write_files

__all__ = [
    "DependencyInstallError",
    "Diagnostic",
    "ServerError",
    "ServerProcess",
    "SuiteResult",
    "TestRunError",
    "WorkspaceWriteError",
    "diagnose_output",
    "ensure_dependencies_installed",
    "parse_test_output",
    "run_test_command",
    "snapshot_files",
    "write_files",
]
