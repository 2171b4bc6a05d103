from __future__ import annotations

import json
import os
import shlex
import sys
from pathlib import Path

import pytest

from pbt.tools.test_runner import (
    DependencyInstallError,
    TestRunError,
    diagnose_output,
    ensure_dependencies_installed,
    parse_test_output,
    run_test_command,
)

PYTHON = shlex.quote(sys.executable)


def _python(code: str) -> str:
    return f"{PYTHON} -c {shlex.quote(code)}"


def test_parse_counts_from_pytest_and_playwright_summaries() -> None:
    assert parse_test_output("==== 3 passed, 1 failed in 0.42s ====") == (3, 1)
    assert parse_test_output("  5 passed (2.1s)") == (5, 0)
    assert parse_test_output("no tests ran") == (0, 0)


def test_diagnose_known_failure_signatures() -> None:
    output = (
        "Error: http://localhost:4173 is already used\n"
        "Expected: 'Welcome'\nReceived: 'Hello'\n"
        "Timed out 5000ms waiting for locator('#app')\n"
    )

    diagnostics = {item.kind: item for item in diagnose_output(output)}

    assert set(diagnostics) == {"port_conflict", "assertion_mismatch", "timeout"}
    assert diagnostics["port_conflict"].remedy == "lsof -ti:4173 | xargs kill -9"


def test_port_conflict_without_url_uses_default_port() -> None:
    (diagnostic,) = diagnose_output("address is already used")

    assert diagnostic.remedy == "lsof -ti:3000 | xargs kill -9"


def test_clean_output_has_no_diagnostics() -> None:
    assert diagnose_output("4 passed in 0.10s") == []


def test_passing_command_returns_counts(tmp_path: Path) -> None:
    result = run_test_command(tmp_path, _python("print('2 passed in 0.01s')"))

    assert result.ok
    assert (result.passed, result.failed) == (2, 0)
    assert result.diagnostics == []


def test_failing_suite_is_a_result_with_diagnostics(tmp_path: Path) -> None:
    code = "import sys; print('1 passed, 1 failed'); print('Expected: 3'); print('Received: 4'); sys.exit(1)"

    result = run_test_command(tmp_path, _python(code))

    assert not result.ok
    assert result.exit_code == 1
    assert (result.passed, result.failed) == (1, 1)
    assert [item.kind for item in result.diagnostics] == ["assertion_mismatch"]


def test_environment_marks_ci_and_exposes_src(tmp_path: Path) -> None:
    (tmp_path / "src").mkdir()
    code = "import os; print(os.environ['CI']); print(os.environ['PYTHONPATH'])"

    result = run_test_command(tmp_path, _python(code), env={"PYTHONPATH": "elsewhere"})

    lines = result.output.splitlines()
    assert lines[0] == "true"
    assert lines[1].split(os.pathsep) == [str(tmp_path / "src"), "elsewhere"]


def test_missing_test_command_raises(tmp_path: Path) -> None:
    with pytest.raises(TestRunError, match="Test command not found") as excinfo:
        run_test_command(tmp_path, "definitely-not-a-real-runner --quiet")

    assert excinfo.value.remedy


def test_unlaunchable_test_command_carries_remedy(tmp_path: Path) -> None:
    script = tmp_path / "run-tests.sh"
    script.write_text("#!/bin/sh\necho ok\n", encoding="utf-8")
    script.chmod(0o644)

    with pytest.raises(TestRunError) as excinfo:
        run_test_command(tmp_path, shlex.quote(str(script)))

    assert "Failed to start" in str(excinfo.value)
    assert excinfo.value.remedy


def test_blank_test_command_raises(tmp_path: Path) -> None:
    with pytest.raises(TestRunError, match="No test command"):
        run_test_command(tmp_path, "   ")


def test_hanging_command_times_out(tmp_path: Path) -> None:
    with pytest.raises(TestRunError, match="timed out"):
        run_test_command(tmp_path, _python("import time; time.sleep(10)"), timeout=0.5)


def test_install_runs_once_per_manifest_fingerprint(tmp_path: Path) -> None:
    (tmp_path / "requirements.txt").write_text("requests\n", encoding="utf-8")
    sentinel = tmp_path / "state" / "deps-installed.json"
    command = _python("print('installed')")

    assert ensure_dependencies_installed(tmp_path, command=command, sentinel=sentinel)
    assert not ensure_dependencies_installed(tmp_path, command=command, sentinel=sentinel)
    assert json.loads(sentinel.read_text(encoding="utf-8"))["files"] == ["requirements.txt"]

    (tmp_path / "requirements.txt").write_text("requests\npyyaml\n", encoding="utf-8")
    assert ensure_dependencies_installed(tmp_path, command=command, sentinel=sentinel)
    assert ensure_dependencies_installed(tmp_path, command=command, sentinel=sentinel, force=True)


def test_install_skipped_without_manifest(tmp_path: Path) -> None:
    sentinel = tmp_path / "deps.json"

    assert not ensure_dependencies_installed(tmp_path, command=_python("raise SystemExit(1)"), sentinel=sentinel)
    assert not sentinel.exists()


def test_failed_install_raises_with_remedy(tmp_path: Path) -> None:
    (tmp_path / "requirements.txt").write_text("nope==0\n", encoding="utf-8")
    command = _python("import sys; sys.stderr.write('no matching distribution'); sys.exit(3)")

    with pytest.raises(DependencyInstallError, match="exit code 3") as excinfo:
        ensure_dependencies_installed(tmp_path, command=command, sentinel=tmp_path / "deps.json")

    assert "no matching distribution" in excinfo.value.output
    assert excinfo.value.remedy == f"cd {tmp_path} && {command}"
    assert not (tmp_path / "deps.json").exists()
