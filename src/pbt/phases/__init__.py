"""Agent roles driven by the pipeline."""

from __future__ import annotations

from enum import Enum


class RoleName(str, Enum):
    """Enumeration of the supported agent roles."""

    BACKLOGS = "backlogs"
    PLAN = "plan"
    REFACTOR = "refactor"
    BUILD = "build"
    CREATE_TESTS = "create_tests"
    FIX_TESTS = "fix_tests"
    REVIEW = "review"


ROLE_TITLES = {
    RoleName.BACKLOGS: "Architect",
    RoleName.PLAN: "Architect",
    RoleName.REFACTOR: "Refactoring Architect",
    RoleName.BUILD: "Coder",
    RoleName.CREATE_TESTS: "Tester",
    RoleName.FIX_TESTS: "Tester",
    RoleName.REVIEW: "Code Reviewer",
}


__all__ = ["ROLE_TITLES", "RoleName"]
