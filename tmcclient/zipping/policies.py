"""Inclusion policies: decide which files and directories go into a submission.

Every policy is the shared no-submit rule composed with one variant rule.
Variants never see a path the no-submit rule rejected.
"""
from __future__ import annotations

import fnmatch
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from tmcclient.project import ProjectRoot, ProjectType

NO_SUBMIT_MARKER = ".tmcnosubmit"
SOURCE_ROOT_SEGMENT = "src"
BUILD_DESCRIPTOR = "pom.xml"
BUILD_OUTPUT_DIRS = {"target", "lib"}

Rule = Callable[[Path], bool]


class PolicyKind(str, Enum):
    DEFAULT = "default"
    BUILD_TOOL = "build_tool"
    UNCONDITIONAL = "unconditional"


@dataclass(frozen=True)
class InclusionPolicy:
    kind: PolicyKind
    root: ProjectRoot
    rule: Rule = field(repr=False, compare=False)

    def should_include(self, path: str | os.PathLike) -> bool:
        p = Path(path)
        return not_marked_no_submit(p) and self.rule(p)

    __call__ = should_include


# ── Shared rule ─────────────────────────────────────────────────────


def not_marked_no_submit(path: Path) -> bool:
    """Reject *.tmcnosubmit names and directories holding a .tmcnosubmit file."""
    if path.name.endswith(NO_SUBMIT_MARKER):
        return False
    if path.is_dir() and (path / NO_SUBMIT_MARKER).exists():
        return False
    return True


# ── Variant rules ───────────────────────────────────────────────────


def _relative_posix(root: ProjectRoot, path: Path) -> str:
    try:
        return path.relative_to(root.path).as_posix()
    except ValueError:
        return path.as_posix()


def matches_extra_student_file(rel: str, pattern: str) -> bool:
    """True if rel is, lies under, or leads to the pattern's location.

    Ancestors count as matches so the walker can descend to a nested
    extra file without opening up the rest of that directory.
    """
    pattern = pattern.strip("/")
    if not pattern or not rel:
        return False
    if rel == pattern or rel.startswith(pattern + "/"):
        return True
    if pattern.startswith(rel + "/"):
        return True
    return fnmatch.fnmatch(rel, pattern)


def default_rule(root: ProjectRoot) -> Rule:
    patterns = tuple(root.extra_student_files)

    def rule(path: Path) -> bool:
        rel = _relative_posix(root, path)
        if any(matches_extra_student_file(rel, p) for p in patterns):
            return True
        return SOURCE_ROOT_SEGMENT in rel.split("/")

    return rule


def build_tool_rule(root: ProjectRoot) -> Rule:
    def rule(path: Path) -> bool:
        # Only direct children of the exercise root are filtered.
        if (path.parent / BUILD_DESCRIPTOR).exists():
            return path.name not in BUILD_OUTPUT_DIRS
        return True

    return rule


def unconditional_rule(root: ProjectRoot) -> Rule:
    return lambda path: True


# ── Construction ────────────────────────────────────────────────────


_RULE_FACTORIES: dict[PolicyKind, Callable[[ProjectRoot], Rule]] = {
    PolicyKind.DEFAULT: default_rule,
    PolicyKind.BUILD_TOOL: build_tool_rule,
    PolicyKind.UNCONDITIONAL: unconditional_rule,
}

_KIND_BY_PROJECT_TYPE = {
    ProjectType.MAVEN: PolicyKind.BUILD_TOOL,
    ProjectType.UNIVERSAL: PolicyKind.UNCONDITIONAL,
    ProjectType.MAKEFILE: PolicyKind.DEFAULT,
    ProjectType.SIMPLE: PolicyKind.DEFAULT,
}


def make_policy(kind: PolicyKind, root: ProjectRoot) -> InclusionPolicy:
    return InclusionPolicy(kind=kind, root=root, rule=_RULE_FACTORIES[kind](root))


def policy_for(root: ProjectRoot) -> InclusionPolicy:
    """Build a fresh policy matching the project's type."""
    return make_policy(_KIND_BY_PROJECT_TYPE[root.project_type], root)
