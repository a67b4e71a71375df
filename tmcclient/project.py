"""Project root detection: project type from marker files, project file settings."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

PROJECT_FILE_NAME = ".tmcproject.yml"


class ProjectType(str, Enum):
    MAVEN = "maven"
    UNIVERSAL = "universal"
    MAKEFILE = "makefile"
    SIMPLE = "simple"


# Checked in order; the first marker present decides the type.
PROJECT_MARKERS: list[tuple[str, ProjectType]] = [
    ("pom.xml", ProjectType.MAVEN),
    (".universal", ProjectType.UNIVERSAL),
    ("Makefile", ProjectType.MAKEFILE),
]


@dataclass(frozen=True)
class ProjectRoot:
    path: Path
    project_type: ProjectType = ProjectType.SIMPLE
    extra_student_files: tuple[str, ...] = field(default_factory=tuple)

    @property
    def name(self) -> str:
        return self.path.name


def detect_project_type(path: str | os.PathLike) -> ProjectType:
    root = Path(path)
    for marker, project_type in PROJECT_MARKERS:
        if (root / marker).exists():
            return project_type
    return ProjectType.SIMPLE


def load_extra_student_files(path: str | os.PathLike) -> tuple[str, ...]:
    """Read ``extra_student_files`` from the project file, if any.

    A missing, unreadable or malformed project file means no extra files.
    """
    project_file = Path(path) / PROJECT_FILE_NAME
    if not project_file.is_file():
        return ()
    try:
        with open(project_file, "r", encoding="utf-8") as f:
            doc = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.debug("Failed to read %s: %s", project_file, e)
        return ()

    if not isinstance(doc, dict):
        return ()
    files = doc.get("extra_student_files") or []
    if isinstance(files, str):
        files = [files]
    if not isinstance(files, list):
        logger.debug("Ignoring non-list extra_student_files in %s", project_file)
        return ()
    return tuple(str(f).strip() for f in files if str(f).strip())


def detect_project(path: str | os.PathLike) -> ProjectRoot:
    """Compute the ProjectRoot for a directory. Never cached."""
    root = Path(os.path.abspath(path))
    return ProjectRoot(
        path=root,
        project_type=detect_project_type(root),
        extra_student_files=load_extra_student_files(root),
    )
