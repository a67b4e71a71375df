"""Turns file-change notifications into ``code_snapshot`` events.

Each change to a file inside a known exercise project zips that project
in the background and hands the archive to an EventReceiver.
"""
from __future__ import annotations

import json
import logging
import os
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from tmcclient.config import TmcSettings
from tmcclient.errors import ArchiveError
from tmcclient.models import Exercise, LoggableEvent
from tmcclient.project import ProjectRoot, detect_project
from tmcclient.tasks import CancellableTask, CallbackListener, TaskGroup, TaskRunner
from tmcclient.telemetry.sender import EventReceiver
from tmcclient.zipping import policy_for, zip_project_sources

logger = logging.getLogger(__name__)

SNAPSHOT_EVENT_TYPE = "code_snapshot"

# path -> (project, exercise), or None when the path is not in an exercise
ProjectResolver = Callable[[Path], Optional[tuple[ProjectRoot, Exercise]]]


class ChangeType(str, Enum):
    FILE_CREATE = "file_create"
    FOLDER_CREATE = "folder_create"
    FILE_CHANGE = "file_change"
    FILE_DELETE = "file_delete"
    FILE_RENAME = "file_rename"


def relative_to_project(path: Path, project: ProjectRoot) -> str:
    try:
        return "/" + path.relative_to(project.path).as_posix()
    except ValueError:
        return path.as_posix()


def snapshot_details(change_type: ChangeType, file_path: str,
                     previous_name: str | None = None) -> str:
    details = {"cause": change_type.value, "file": file_path}
    if previous_name is not None:
        details["previous_name"] = previous_name
    return json.dumps(details)


class SnapshotTask(CancellableTask[LoggableEvent]):
    def __init__(self, project: ProjectRoot, exercise: Exercise, details: str):
        super().__init__()
        self.project = project
        self.exercise = exercise
        self.details = details

    def call(self) -> LoggableEvent:
        self.check_cancelled()
        # Re-detect: the project file may have changed since resolution.
        project = detect_project(self.project.path)
        data = zip_project_sources(project.path, policy_for(project),
                                   is_cancelled=lambda: self.cancelled)
        return LoggableEvent.for_exercise(self.exercise, SNAPSHOT_EVENT_TYPE, data, self.details)


class SourceSnapshotEventSource:
    def __init__(self, settings: TmcSettings, receiver: EventReceiver,
                 runner: TaskRunner, resolver: ProjectResolver):
        self.settings = settings
        self.receiver = receiver
        self.runner = runner
        self.resolver = resolver
        self._lock = threading.Lock()
        self._closed = False
        self._snapshots = TaskGroup()

    def on_file_change(self, change_type: ChangeType | str, path: str | os.PathLike,
                       previous_name: str | None = None) -> None:
        change_type = ChangeType(change_type)
        if self._closed or not self.settings.spyware_enabled:
            return

        changed = Path(os.path.abspath(path))
        resolved = self.resolver(changed)
        if resolved is None:
            logger.debug("Ignoring change outside exercise projects: %s", changed)
            return
        project, exercise = resolved

        details = snapshot_details(change_type, relative_to_project(changed, project), previous_name)
        logger.debug("Snapshotting %s for %s", project.path, exercise.name)
        listener = CallbackListener(
            on_ready=self.receiver.receive_event,
            on_failed=lambda e: self._snapshot_failed(project, e),
        )
        task = SnapshotTask(project, exercise, details)
        with self._lock:
            if self._closed:
                return
            handle = self.runner.start(task, listener, description=f"Source snapshot of {exercise.name}")
            self._snapshots.add(handle)

    def _snapshot_failed(self, project: ProjectRoot, error: BaseException) -> None:
        if isinstance(error, (ArchiveError, OSError)):
            logger.warning("Error zipping project sources in %s: %s", project.path, error)
        else:
            logger.warning("Snapshot of %s failed", project.path, exc_info=error)

    def pending(self) -> int:
        return len(self._snapshots)

    def close(self, timeout: float | None = None) -> bool:
        """Stop reacting to changes and wait for pending snapshots."""
        with self._lock:
            self._closed = True
        return self._snapshots.join_all(timeout)
