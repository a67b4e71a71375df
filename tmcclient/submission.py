"""Submitting a project: zip it, upload it, optionally wait for the grade."""
from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from tmcclient.api.server import ServerAccess
from tmcclient.config import TmcSettings
from tmcclient.errors import TaskCancelled
from tmcclient.models import Exercise, SubmissionRequest, SubmissionResult, SubmissionStatus
from tmcclient.project import ProjectRoot, detect_project
from tmcclient.tasks import CancellableTask, TaskHandle, TaskListener, TaskRunner
from tmcclient.zipping import policy_for, zip_project_sources

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
DEFAULT_POLL_TIMEOUT_SECONDS = 300.0


def build_submission_params(settings: TmcSettings, request_review: bool = False) -> dict[str, str]:
    params = {"error_msg_locale": settings.error_msg_locale}
    if request_review:
        params["request_review"] = "1"
    return params


class SubmitProjectTask(CancellableTask[str]):
    """Zip, then upload. The value is the submission URL.

    The upload never starts before the archive is complete. ``cancel()``
    reaches whichever stage is running.
    """

    def __init__(self, server: ServerAccess, project: ProjectRoot, exercise: Exercise,
                 extra_params: dict[str, str]):
        super().__init__()
        self.server = server
        self.project = project
        self.exercise = exercise
        self.extra_params = dict(extra_params)
        self._lock = threading.Lock()
        self._upload: CancellableTask | None = None

    def build_request(self) -> SubmissionRequest:
        archive = zip_project_sources(self.project.path, policy_for(self.project),
                                      is_cancelled=lambda: self.cancelled)
        logger.debug("Zipped %s for submission: %d bytes", self.exercise.name, len(archive))
        return SubmissionRequest(exercise=self.exercise, archive=archive,
                                 extra_params=self.extra_params)

    def call(self) -> str:
        self.check_cancelled()
        request = self.build_request()

        upload = self.server.get_submitting_exercise_task(
            request.exercise, request.archive, request.extra_params)
        with self._lock:
            self._upload = upload
        self.check_cancelled()
        submission_url = upload.call()
        logger.debug("Submitted %s: %s", self.exercise.name, submission_url)
        return submission_url

    def cancel(self) -> bool:
        super().cancel()
        with self._lock:
            upload = self._upload
        if upload is not None:
            upload.cancel()
        return True


def submit_project(runner: TaskRunner, server: ServerAccess, project_dir: str,
                   exercise: Exercise, request_review: bool = False,
                   listener: TaskListener | None = None) -> TaskHandle[str]:
    project = detect_project(project_dir)
    params = build_submission_params(server.settings, request_review)
    task = SubmitProjectTask(server, project, exercise, params)
    return runner.start(task, listener, description=f"Sending {exercise.name}")


def poll_submission_result(server: ServerAccess, submission_url: str,
                           interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
                           timeout: float = DEFAULT_POLL_TIMEOUT_SECONDS,
                           is_cancelled: Callable[[], bool] | None = None,
                           sleep: Callable[[float], None] = time.sleep) -> SubmissionResult | None:
    """Fetch the submission URL until grading finishes.

    Returns None if the timeout runs out while still processing.
    """
    deadline = time.monotonic() + timeout
    while True:
        if is_cancelled is not None and is_cancelled():
            raise TaskCancelled("Stopped waiting for submission result")
        result = server.get_submission_result_task(submission_url).call()
        if result.status != SubmissionStatus.PROCESSING:
            return result
        if time.monotonic() + interval > deadline:
            logger.warning("Gave up waiting for %s after %.0fs", submission_url, timeout)
            return None
        sleep(interval)
