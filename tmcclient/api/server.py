"""A frontend for the TMC server.

Every operation returns a CancellableTask; nothing touches the network
until the task is called. API calls carry api_version, client and
client_version query parameters.
"""
from __future__ import annotations

import json
import logging
from typing import Callable, TypeVar
from urllib.parse import urlsplit

import requests

from tmcclient import __version__
from tmcclient.api.parsers import parse_course_list, parse_review_list, parse_submission_result
from tmcclient.api.transport import HttpTasks, with_query_param
from tmcclient.config import TmcSettings
from tmcclient.errors import (
    FailedHttpResponse, MalformedResponseError, ObsoleteClientError,
    ServerRejectedError, UnknownResponseError,
)
from tmcclient.models import (
    Course, Exercise, FeedbackAnswer, LoggableEvent, Review, SubmissionResult,
)
from tmcclient.tasks import CancellableTask, MappedTask
from tmcclient.telemetry.batch import pack_events

logger = logging.getLogger(__name__)

API_VERSION = 5
CLIENT_NAME = "tmc_cli"
SUBMISSION_FILE_FIELD = "submission[file]"
EVENT_DATA_FIELD = "data"

T = TypeVar("T")


def check_for_obsolete_client(ex: FailedHttpResponse):
    """Re-raise ex, or ObsoleteClientError if the server flagged this client.

    Only a 404 whose body is a JSON object with ``obsolete_client: true``
    counts. Anything unparseable falls back to the original error.
    """
    if ex.status_code == 404:
        try:
            obsolete = json.loads(ex.body).get("obsolete_client") is True
        except Exception:
            obsolete = False
        if obsolete:
            logger.warning("Server reports this client (v%s) as obsolete", __version__)
            raise ObsoleteClientError() from ex
    raise ex


def _obsolete_check(ex: Exception):
    if isinstance(ex, FailedHttpResponse):
        return check_for_obsolete_client(ex)
    raise ex


def parse_submission_response(text: str) -> str:
    """Extract the submission URL from a submission POST response."""
    try:
        resp_json = json.loads(text)
    except (ValueError, RecursionError) as e:
        raise MalformedResponseError(f"Submission response is not JSON: {e}") from e
    if not isinstance(resp_json, dict):
        raise MalformedResponseError("Submission response is not a JSON object")

    if resp_json.get("error") is not None:
        raise ServerRejectedError(str(resp_json["error"]))
    if resp_json.get("submission_url") is not None:
        url = resp_json["submission_url"]
        try:
            parts = urlsplit(url) if isinstance(url, str) else None
        except ValueError:
            parts = None
        if parts is None or not parts.scheme or not parts.netloc:
            raise MalformedResponseError(f"Server responded with malformed submission url: {url!r}")
        return url
    raise UnknownResponseError("Server returned unknown response")


class ServerAccess:
    def __init__(self, settings: TmcSettings, client_version: str = __version__,
                 session: requests.Session | None = None):
        self.settings = settings
        self.client_version = client_version
        self._owns_session = session is None
        self.session = session if session is not None else requests.Session()

    def close(self) -> None:
        """Close the HTTP session if this instance created it."""
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> ServerAccess:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Plumbing ────────────────────────────────────────────────────

    def add_api_call_query_parameters(self, url: str) -> str:
        url = with_query_param(url, "api_version", str(API_VERSION))
        url = with_query_param(url, "client", CLIENT_NAME)
        url = with_query_param(url, "client_version", self.client_version)
        return url

    def _http(self) -> HttpTasks:
        return HttpTasks(self.settings.username, self.settings.password,
                         session=self.session, timeout=self.settings.timeout)

    def _checked(self, download: CancellableTask, transform: Callable[[str], T]) -> CancellableTask[T]:
        return MappedTask(download, transform, on_error=_obsolete_check)

    def has_enough_settings(self) -> bool:
        s = self.settings
        return bool(s.username and s.password and s.server_base_url)

    def needs_only_password(self) -> bool:
        s = self.settings
        return bool(s.username and not s.password and s.server_base_url)

    # ── Courses ─────────────────────────────────────────────────────

    def get_course_list_url(self) -> str:
        return self.add_api_call_query_parameters(self.settings.server_base_url + "/courses.json")

    def get_downloading_course_list_task(self) -> CancellableTask[list[Course]]:
        download = self._http().get_for_text(self.get_course_list_url())
        return self._checked(download, parse_course_list)

    def get_unlocking_task(self, course: Course) -> CancellableTask[None]:
        url = self.add_api_call_query_parameters(course.unlock_url)
        download = self._http().post_for_text(url, {})
        return self._checked(download, lambda text: None)

    # ── Exercises ───────────────────────────────────────────────────

    def get_downloading_exercise_zip_task(self, exercise: Exercise) -> CancellableTask[bytes]:
        return self._http().get_for_binary(exercise.download_url)

    def get_downloading_exercise_solution_zip_task(self, exercise: Exercise) -> CancellableTask[bytes]:
        return self._http().get_for_binary(exercise.solution_download_url)

    def get_submitting_exercise_task(self, exercise: Exercise, source_zip: bytes,
                                     extra_params: dict[str, str]) -> CancellableTask[str]:
        """Upload a zip; the task's value is the URL to poll for results.

        The obsolete-client check applies to the transport failure only; an
        ``error`` field in a 2xx body is a ServerRejectedError.
        """
        submit_url = self.add_api_call_query_parameters(exercise.return_url)
        upload = self._http().upload_file_for_text_download(
            submit_url, extra_params, SUBMISSION_FILE_FIELD, source_zip)
        return self._checked(upload, parse_submission_response)

    def get_submission_fetch_task(self, submission_url: str) -> CancellableTask[str]:
        return self._http().get_for_text(submission_url)

    def get_submission_result_task(self, submission_url: str) -> CancellableTask[SubmissionResult]:
        return MappedTask(self.get_submission_fetch_task(submission_url), parse_submission_result)

    # ── Reviews and feedback ────────────────────────────────────────

    def get_downloading_review_list_task(self, course: Course) -> CancellableTask[list[Review]]:
        url = self.add_api_call_query_parameters(course.reviews_url)
        download = self._http().get_for_text(url)
        return self._checked(download, parse_review_list)

    def get_marking_review_as_read_task(self, review: Review, read: bool) -> CancellableTask[None]:
        url = self.add_api_call_query_parameters(review.update_url + ".json")
        params = {"_method": "put"}
        if read:
            params["mark_as_read"] = "1"
        else:
            params["mark_as_unread"] = "1"
        task = self._http().post_for_text(url, params)
        return MappedTask(task, lambda text: None)

    def get_feedback_answering_job(self, answer_url: str,
                                   answers: list[FeedbackAnswer]) -> CancellableTask[str]:
        submit_url = self.add_api_call_query_parameters(answer_url)
        params: dict[str, str] = {}
        for i, answer in enumerate(answers):
            key_prefix = f"answers[{i}]"
            params[f"{key_prefix}[question_id]"] = str(answer.question.id)
            params[f"{key_prefix}[answer]"] = answer.answer
        upload = self._http().post_for_text(submit_url, params)
        return self._checked(upload, lambda text: text)

    # ── Telemetry ───────────────────────────────────────────────────

    def get_send_event_log_url(self) -> str:
        return self.add_api_call_query_parameters(self.settings.server_base_url + "/student_events.json")

    def get_send_event_log_job(self, events: list[LoggableEvent]) -> CancellableTask[None]:
        params, data = pack_events(events)
        upload = self._http().upload_file_for_text_download(
            self.get_send_event_log_url(), params, EVENT_DATA_FIELD, data)
        return MappedTask(upload, lambda text: None)
