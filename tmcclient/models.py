from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class SubmissionStatus(str, Enum):
    OK = "ok"
    FAIL = "fail"
    ERROR = "error"
    PROCESSING = "processing"


@dataclass
class Exercise:
    name: str
    course_name: str = ""
    return_url: str = ""
    download_url: str = ""
    solution_download_url: str = ""
    deadline: str | None = None
    locked: bool = False
    returnable: bool = True


@dataclass
class Course:
    id: int
    name: str
    unlock_url: str = ""
    reviews_url: str = ""
    comet_url: str = ""
    exercises: list[Exercise] = field(default_factory=list)
    unlockables: list[str] = field(default_factory=list)


@dataclass
class Review:
    id: int
    exercise_name: str
    submission_id: int
    review_body: str
    url: str = ""
    update_url: str = ""
    marked_as_read: bool = False
    created_at: str = ""


@dataclass
class FeedbackQuestion:
    id: int
    question: str
    kind: str = "text"


@dataclass
class FeedbackAnswer:
    question: FeedbackQuestion
    answer: str


@dataclass
class TestCaseResult:
    name: str
    successful: bool
    message: str = ""

    __test__ = False  # not a pytest class


@dataclass
class SubmissionResult:
    """Grading result polled from a submission URL.

    status is PROCESSING until the sandbox has finished; test_cases is only
    populated for OK and FAIL, error only for ERROR.
    """
    status: SubmissionStatus
    test_cases: list[TestCaseResult] = field(default_factory=list)
    error: str | None = None
    solution_url: str | None = None
    points: list[str] = field(default_factory=list)
    missing_review_points: list[str] = field(default_factory=list)

    @property
    def all_tests_passed(self) -> bool:
        return self.status == SubmissionStatus.OK


@dataclass(frozen=True)
class SubmissionRequest:
    exercise: Exercise
    archive: bytes
    extra_params: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class LoggableEvent:
    """One unit of editing telemetry.

    data is an opaque payload (for code snapshots, a zip of the project).
    system_nano_time is monotonic and only meaningful relative to other
    events from the same process.
    """
    course_name: str
    exercise_name: str
    event_type: str
    data: bytes = b""
    details: str | None = None
    happened_at: datetime = field(default_factory=datetime.now)
    system_nano_time: int = field(default_factory=time.monotonic_ns)

    @classmethod
    def for_exercise(cls, exercise: Exercise, event_type: str,
                     data: bytes = b"", details: str | None = None) -> LoggableEvent:
        return cls(
            course_name=exercise.course_name,
            exercise_name=exercise.name,
            event_type=event_type,
            data=data,
            details=details,
        )
