"""JSON response parsers for course lists, reviews and submission results."""
from __future__ import annotations

import json

from tmcclient.errors import MalformedResponseError
from tmcclient.models import (
    Course, Exercise, Review, SubmissionResult, SubmissionStatus, TestCaseResult,
)


def _load(text: str):
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, RecursionError) as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e}") from e


def _int_field(data: dict, key: str) -> int:
    value = data.get(key, 0)
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise MalformedResponseError(f"Field {key!r} is not an integer: {value!r}") from e


def _records(doc, key: str) -> list[dict]:
    """Accept both a bare array and an object wrapping it under key."""
    if isinstance(doc, dict):
        doc = doc.get(key)
    if not isinstance(doc, list):
        raise MalformedResponseError(f"Expected a list of {key}")
    return [r for r in doc if isinstance(r, dict)]


def _parse_exercise(data: dict, course_name: str) -> Exercise:
    return Exercise(
        name=str(data.get("name", "")),
        course_name=course_name,
        return_url=data.get("return_url") or "",
        download_url=data.get("zip_url") or "",
        solution_download_url=data.get("solution_zip_url") or "",
        deadline=data.get("deadline"),
        locked=bool(data.get("locked", False)),
        returnable=bool(data.get("returnable", True)),
    )


def parse_course_list(text: str) -> list[Course]:
    courses: list[Course] = []
    for data in _records(_load(text), "courses"):
        name = str(data.get("name", ""))
        courses.append(Course(
            id=_int_field(data, "id"),
            name=name,
            unlock_url=data.get("unlock_url") or "",
            reviews_url=data.get("reviews_url") or "",
            comet_url=data.get("comet_url") or "",
            exercises=[
                _parse_exercise(ex, name)
                for ex in data.get("exercises") or []
                if isinstance(ex, dict)
            ],
            unlockables=[str(u) for u in data.get("unlockables") or []],
        ))
    return courses


def parse_review_list(text: str) -> list[Review]:
    return [
        Review(
            id=_int_field(data, "id"),
            exercise_name=str(data.get("exercise_name", "")),
            submission_id=_int_field(data, "submission_id"),
            review_body=data.get("review_body") or "",
            url=data.get("url") or "",
            update_url=data.get("update_url") or "",
            marked_as_read=bool(data.get("marked_as_read", False)),
            created_at=data.get("created_at") or "",
        )
        for data in _records(_load(text), "reviews")
    ]


def parse_submission_result(text: str) -> SubmissionResult:
    doc = _load(text)
    if not isinstance(doc, dict):
        raise MalformedResponseError("Submission result is not a JSON object")

    raw_status = str(doc.get("status", "")).lower()
    try:
        status = SubmissionStatus(raw_status)
    except ValueError:
        raise MalformedResponseError(f"Unknown submission status: {raw_status!r}") from None

    test_cases = [
        TestCaseResult(
            name=str(tc.get("name", "")),
            successful=bool(tc.get("successful", False)),
            message=tc.get("message") or "",
        )
        for tc in doc.get("test_cases") or []
        if isinstance(tc, dict)
    ]
    return SubmissionResult(
        status=status,
        test_cases=test_cases,
        error=doc.get("error"),
        solution_url=doc.get("solution_url"),
        points=[str(p) for p in doc.get("points") or []],
        missing_review_points=[str(p) for p in doc.get("missing_review_points") or []],
    )
