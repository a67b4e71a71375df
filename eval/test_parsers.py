"""Tests for the JSON response parsers."""
import pytest

from tmcclient.api.parsers import parse_course_list, parse_review_list, parse_submission_result
from tmcclient.errors import MalformedResponseError


def test_course_list_accepts_bare_and_wrapped_lists():
    bare = parse_course_list('[{"id": 1, "name": "ohpe"}]')
    wrapped = parse_course_list('{"courses": [{"id": "2", "name": "ohja"}]}')
    assert [c.id for c in bare + wrapped] == [1, 2]


@pytest.mark.parametrize("parse,body", [
    (parse_course_list, '[{"id": null, "name": "ohpe"}]'),
    (parse_course_list, '[{"id": "abc", "name": "ohpe"}]'),
    (parse_review_list, '[{"id": null, "exercise_name": "Hello", "submission_id": 1}]'),
    (parse_review_list, '[{"id": 1, "exercise_name": "Hello", "submission_id": "x"}]'),
    (parse_review_list, '{"reviews": [{"id": [], "submission_id": 1}]}'),
])
def test_bad_ids_are_malformed(parse, body):
    with pytest.raises(MalformedResponseError):
        parse(body)


@pytest.mark.parametrize("parse", [parse_course_list, parse_review_list, parse_submission_result])
def test_unparseable_bodies_are_malformed(parse):
    for body in ["not json", "[" * 100000 + "]" * 100000]:
        with pytest.raises(MalformedResponseError):
            parse(body)


def test_unknown_submission_status_is_malformed():
    with pytest.raises(MalformedResponseError):
        parse_submission_result('{"status": "exploded"}')
