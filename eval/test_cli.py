"""Tests for the tmc CLI commands."""
import io
import json
import os
import tempfile
import zipfile
from unittest import mock

import pytest
from click.testing import CliRunner

from conftest import FakeResponse, make_tree
from tmcclient.cli import EXIT_FAILED, EXIT_OBSOLETE, cli

ENV = {
    "TMC_SERVER_URL": "https://tmc.example.com",
    "TMC_USERNAME": "student",
    "TMC_PASSWORD": "secret",
    "TMC_CONFIG": None,
    "TMC_LOCALE": None,
    "TMC_SPYWARE": None,
}


@pytest.fixture
def workdir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


def _invoke(args, env=ENV):
    return CliRunner().invoke(cli, args, env=env)


def test_zip_writes_submission_archive(workdir):
    project = os.path.join(workdir, "Hello")
    make_tree(project, {"src/Hello.java": "class Hello {}", "build/x.class": b"\x00"})
    output = os.path.join(workdir, "out.zip")

    result = _invoke(["zip", project, "-o", output])
    assert result.exit_code == 0, result.output
    assert "simple project" in result.output
    with zipfile.ZipFile(output) as zf:
        names = zf.namelist()
    assert "Hello/src/Hello.java" in names
    assert "Hello/build/x.class" not in names


def test_config_set_and_get(workdir):
    path = os.path.join(workdir, "tmc", "config.json")
    env = {"TMC_SPYWARE": None, "TMC_SERVER_URL": None, "TMC_CONFIG": None}

    assert _invoke(["--config", path, "config", "set", "server_url", "https://tmc.example.com"], env).exit_code == 0
    assert _invoke(["--config", path, "config", "set", "spyware", "off"], env).exit_code == 0
    with open(path) as f:
        assert json.load(f) == {"server_url": "https://tmc.example.com", "spyware": False}

    result = _invoke(["--config", path, "config", "get", "spyware"], env)
    assert result.output.strip() == "spyware: off"
    result = _invoke(["--config", path, "config", "get", "server_url"], env)
    assert result.output.strip() == "server_url: https://tmc.example.com"


def test_config_rejects_bad_values(workdir):
    path = os.path.join(workdir, "config.json")
    result = _invoke(["--config", path, "config", "set", "spyware", "maybe"])
    assert result.exit_code == EXIT_FAILED
    result = _invoke(["--config", path, "config", "set", "password", "hunter2"])
    assert result.exit_code == EXIT_FAILED
    assert not os.path.exists(path)


def test_courses_lists_server_courses(workdir):
    resp = FakeResponse(200, [{"id": 1, "name": "ohpe-2024", "exercises": []}])
    with mock.patch("requests.Session.request", return_value=resp) as request:
        result = _invoke(["--config", os.path.join(workdir, "c.json"), "courses"])
    assert result.exit_code == 0, result.output
    assert "ohpe-2024" in result.output
    method, url = request.call_args.args
    assert method == "GET"
    assert url.startswith("https://tmc.example.com/courses.json?")


def test_obsolete_client_exits_with_distinct_code(workdir):
    resp = FakeResponse(404, {"obsolete_client": True})
    with mock.patch("requests.Session.request", return_value=resp):
        result = _invoke(["--config", os.path.join(workdir, "c.json"), "courses"])
    assert result.exit_code == EXIT_OBSOLETE
    assert "obsolete" in result.output


def test_http_failure_is_reported(workdir):
    resp = FakeResponse(500, "Internal Server Error")
    with mock.patch("requests.Session.request", return_value=resp):
        result = _invoke(["--config", os.path.join(workdir, "c.json"), "courses"])
    assert result.exit_code == EXIT_FAILED
    assert "Error: HTTP 500" in result.output


def test_missing_settings_exit(workdir):
    env = {k: None for k in ENV}
    result = _invoke(["--config", os.path.join(workdir, "c.json"), "courses"], env)
    assert result.exit_code == EXIT_FAILED
    assert "required" in result.output


def test_submit_without_waiting(workdir):
    project = os.path.join(workdir, "Hello")
    make_tree(project, {"src/Hello.java": "class Hello {}"})
    resp = FakeResponse(200, {"submission_url": "https://tmc.example.com/submissions/5.json"})
    with mock.patch("requests.Session.request", return_value=resp) as request:
        result = _invoke(["--config", os.path.join(workdir, "c.json"), "submit", project,
                          "--return-url", "https://tmc.example.com/exercises/1/submissions.json",
                          "--review", "--no-wait"])
    assert result.exit_code == 0, result.output
    assert "Code submitted for review." in result.output
    assert "Submission: https://tmc.example.com/submissions/5.json" in result.output

    kwargs = request.call_args.kwargs
    assert kwargs["data"]["request_review"] == "1"
    with zipfile.ZipFile(io.BytesIO(kwargs["files"]["submission[file]"][1])) as zf:
        assert "Hello/src/Hello.java" in zf.namelist()


def _submit_and_wait(workdir, *responses):
    project = os.path.join(workdir, "Hello")
    make_tree(project, {"src/Hello.java": "class Hello {}"})
    with mock.patch("requests.Session.request", side_effect=list(responses)) as request:
        result = _invoke(["--config", os.path.join(workdir, "c.json"), "submit", project,
                          "--return-url", "https://tmc.example.com/exercises/1/submissions.json"])
    return result, request


def test_submit_waits_for_passing_result(workdir):
    result, request = _submit_and_wait(
        workdir,
        FakeResponse(200, {"submission_url": "https://tmc.example.com/submissions/5.json"}),
        FakeResponse(200, {"status": "ok", "test_cases": [{"name": "HelloTest", "successful": True}]}),
    )
    assert result.exit_code == 0, result.output
    assert "All tests passed!" in result.output
    assert "HelloTest" in result.output
    assert request.call_args.args == ("GET", "https://tmc.example.com/submissions/5.json")


def test_submit_wait_reports_failures(workdir):
    result, _ = _submit_and_wait(
        workdir,
        FakeResponse(200, {"submission_url": "https://tmc.example.com/submissions/5.json"}),
        FakeResponse(200, {"status": "fail", "test_cases": [{"name": "HelloTest", "successful": False}]}),
    )
    assert result.exit_code == EXIT_FAILED
    assert "FAIL" in result.output


def test_submit_wait_reports_polling_errors(workdir):
    result, _ = _submit_and_wait(
        workdir,
        FakeResponse(200, {"submission_url": "https://tmc.example.com/submissions/5.json"}),
        FakeResponse(503, "Service Unavailable"),
    )
    assert result.exit_code == EXIT_FAILED
    assert "Error: HTTP 503" in result.output
