"""Tests for telemetry packing, buffering and source snapshots."""
import io
import json
import os
import tempfile
import threading
import zipfile
from datetime import datetime
from pathlib import Path

import pytest

from conftest import FakeResponse, make_tree
from tmcclient.api.server import ServerAccess
from tmcclient.models import Exercise, LoggableEvent
from tmcclient.project import detect_project
from tmcclient.tasks import TaskRunner
from tmcclient.telemetry.batch import format_timestamp, pack_events
from tmcclient.telemetry.sender import EventReceiver, EventSendBuffer
from tmcclient.telemetry.snapshots import (
    SNAPSHOT_EVENT_TYPE, ChangeType, SourceSnapshotEventSource, snapshot_details,
)


def _event(data=b"", details=None, name="Hello"):
    return LoggableEvent("ohpe", name, "code_snapshot", data=data, details=details,
                         happened_at=datetime(2024, 3, 1, 12, 30, 5, 120000),
                         system_nano_time=1234)


# ── Packing ─────────────────────────────────────────────────────────


def test_pack_offsets_slice_concatenated_data():
    params, data = pack_events([_event(b"ab"), _event(b"cde")])
    assert data == b"abcde"
    assert params["events[0][data_offset]"] == "0"
    assert params["events[0][data_length]"] == "2"
    assert params["events[1][data_offset]"] == "2"
    assert params["events[1][data_length]"] == "3"


def test_pack_partitions_data_exactly():
    events = [_event(bytes([i]) * n) for i, n in enumerate([0, 5, 1, 0, 17, 3])]
    params, data = pack_events(events)
    for i, ev in enumerate(events):
        off = int(params[f"events[{i}][data_offset]"])
        length = int(params[f"events[{i}][data_length]"])
        assert data[off:off + length] == ev.data
    assert len(data) == sum(len(ev.data) for ev in events)


def test_pack_event_fields():
    params, _ = pack_events([_event(details='{"cause":"file_change"}'), _event()])
    assert params["events[0][course_name]"] == "ohpe"
    assert params["events[0][exercise_name]"] == "Hello"
    assert params["events[0][event_type]"] == "code_snapshot"
    assert params["events[0][happened_at]"] == "2024-03-01 12:30:05.12"
    assert params["events[0][system_nano_time]"] == "1234"
    assert params["events[0][details]"] == '{"cause":"file_change"}'
    assert "events[1][details]" not in params


def test_pack_empty_batch():
    assert pack_events([]) == ({}, b"")


@pytest.mark.parametrize("dt,expected", [
    (datetime(2024, 1, 2, 3, 4, 5), "2024-01-02 03:04:05.0"),
    (datetime(2024, 1, 2, 3, 4, 5, 500000), "2024-01-02 03:04:05.5"),
    (datetime(2024, 1, 2, 3, 4, 5, 123456), "2024-01-02 03:04:05.123456"),
])
def test_format_timestamp(dt, expected):
    assert format_timestamp(dt) == expected


# ── Send buffer ─────────────────────────────────────────────────────


@pytest.fixture
def runner():
    r = TaskRunner(max_workers=2)
    yield r
    r.shutdown(wait=True)


def test_send_now_uploads_one_batch(settings, session, runner):
    server = ServerAccess(settings, session=session)
    buffer = EventSendBuffer(settings, server, runner)
    buffer.receive_event(_event(b"ab"))
    buffer.receive_event(_event(b"cde"))
    session.queue(FakeResponse(200, "{}"))

    handle = buffer.send_now()
    assert handle.wait(5).is_success
    assert len(session.calls) == 1
    assert session.calls[0]["files"]["data"][1] == b"abcde"
    assert len(buffer) == 0


def test_send_now_with_empty_buffer_does_nothing(settings, session, runner):
    buffer = EventSendBuffer(settings, ServerAccess(settings, session=session), runner)
    assert buffer.send_now() is None
    assert session.calls == []


def test_failed_upload_requeues_events_in_order(settings, session, runner):
    server = ServerAccess(settings, session=session)
    buffer = EventSendBuffer(settings, server, runner)
    buffer.receive_event(_event(b"1"))
    buffer.receive_event(_event(b"2"))
    session.queue(FakeResponse(500, "oops"))

    handle = buffer.send_now()
    assert handle.wait(5).is_failed
    buffer.receive_event(_event(b"3"))
    session.queue(FakeResponse(200, "{}"))
    assert buffer.send_now().wait(5).is_success
    assert session.calls[1]["files"]["data"][1] == b"123"


def test_spyware_disabled_drops_events(settings, session, runner):
    settings.spyware_enabled = False
    buffer = EventSendBuffer(settings, ServerAccess(settings, session=session), runner)
    buffer.receive_event(_event(b"x"))
    assert len(buffer) == 0


def test_buffer_drops_oldest_when_full(settings, session, runner):
    buffer = EventSendBuffer(settings, ServerAccess(settings, session=session), runner, max_events=2)
    for name in ["a", "b", "c"]:
        buffer.receive_event(_event(name=name))
    session.queue(FakeResponse(200, "{}"))
    assert buffer.close(timeout=5)
    assert session.calls[0]["data"]["events[0][exercise_name]"] == "b"
    assert "events[2][exercise_name]" not in session.calls[0]["data"]


# ── Source snapshots ────────────────────────────────────────────────


class CollectingReceiver(EventReceiver):
    def __init__(self):
        self.events = []
        self.lock = threading.Lock()

    def receive_event(self, event):
        with self.lock:
            self.events.append(event)


@pytest.fixture
def exercise_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        root = os.path.join(tmpdir, "Hello")
        make_tree(root, {
            "src/Hello.java": "class Hello {}",
            "src/Notes.txt.tmcnosubmit": "private",
            "build/Hello.class": b"\xca\xfe",
        })
        yield Path(root)


def _resolver_for(exercise_dir, exercise):
    def resolve(path):
        if exercise_dir == path or exercise_dir in path.parents:
            return detect_project(exercise_dir), exercise
        return None
    return resolve


def test_file_change_produces_snapshot_event(settings, runner, exercise_dir):
    exercise = Exercise(name="Hello", course_name="ohpe")
    receiver = CollectingReceiver()
    source = SourceSnapshotEventSource(settings, receiver, runner,
                                       _resolver_for(exercise_dir, exercise))
    source.on_file_change(ChangeType.FILE_CHANGE, exercise_dir / "src" / "Hello.java")
    assert source.close(timeout=5)

    [event] = receiver.events
    assert event.event_type == SNAPSHOT_EVENT_TYPE
    assert event.course_name == "ohpe"
    assert json.loads(event.details) == {"cause": "file_change", "file": "/src/Hello.java"}
    with zipfile.ZipFile(io.BytesIO(event.data)) as zf:
        names = zf.namelist()
    assert "Hello/src/Hello.java" in names
    assert not any("tmcnosubmit" in n or n.startswith("Hello/build") for n in names)


def test_changes_outside_projects_are_ignored(settings, runner, exercise_dir):
    receiver = CollectingReceiver()
    source = SourceSnapshotEventSource(settings, receiver, runner, lambda path: None)
    source.on_file_change("file_create", exercise_dir / "src" / "New.java")
    assert source.pending() == 0
    assert source.close(timeout=5)
    assert receiver.events == []


def test_no_snapshots_when_spyware_disabled_or_closed(settings, runner, exercise_dir):
    exercise = Exercise(name="Hello", course_name="ohpe")
    receiver = CollectingReceiver()
    resolver = _resolver_for(exercise_dir, exercise)

    settings.spyware_enabled = False
    SourceSnapshotEventSource(settings, receiver, runner, resolver).on_file_change(
        ChangeType.FILE_CHANGE, exercise_dir / "src" / "Hello.java")

    settings.spyware_enabled = True
    source = SourceSnapshotEventSource(settings, receiver, runner, resolver)
    source.close()
    source.on_file_change(ChangeType.FILE_CHANGE, exercise_dir / "src" / "Hello.java")
    assert receiver.events == []


def test_failed_snapshot_is_not_delivered(settings, runner, exercise_dir, caplog):
    exercise = Exercise(name="Hello", course_name="ohpe")
    receiver = CollectingReceiver()
    missing = exercise_dir / "gone"
    source = SourceSnapshotEventSource(
        settings, receiver, runner,
        lambda path: (detect_project(missing), exercise))
    source.on_file_change(ChangeType.FILE_DELETE, missing / "x.java")
    assert source.close(timeout=5)
    assert receiver.events == []
    assert "Error zipping project sources" in caplog.text


def test_snapshot_details_with_rename():
    details = json.loads(snapshot_details(ChangeType.FILE_RENAME, "/src/B.java", "/src/A.java"))
    assert details == {"cause": "file_rename", "file": "/src/B.java", "previous_name": "/src/A.java"}
