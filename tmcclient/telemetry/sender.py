"""Buffers LoggableEvents and uploads them as one batch per flush."""
from __future__ import annotations

import logging
import threading
from collections import deque

from tmcclient.config import TmcSettings
from tmcclient.models import LoggableEvent
from tmcclient.tasks import CallbackListener, TaskGroup, TaskHandle, TaskRunner

logger = logging.getLogger(__name__)

DEFAULT_MAX_EVENTS = 64 * 1024


class EventReceiver:
    def receive_event(self, event: LoggableEvent) -> None:
        raise NotImplementedError


class EventSendBuffer(EventReceiver):
    """Holds events until ``send_now()``.

    A failed upload puts its events back at the front of the buffer for the
    next explicit flush; nothing is retried on its own.
    """

    def __init__(self, settings: TmcSettings, server, runner: TaskRunner,
                 max_events: int = DEFAULT_MAX_EVENTS):
        self.settings = settings
        self.server = server
        self.runner = runner
        self.max_events = max_events
        self._lock = threading.Lock()
        self._events: deque[LoggableEvent] = deque()
        self._uploads = TaskGroup()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def receive_event(self, event: LoggableEvent) -> None:
        if not self.settings.spyware_enabled:
            return
        with self._lock:
            self._events.append(event)
            self._trim()

    def _trim(self) -> None:
        dropped = 0
        while len(self._events) > self.max_events:
            self._events.popleft()
            dropped += 1
        if dropped:
            logger.warning("Event buffer full, dropped %d oldest event(s)", dropped)

    def _requeue(self, events: list[LoggableEvent]) -> None:
        with self._lock:
            self._events.extendleft(reversed(events))
            self._trim()

    def send_now(self) -> TaskHandle | None:
        """Start uploading everything buffered. None if the buffer is empty."""
        with self._lock:
            events = list(self._events)
            self._events.clear()
        if not events:
            return None

        def failed(error: BaseException) -> None:
            logger.warning("Failed to send %d event(s): %s", len(events), error)
            self._requeue(events)

        listener = CallbackListener(
            on_ready=lambda _: logger.debug("Sent %d event(s)", len(events)),
            on_cancelled=lambda: self._requeue(events),
            on_failed=failed,
        )
        task = self.server.get_send_event_log_job(events)
        handle = self.runner.start(task, listener, description=f"Sending {len(events)} event(s)")
        return self._uploads.add(handle)

    def close(self, timeout: float | None = None) -> bool:
        """Flush and wait for every upload started so far."""
        self.send_now()
        return self._uploads.join_all(timeout)
