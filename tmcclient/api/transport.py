"""HTTP transport: cancellable requests over a requests.Session.

Responses are streamed in chunks; each chunk boundary is a cancellation
checkpoint, and ``cancel()`` closes an in-flight response so a blocked
read fails promptly.
"""
from __future__ import annotations

import logging
import threading
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from tmcclient import __version__
from tmcclient.errors import FailedHttpResponse, TaskCancelled, TransportError
from tmcclient.tasks import CancellableTask

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
DEFAULT_TIMEOUT_SECONDS = 30
USER_AGENT = f"tmc-client/{__version__}"


def with_query_param(url: str, key: str, value: str) -> str:
    """Append key=value to url's query string, replacing an existing key."""
    scheme, netloc, path, query, fragment = urlsplit(url)
    params = [(k, v) for k, v in parse_qsl(query, keep_blank_values=True) if k != key]
    params.append((key, value))
    return urlunsplit((scheme, netloc, path, urlencode(params), fragment))


class HttpRequestTask(CancellableTask):
    """One HTTP exchange. Returns the body as bytes, or str when as_text."""

    def __init__(self, session: requests.Session, method: str, url: str, *,
                 data: dict | None = None, files: dict | None = None,
                 auth: tuple[str, str] | None = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS, as_text: bool = False):
        super().__init__()
        self.session = session
        self.method = method
        self.url = url
        self.data = data
        self.files = files
        self.auth = auth
        self.timeout = timeout
        self.as_text = as_text
        self._lock = threading.Lock()
        self._response: requests.Response | None = None

    def call(self):
        self.check_cancelled()
        logger.debug("%s %s", self.method, self.url)
        try:
            resp = self.session.request(
                self.method,
                self.url,
                data=self.data,
                files=self.files,
                auth=self.auth,
                headers={"User-Agent": USER_AGENT},
                timeout=self.timeout,
                stream=True,
            )
        except requests.exceptions.RequestException as e:
            self.check_cancelled()
            raise TransportError(f"{self.method} {self.url} failed: {e}") from e

        with self._lock:
            self._response = resp
        try:
            body = self._read_body(resp)
        finally:
            resp.close()

        status = resp.status_code
        logger.debug("%s %s: HTTP %d, %d bytes", self.method, self.url, status, len(body))
        if not 200 <= status < 300:
            raise FailedHttpResponse(status, self._decode(resp, body), self.url)
        return self._decode(resp, body) if self.as_text else body

    def _read_body(self, resp: requests.Response) -> bytes:
        chunks: list[bytes] = []
        try:
            for chunk in resp.iter_content(CHUNK_SIZE):
                self.check_cancelled()
                chunks.append(chunk)
        except (requests.exceptions.RequestException, OSError, AttributeError) as e:
            # A cancel() closing the response surfaces here as a read error.
            self.check_cancelled()
            raise TransportError(f"Reading response from {self.url} failed: {e}") from e
        self.check_cancelled()
        return b"".join(chunks)

    @staticmethod
    def _decode(resp: requests.Response, body: bytes) -> str:
        return body.decode(resp.encoding or "utf-8", errors="replace")

    def cancel(self) -> bool:
        super().cancel()
        with self._lock:
            resp = self._response
        if resp is not None:
            resp.close()
        return True


class HttpTasks:
    """Factory for authenticated HTTP tasks sharing one session."""

    def __init__(self, username: str = "", password: str = "",
                 session: requests.Session | None = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS):
        self.session = session if session is not None else requests.Session()
        self.auth = (username, password) if username else None
        self.timeout = timeout

    def _task(self, method: str, url: str, **kwargs) -> HttpRequestTask:
        return HttpRequestTask(self.session, method, url, auth=self.auth,
                               timeout=self.timeout, **kwargs)

    def get_for_text(self, url: str) -> HttpRequestTask:
        return self._task("GET", url, as_text=True)

    def get_for_binary(self, url: str) -> HttpRequestTask:
        return self._task("GET", url)

    def post_for_text(self, url: str, params: dict[str, str]) -> HttpRequestTask:
        return self._task("POST", url, data=dict(params), as_text=True)

    def upload_file_for_text_download(self, url: str, params: dict[str, str],
                                      file_field: str, data: bytes) -> HttpRequestTask:
        files = {file_field: ("file", data, "application/octet-stream")}
        return self._task("POST", url, data=dict(params), files=files, as_text=True)
