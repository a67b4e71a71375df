"""Shared fakes: an in-memory stand-in for requests.Session."""
import json
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from tmcclient.config import TmcSettings


class FakeResponse:
    def __init__(self, status_code=200, body=b"", encoding="utf-8", chunk_size=None):
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode("utf-8")
        self.status_code = status_code
        self.body = body
        self.encoding = encoding
        self.chunk_size = chunk_size
        self.closed = False
        self.on_chunk = None

    def iter_content(self, chunk_size=1):
        size = self.chunk_size or chunk_size
        for i in range(0, len(self.body), size):
            yield self.body[i:i + size]
            if self.on_chunk is not None:
                self.on_chunk()

    def close(self):
        self.closed = True


class FakeSession:
    """Records every request and answers from a queue of responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def queue(self, response):
        self.responses.append(response)

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


@pytest.fixture
def settings():
    return TmcSettings(
        server_base_url="https://tmc.example.com",
        username="student",
        password="secret",
        error_msg_locale="fi",
    )


@pytest.fixture
def session():
    return FakeSession()


def make_tree(root, files):
    """Create files under root from {relative_path: content}; '/'-suffixed keys are dirs."""
    for rel, content in files.items():
        path = os.path.join(root, *rel.rstrip("/").split("/"))
        if rel.endswith("/"):
            os.makedirs(path, exist_ok=True)
            continue
        os.makedirs(os.path.dirname(path), exist_ok=True)
        mode = "wb" if isinstance(content, bytes) else "w"
        with open(path, mode) as f:
            f.write(content)
