"""Exception taxonomy for archiving, transport and protocol failures."""
from __future__ import annotations


class TmcError(Exception):
    """Base class for every failure this package reports."""


class TaskCancelled(Exception):
    """Raised by a task body that observed its cancellation flag.

    Not a TmcError: cancellation is an outcome, not a failure.
    """


# ── Archiving ───────────────────────────────────────────────────────


class ArchiveError(TmcError):
    pass


class ArchiveRootNotFound(ArchiveError):
    """The directory to archive is missing or is not a directory."""


class ArchiveIOError(ArchiveError):
    """Reading a file failed while building an archive."""


# ── Transport ───────────────────────────────────────────────────────


class TransportError(TmcError):
    """The request never produced an HTTP response (DNS, refused, timeout)."""


class FailedHttpResponse(TransportError):
    """The server answered with a non-2xx status."""

    def __init__(self, status_code: int, body: str, url: str = ""):
        self.status_code = status_code
        self.body = body
        self.url = url
        super().__init__(f"HTTP {status_code} from {url or 'server'}: {body[:200]}")


class ObsoleteClientError(TmcError):
    """The server no longer accepts this client's protocol version."""

    def __init__(self, message: str = "This client version is obsolete. Please update."):
        super().__init__(message)


# ── Protocol ────────────────────────────────────────────────────────


class ProtocolError(TmcError):
    pass


class ServerRejectedError(ProtocolError):
    """A submission response carried an explicit ``error`` field."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"Server responded with error: {message}")


class MalformedResponseError(ProtocolError):
    pass


class UnknownResponseError(ProtocolError):
    pass


class ConfigError(TmcError):
    pass
