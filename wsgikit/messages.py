"""Request and response objects shared by the middlewares."""

from __future__ import annotations

import io
import sys
import threading
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable, Mapping, Optional

from multidict import CIMultiDict

Handler = Callable[["Response", "Request"], None]
Middleware = Callable[[Handler], Handler]

_stderr_lock = threading.Lock()


def _write_stderr(text: str) -> None:
    """Write a diagnostic line to stderr, serialised across threads."""
    with _stderr_lock:
        sys.stderr.write(text)
        sys.stderr.flush()


@dataclass
class Request:
    """An incoming HTTP request as seen by handlers and middlewares.

    ``body`` may be given as bytes (its length becomes ``content_length``) or as a
    binary stream (length unknown, ``content_length`` is -1 unless given).
    ``context`` is a read-only mapping carrying per-request values.
    """

    method: str = "GET"
    url: str = "/"
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    remote_addr: str = "192.0.2.1:1234"
    body: Any = None
    content_length: Optional[int] = None
    context: Mapping[Any, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.headers, CIMultiDict):
            self.headers = CIMultiDict(self.headers or ())
        if isinstance(self.body, (bytes, bytearray, memoryview)):
            data = bytes(self.body)
            self.body = io.BytesIO(data)
            if self.content_length is None:
                self.content_length = len(data)
        if self.content_length is None:
            self.content_length = 0 if self.body is None else -1


@dataclass
class Response:
    """A buffered response that records status, headers and body.

    ``started`` becomes true once a status is written, body bytes are written or
    the response is flushed; later status writes are ignored.
    """

    status: int = int(HTTPStatus.OK)
    headers: CIMultiDict = field(default_factory=CIMultiDict)
    body: bytearray = field(default_factory=bytearray)
    started: bool = False

    def write_header(self, status: int) -> None:
        """Set the status code unless the response has already started."""
        if self.started:
            return
        self.status = int(status)
        self.started = True

    def write(self, data: bytes | bytearray | str) -> int:
        """Append data to the body, starting the response with 200 if needed."""
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not self.started:
            self.write_header(HTTPStatus.OK)
        self.body.extend(data)
        return len(data)

    def flush(self) -> None:
        """Mark the response as sent to the client."""
        self.started = True


def http_error(response: Response, message: str, status: int) -> None:
    """Reply with a plain-text error message and the given status."""
    response.headers.popall("Content-Length", None)
    response.headers["Content-Type"] = "text/plain; charset=utf-8"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.write_header(status)
    response.write(f"{message}\n")