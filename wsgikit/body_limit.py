"""Middleware that enforces a maximum request body size."""

from __future__ import annotations

import enum
import io
from dataclasses import dataclass, replace
from http import HTTPStatus
from typing import Any, Callable, Optional

from wsgikit.messages import (
    Handler,
    Middleware,
    Request,
    Response,
    _write_stderr,
    http_error,
)


class BodyLimitSource(str, enum.Enum):
    """Where a body limit rejection was detected."""

    CONTENT_LENGTH = "content-length"
    READ = "read"


@dataclass(frozen=True)
class BodyLimitInfo:
    """Details of a body limit rejection or exceed event."""

    limit: int
    content_length: int
    source: BodyLimitSource


class MaxBytesError(Exception):
    """Raised by a limited body when a read goes past the limit."""

    def __init__(self, limit: int) -> None:
        super().__init__("wsgikit: request body too large")
        self.limit = limit


LimitFunc = Callable[[Request], Optional[int]]
RejectHook = Callable[[Request, BodyLimitInfo], None]


class _LimitedBody:
    """A read-only body wrapper that raises MaxBytesError past ``limit`` bytes."""

    def __init__(self, raw: Any, limit: int) -> None:
        self._raw = raw
        self._remaining = limit
        self.limit = limit
        self.exceeded = False

    def readable(self) -> bool:
        return True

    def _read_once(self, want: int) -> bytes:
        data = self._raw.read(want)
        if len(data) > self._remaining:
            self._remaining = 0
            self.exceeded = True
            raise MaxBytesError(self.limit)
        self._remaining -= len(data)
        return data

    def read(self, size: Optional[int] = -1) -> bytes:
        if self.exceeded:
            raise MaxBytesError(self.limit)
        if size is not None and size >= 0:
            if size == 0:
                return b""
            return self._read_once(min(size, self._remaining + 1))
        chunks = []
        while True:
            chunk = self._read_once(self._remaining + 1)
            if not chunk:
                return b"".join(chunks)
            chunks.append(chunk)

    def close(self) -> None:
        close = getattr(self._raw, "close", None)
        if close is not None:
            close()


def _report_hook_failure(request: Optional[Request], exc: BaseException) -> None:
    parts = ["wsgikit: BodyLimitHandler panicked"]
    if request is not None:
        if request.method:
            parts.append(f" method={request.method}")
        parts.append(f" url={request.url!r}")
    parts.append(f" value={exc}\n")
    _write_stderr("".join(parts))


def _call_on_reject(hook: Optional[RejectHook], request: Request, info: BodyLimitInfo) -> None:
    if hook is None:
        return
    try:
        hook(request, info)
    except Exception as exc:
        _report_hook_failure(request, exc)


def body_limit(
    max_bytes: int,
    limit_func: Optional[LimitFunc] = None,
    on_reject: Optional[RejectHook] = None,
) -> Middleware:
    """Return a middleware that limits the request body to ``max_bytes``.

    ``limit_func`` overrides the limit per request; returning None or a value
    <= 0 skips the check. A known Content-Length above the limit is rejected
    early with 413; otherwise the body is wrapped so that reads past the limit
    raise MaxBytesError. ``on_reject`` observes both cases; it must not write
    the response and its exceptions are swallowed.
    """

    def middleware(next_handler: Handler) -> Handler:
        if next_handler is None:
            raise TypeError("wsgikit: nil next handler")

        def handler(response: Response, request: Request) -> None:
            if request is None:
                raise TypeError("wsgikit: nil request")

            limit: Optional[int] = max_bytes
            if limit_func is not None:
                limit = limit_func(request)
                if limit is None:
                    next_handler(response, request)
                    return
            if limit is None or limit <= 0:
                next_handler(response, request)
                return

            if request.content_length > limit:
                info = BodyLimitInfo(
                    limit=limit,
                    content_length=request.content_length,
                    source=BodyLimitSource.CONTENT_LENGTH,
                )
                _call_on_reject(on_reject, request, info)
                response.headers["Connection"] = "close"
                close = getattr(request.body, "close", None)
                if close is not None:
                    close()
                status = HTTPStatus.REQUEST_ENTITY_TOO_LARGE
                http_error(response, status.phrase, status)
                return

            raw = request.body if request.body is not None else io.BytesIO(b"")
            limited = _LimitedBody(raw, limit)
            limited_request = replace(request, body=limited)
            next_handler(response, limited_request)

            if limited.exceeded:
                info = BodyLimitInfo(
                    limit=limit,
                    content_length=request.content_length,
                    source=BodyLimitSource.READ,
                )
                _call_on_reject(on_reject, limited_request, info)

        return handler

    return middleware