"""Middleware that turns handler exceptions into 500 responses."""

from __future__ import annotations

import traceback
from dataclasses import dataclass
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


class AbortHandler(Exception):
    """Raised to abort a request; recover lets it propagate unchanged."""


@dataclass(frozen=True)
class RecoverInfo:
    """A recovered failure: the raised value and its formatted traceback."""

    value: Any
    stack: str


PanicHandler = Callable[[Request, RecoverInfo], None]


def _report(request: Optional[Request], info: RecoverInfo) -> None:
    parts = ["wsgikit: panic"]
    if request is not None:
        if request.method:
            parts.append(f" method={request.method}")
        parts.append(f" url={request.url!r}")
    parts.append(f" value={info.value}\n")
    if info.stack:
        parts.append(info.stack)
        if not info.stack.endswith("\n"):
            parts.append("\n")
    _write_stderr("".join(parts))


def recover(on_panic: Optional[PanicHandler] = None) -> Middleware:
    """Return a middleware that recovers from exceptions raised downstream.

    AbortHandler is re-raised. Other exceptions are reported to ``on_panic``
    (or to stderr when none is given), and a 500 is written if the response
    has not started yet.
    """

    def middleware(next_handler: Handler) -> Handler:
        if next_handler is None:
            raise TypeError("wsgikit: nil next handler")

        def handler(response: Response, request: Request) -> None:
            try:
                next_handler(response, request)
            except AbortHandler:
                raise
            except Exception as exc:
                info = RecoverInfo(value=exc, stack=traceback.format_exc())
                if on_panic is not None:
                    try:
                        on_panic(request, info)
                    except Exception as secondary:
                        _report(
                            request,
                            RecoverInfo(
                                value=f"wsgikit: PanicHandler panicked: {secondary}",
                                stack=traceback.format_exc(),
                            ),
                        )
                else:
                    _report(request, info)
                if not response.started:
                    status = HTTPStatus.INTERNAL_SERVER_ERROR
                    http_error(response, status.phrase, status)

        return handler

    return middleware