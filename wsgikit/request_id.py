"""Middleware that assigns every request a validated request id."""

from __future__ import annotations

import itertools
import secrets
import string
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Iterable, Mapping, Optional

from wsgikit.messages import Handler, Middleware, Request, Response

DEFAULT_REQUEST_ID_HEADER = "X-Request-ID"
DEFAULT_MAX_LEN = 128
_GENERATED_MAX_LEN = 256

_ALLOWED_CHARS = frozenset(string.ascii_letters + string.digits + "._-")


class _RequestIdKey:
    def __repr__(self) -> str:
        return "<request id key>"


_REQUEST_ID_KEY = _RequestIdKey()

_fallback_counter = itertools.count(1)
_fallback_lock = threading.Lock()


def validate_request_id(value: str, max_len: int = DEFAULT_MAX_LEN) -> bool:
    """Accept non-empty ids of letters, digits, '.', '_' and '-' within max_len."""
    if not value:
        return False
    if max_len > 0 and len(value) > max_len:
        return False
    return all(ch in _ALLOWED_CHARS for ch in value)


def _default_generator() -> str:
    return secrets.token_hex(16)


def _fallback_request_id() -> str:
    with _fallback_lock:
        counter = next(_fallback_counter)
    return f"{time.time_ns():x}-{counter:x}"


def _generate(generator: Optional[Callable[[], str]]) -> str:
    for gen in (generator, _default_generator):
        if gen is None:
            continue
        try:
            candidate = gen()
        except Exception:
            continue
        if candidate and validate_request_id(candidate, _GENERATED_MAX_LEN):
            return candidate
    return _fallback_request_id()


def request_id_from_context(context: Optional[Mapping[Any, Any]]) -> Optional[str]:
    """Return the request id stored in context, or None."""
    if context is None:
        return None
    value = context.get(_REQUEST_ID_KEY)
    if isinstance(value, str) and value:
        return value
    return None


def request_id_from_request(request: Optional[Request]) -> Optional[str]:
    """Return the request id stored in the request's context, or None."""
    if request is None:
        return None
    return request_id_from_context(request.context)


def with_request_id(
    context: Optional[Mapping[Any, Any]], request_id: str
) -> Mapping[Any, Any]:
    """Return a context carrying request_id; an empty id leaves it unchanged."""
    if context is None:
        context = {}
    if not request_id:
        return context
    return {**context, _REQUEST_ID_KEY: request_id}


def request_id(
    incoming_headers: Optional[Iterable[str]] = None,
    trust_incoming: bool = True,
    set_response_header: bool = True,
    max_len: int = DEFAULT_MAX_LEN,
    validator: Optional[Callable[[str], bool]] = None,
    generator: Optional[Callable[[], str]] = None,
) -> Middleware:
    """Return a middleware that ensures each request has a request id.

    The first valid single-valued incoming header (in order) is used when
    trusted; otherwise an id is generated. The id is stored in the request
    context and, by default, echoed in the X-Request-ID response header.
    A generator that raises or yields an invalid id falls back to a random one.
    """
    headers = [h.strip() for h in (incoming_headers or ()) if h and h.strip()]
    if not headers:
        headers = [DEFAULT_REQUEST_ID_HEADER]
    if max_len <= 0:
        max_len = DEFAULT_MAX_LEN
    limit = max_len

    def default_validator(value: str) -> bool:
        return validate_request_id(value, limit)

    validate_incoming = validator or default_validator

    def incoming_id(request: Request) -> Optional[str]:
        for name in headers:
            values = request.headers.getall(name, [])
            if len(values) != 1:
                continue
            value = values[0]
            if value and validate_incoming(value):
                return value
        return None

    def middleware(next_handler: Handler) -> Handler:
        if next_handler is None:
            raise TypeError("wsgikit: nil next handler")

        def handler(response: Response, request: Request) -> None:
            if request is None:
                raise TypeError("wsgikit: nil request")
            rid = incoming_id(request) if trust_incoming else None
            if not rid:
                rid = _generate(generator)
            if set_response_header:
                response.headers[DEFAULT_REQUEST_ID_HEADER] = rid
            context = with_request_id(request.context, rid)
            next_handler(response, replace(request, context=context))

        return handler

    return middleware