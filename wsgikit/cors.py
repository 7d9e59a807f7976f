"""Middleware that adds CORS headers and answers preflight requests."""

from __future__ import annotations

from datetime import timedelta
from http import HTTPStatus
from typing import Callable, FrozenSet, Iterable, List, Optional, Union

from multidict import CIMultiDict

from wsgikit.messages import Handler, Middleware, Request, Response
from wsgikit.origins import OriginPattern, is_origin_allowed, parse_origin_pattern
from wsgikit.request_id import DEFAULT_REQUEST_ID_HEADER

RequestPredicate = Callable[[Request], bool]

DEFAULT_MAX_AGE = timedelta(minutes=10)
_PREFLIGHT_STATUSES = frozenset({int(HTTPStatus.OK), int(HTTPStatus.NO_CONTENT)})

_ACRM = "Access-Control-Request-Method"
_ACRH = "Access-Control-Request-Headers"


def add_vary(headers: CIMultiDict, value: str) -> None:
    """Add value to the Vary header unless already present or Vary is '*'."""
    if headers is None:
        return
    value = value.strip()
    if not value:
        return
    existing = headers.getall("Vary", [])
    if any(raw.strip() == "*" for raw in existing):
        return
    tokens = {
        token.strip().lower()
        for raw in existing
        for token in raw.split(",")
        if token.strip()
    }
    if value.lower() in tokens:
        return
    headers.add("Vary", value)


def _expose_value(
    expose_headers: Optional[Iterable[str]], expose_headers_append: Optional[Iterable[str]]
) -> str:
    seen = set()
    out: List[str] = []
    for group in (expose_headers, expose_headers_append):
        for raw in group or ():
            name = raw.strip()
            if not name or name.lower() in seen:
                continue
            seen.add(name.lower())
            out.append(name)
    return ", ".join(out)


def _name_set(names: Optional[Iterable[str]], upper: bool) -> Optional[FrozenSet[str]]:
    items = list(names or ())
    if not items:
        return None
    cleaned = (raw.strip() for raw in items)
    return frozenset(n.upper() if upper else n.lower() for n in cleaned if n)


def _origin_patterns(origins: Optional[Iterable[str]]) -> Optional[List[OriginPattern]]:
    items = list(origins or ())
    if not items:
        return None
    patterns = []
    for raw in items:
        if not raw.strip():
            continue
        pattern = parse_origin_pattern(raw)
        if pattern is not None:
            patterns.append(pattern)
    return patterns


def _max_age_seconds(max_age: Union[timedelta, float, int, None]) -> int:
    if max_age is None:
        return 0
    if isinstance(max_age, timedelta):
        return int(max_age.total_seconds())
    return int(max_age)


def _method_allowed(method: str, allowed: Optional[FrozenSet[str]]) -> bool:
    method = method.strip()
    if not method:
        return False
    if allowed is None:
        return True
    return method.upper() in allowed


def _request_headers_allowed(joined: str, allowed: Optional[FrozenSet[str]]) -> bool:
    if allowed is None:
        return True
    joined = joined.strip()
    if not joined:
        return True
    if not allowed:
        return False
    return all(
        part.strip().lower() in allowed for part in joined.split(",") if part.strip()
    )


def _single_value(headers: CIMultiDict, name: str) -> Optional[str]:
    values = headers.getall(name, [])
    if len(values) != 1:
        return None
    return values[0]


def _join_values(headers: CIMultiDict, name: str) -> str:
    values = headers.getall(name, [])
    if len(values) == 1:
        return values[0].strip()
    return ", ".join(v.strip() for v in values if v.strip())


def _is_preflight(request: Request) -> bool:
    if request.method != "OPTIONS":
        return False
    return bool(request.headers.get(_ACRM, "").strip())


def cors(
    enabled_func: Optional[RequestPredicate] = None,
    match_func: Optional[RequestPredicate] = None,
    allow_credentials: bool = True,
    allow_null_origin: bool = False,
    max_age: Union[timedelta, float, int, None] = DEFAULT_MAX_AGE,
    preflight_status: int = int(HTTPStatus.NO_CONTENT),
    expose_headers: Optional[Iterable[str]] = (DEFAULT_REQUEST_ID_HEADER,),
    expose_headers_append: Optional[Iterable[str]] = None,
    allowed_methods: Optional[Iterable[str]] = None,
    allowed_headers: Optional[Iterable[str]] = None,
    allowed_origins: Optional[Iterable[str]] = None,
) -> Middleware:
    """Return a middleware that adds CORS headers for browser clients.

    Defaults allow any Origin, send credentials, expose X-Request-ID and answer
    preflight requests with 204 and a ten-minute max age. A non-empty
    ``allowed_origins`` list with no valid entry denies every origin; likewise
    for ``allowed_methods`` and ``allowed_headers``. Disallowed requests pass
    downstream without CORS headers.
    """
    expose_value = _expose_value(expose_headers, expose_headers_append)
    methods = _name_set(allowed_methods, upper=True)
    req_headers = _name_set(allowed_headers, upper=False)
    patterns = _origin_patterns(allowed_origins)
    max_age_seconds = _max_age_seconds(max_age)
    status = (
        int(preflight_status)
        if preflight_status in _PREFLIGHT_STATUSES
        else int(HTTPStatus.NO_CONTENT)
    )

    def middleware(next_handler: Handler) -> Handler:
        if next_handler is None:
            raise TypeError("wsgikit: nil next handler")

        def common_headers(response: Response, origin: str) -> CIMultiDict:
            headers = response.headers
            headers["Access-Control-Allow-Origin"] = origin
            add_vary(headers, "Origin")
            if allow_credentials:
                headers["Access-Control-Allow-Credentials"] = "true"
            return headers

        def handler(response: Response, request: Request) -> None:
            if request is None:
                raise TypeError("wsgikit: nil request")
            if enabled_func is not None and not enabled_func(request):
                next_handler(response, request)
                return
            if match_func is not None and not match_func(request):
                next_handler(response, request)
                return

            origin = _single_value(request.headers, "Origin")
            if not origin or not is_origin_allowed(origin, patterns, allow_null_origin):
                next_handler(response, request)
                return

            if _is_preflight(request):
                acrm = request.headers.get(_ACRM, "").strip()
                if not _method_allowed(acrm, methods):
                    next_handler(response, request)
                    return
                acrh = _join_values(request.headers, _ACRH)
                if not _request_headers_allowed(acrh, req_headers):
                    next_handler(response, request)
                    return
                headers = common_headers(response, origin)
                if acrm:
                    headers["Access-Control-Allow-Methods"] = acrm
                    add_vary(headers, _ACRM)
                if acrh.strip():
                    headers["Access-Control-Allow-Headers"] = acrh
                    add_vary(headers, _ACRH)
                if max_age_seconds > 0:
                    headers["Access-Control-Max-Age"] = str(max_age_seconds)
                response.write_header(status)
                return

            if not _method_allowed(request.method, methods):
                next_handler(response, request)
                return

            headers = common_headers(response, origin)
            if expose_value:
                headers["Access-Control-Expose-Headers"] = expose_value
            next_handler(response, request)

        return handler

    return middleware