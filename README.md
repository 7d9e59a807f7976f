# wsgikit

A small set of HTTP middleware built around plain request and response
objects. Each middleware is made by a factory function that takes keyword
options and returns a callable which wraps a handler, so middlewares compose
by nesting. Configuration mistakes are raised as exceptions when the
middleware is built, not when a request arrives.

## Installing

```
pip install wsgikit
```

The only runtime dependency is `multidict`, used for case-insensitive,
multi-valued headers.

## Handlers, requests and responses

A handler is any callable taking `(response, request)` and returning `None`.
A middleware takes a handler and returns a new handler.

`wsgikit.messages` provides the two message types:

- `Request` — a dataclass with `method`, `url`, `headers` (a `CIMultiDict`;
  a plain dict or list of pairs is converted), `remote_addr`, `body`,
  `content_length` and `context`. A `bytes` body is wrapped in a stream and
  its length becomes `content_length`; a stream body leaves the length
  unknown (`-1`) unless you give it; no body means a length of `0`.
  `context` is a read-only mapping; middlewares that add values pass a copy
  of the request with a new context downstream.
- `Response` — records `status`, `headers` and `body`. `write_header(status)`
  sets the status once; `write(data)` appends to the body (starting the
  response with 200 if needed); `flush()` marks the response as sent. After
  any of these, `started` is true and later status writes are ignored.

`http_error(response, message, status)` writes a plain-text error reply.

```python
from wsgikit.messages import Request, Response
from wsgikit.recover import recover
from wsgikit.request_id import request_id, request_id_from_request


def app(response, request):
    response.write(f"id={request_id_from_request(request)}")


handler = recover()(request_id()(app))

response = Response()
handler(response, Request(method="GET", url="/", headers={"X-Request-ID": "abc_123"}))
assert response.headers["X-Request-ID"] == "abc_123"
```

## What is included

| Module | Factory | Purpose |
| --- | --- | --- |
| `wsgikit.recover` | `recover(on_panic)` | Catches exceptions from downstream handlers, reports them, and answers 500 if the response has not started. `AbortHandler` is always re-raised. |
| `wsgikit.request_id` | `request_id(...)` | Gives every request an id: a validated incoming header value or a freshly generated one, stored in the request context and echoed in `X-Request-ID`. |
| `wsgikit.real_ip` | `real_ip(...)` | Works out the client address. Proxy headers are trusted only when the direct peer is in a trusted-proxy range. |
| `wsgikit.access_guard` | `access_guard(...)` | Denies requests that fail a token check, an IP allowlist, or a custom check. |
| `wsgikit.body_limit` | `body_limit(max_bytes, ...)` | Rejects oversized bodies early from `Content-Length`, and makes reads past the limit raise `MaxBytesError`. |
| `wsgikit.cors` | `cors(...)` | Adds CORS headers and answers allowed preflight requests directly. |
| `wsgikit.origins` | — | Origin pattern parsing and matching used by `cors`. |

## Recovering from exceptions

`recover(on_panic=None)` catches any `Exception` raised downstream. The
`on_panic` hook receives the request and a `RecoverInfo` with the exception
(`value`) and the formatted traceback (`stack`); without a hook the failure
is written to stderr. If the hook itself raises, that is reported to stderr
and swallowed. A 500 is written only if the response has not started.

## Request ids

```python
from wsgikit.request_id import request_id

middleware = request_id(
    incoming_headers=["X-Correlation-ID", "X-Request-ID"],
    max_len=64,
)
```

Incoming headers are checked in order; a header with more than one value is
skipped. By default an id must be non-empty, no longer than `max_len`
(default 128) and made only of ASCII letters, digits, `.`, `_` and `-`
(see `validate_request_id`); pass `validator` to replace that rule for
incoming ids. With `trust_incoming=False` an id is always generated.
`generator` supplies ids; if it raises or returns an invalid id, a random
32-character hex id is used. `set_response_header=False` stops the id being
echoed. `request_id_from_request`, `request_id_from_context` and
`with_request_id` read and store ids.

## Real client IP

```python
from wsgikit.real_ip import XFFInvalidPolicy, real_ip

middleware = real_ip(
    trusted_proxies=["10.0.0.0/8", "192.168.1.1"],
    trusted_headers=["X-Forwarded-For", "X-Real-IP"],
    xff_invalid_policy=XFFInvalidPolicy.STOP,
)
```

Without trusted proxies, headers are ignored and the peer address is used.
`X-Forwarded-For` values (all of them, joined) are scanned right to left,
skipping trusted hops; `XFFInvalidPolicy` decides whether an unparsable
entry stops the scan (`STOP`), is skipped (`SKIP`), or whether only
`unknown` is skipped (`SKIP_UNKNOWN`). Other headers must carry exactly one
value. IPv4-mapped IPv6 addresses are matched as IPv4. The result is an
`ipaddress` object, read with `real_ip_from_request` or
`real_ip_from_context`.

Invalid proxy entries are silently dropped by `real_ip`. To fail fast at
start-up, call `parse_trusted_proxies`, which raises `TrustedProxyError`
(carrying the `networks` that parsed and the `invalid` entries). `parse_ip`,
`extract_from_xff` and `is_trusted_ip` are available on their own.

## Access guard

```python
from wsgikit.access_guard import DenyReason, access_guard

guard = access_guard(
    tokens=["token"],
    ip_allow_list=["10.0.0.0/8", "fd00::/8"],
    any_of=True,  # token OR ip; the default requires both
)
```

- Tokens: `tokens` (a static list; blank entries ignored), `token_set` (a
  live collection consulted on every request) or `token_check` (a
  predicate). The token is read from `token_header`, default
  `X-Access-Token`; it must appear exactly once and be non-blank.
- IPs: `ip_allow_list` (CIDRs or single IPs; invalid entries ignored) or
  `ip_allow_set` (a live collection of networks). The client IP comes from
  `ip_resolver`, by default the value stored by `real_ip`, else the peer
  address — so place `real_ip` before the guard when behind proxies.
- `check`: a custom predicate on the request, used alone.

The guard fails closed: an empty or all-invalid token set or allowlist
denies every request. Denials answer `deny_status` (default 403). Building a
guard with no checks, two token sources, two IP sources, or `check`
together with token/IP options or `any_of` raises `ValueError`. The
`on_deny` hook receives the request and a `DenyReason`; its exceptions are
reported to stderr and swallowed.

## Body limits

```python
from wsgikit.body_limit import MaxBytesError, body_limit

middleware = body_limit(1 << 20)


def upload(response, request):
    try:
        data = request.body.read()
    except MaxBytesError:
        response.write_header(413)
        return
    response.write(f"{len(data)} bytes")
```

A known `Content-Length` above the limit gets `413` with
`Connection: close`, the request body is closed and the handler is not
called. Otherwise the body is wrapped so reads past the limit raise
`MaxBytesError`; the handler decides how to respond. `limit_func` returns a
per-request limit, and `None` or a value `<= 0` (like `max_bytes <= 0`)
skips the check. `on_reject` receives a `BodyLimitInfo` (`limit`,
`content_length`, `source`), with `source` being
`BodyLimitSource.CONTENT_LENGTH` or, after the handler returns,
`BodyLimitSource.READ`. Its exceptions are reported to stderr and swallowed.

## CORS

```python
from wsgikit.cors import cors

middleware = cors(
    allowed_origins=["example.com", "*.example.com"],
    allowed_methods=["GET", "POST"],
)
```

By default any origin is reflected, credentials are allowed, preflights
(`OPTIONS` with `Access-Control-Request-Method`) get `204` with a
ten-minute max age, and `X-Request-ID` is exposed. Options:
`allow_credentials`, `allow_null_origin`, `max_age` (a `timedelta` or
seconds; `0` omits the header), `preflight_status` (200 or 204),
`expose_headers`, `expose_headers_append`, `allowed_methods`,
`allowed_headers`, `allowed_origins`, and the per-request switches
`enabled_func` and `match_func`.

CORS applies only when there is exactly one non-empty `Origin` header.
Origin patterns match the hostname only: `example.com` covers the domain
and its subdomains, `*.example.com` only the subdomains; full origins such
as `https://example.com:8443` are accepted as patterns. A non-empty list
with no valid entry denies every origin (likewise for methods and headers).
Disallowed requests pass downstream without CORS headers. `add_vary` adds a
`Vary` token without duplicates. `validate_origin_patterns` in
`wsgikit.origins` raises `ValueError` for an allowlist in which no entry
parses.

## What this package does not do

Despite the name, there is no WSGI adapter and no server. The middlewares
work on `wsgikit.messages.Request` and `Response` only; to use them in an
application you build a `Request` from your framework's request and copy
the resulting `Response` status, headers and body back yourself.

## Running the tests

```
pip install -e ".[test]"
pytest
```