"""Middleware that denies requests unless they pass token, IP or custom checks."""

from __future__ import annotations

import enum
import ipaddress
from collections.abc import Collection
from http import HTTPStatus
from typing import Callable, Iterable, Optional, Tuple

from wsgikit.messages import Handler, Middleware, Request, Response, _write_stderr
from wsgikit.real_ip import (
    IPAddress,
    IPNetwork,
    TrustedProxyError,
    parse_ip,
    parse_trusted_proxies,
    real_ip_from_request,
)

DEFAULT_ACCESS_GUARD_TOKEN_HEADER = "X-Access-Token"


class DenyReason(str, enum.Enum):
    """Why a request was denied; safe to log, never carries secret values."""

    TOKEN_MISSING = "token-missing"
    TOKEN_AMBIGUOUS = "token-ambiguous"
    TOKEN_EMPTY = "token-empty"
    TOKEN_SET_EMPTY = "token-set-empty"
    TOKEN_NOT_ALLOWED = "token-not-allowed"
    IP_PARSE_FAILED = "ip-parse-failed"
    IP_ALLOW_LIST_EMPTY = "ip-allowlist-empty"
    IP_NOT_ALLOWED = "ip-not-allowed"
    CUSTOM_CHECK_DENIED = "check-denied"


Verdict = Tuple[bool, Optional[DenyReason]]
TokenValidator = Callable[[str], Verdict]
IPValidator = Callable[[IPAddress], Verdict]
IPResolver = Callable[[Request], Optional[IPAddress]]
DenyHook = Callable[[Request, DenyReason], None]


def _token_set_validator(token_set: Collection[str]) -> TokenValidator:
    def validate(token: str) -> Verdict:
        if len(token_set) == 0:
            return False, DenyReason.TOKEN_SET_EMPTY
        if token in token_set:
            return True, None
        return False, DenyReason.TOKEN_NOT_ALLOWED

    return validate


def _token_check_validator(fn: Callable[[str], bool]) -> TokenValidator:
    def validate(token: str) -> Verdict:
        if fn(token):
            return True, None
        return False, DenyReason.TOKEN_NOT_ALLOWED

    return validate


def _ip_set_validator(networks: Collection[IPNetwork]) -> IPValidator:
    def validate(ip: IPAddress) -> Verdict:
        if len(networks) == 0:
            return False, DenyReason.IP_ALLOW_LIST_EMPTY
        if any(ip in network for network in networks):
            return True, None
        return False, DenyReason.IP_NOT_ALLOWED

    return validate


def _static_networks(entries: Iterable[str]) -> Tuple[IPNetwork, ...]:
    try:
        return tuple(parse_trusted_proxies(entries))
    except TrustedProxyError as exc:
        return tuple(exc.networks)


def _default_ip_resolver(request: Request) -> Optional[IPAddress]:
    ip = real_ip_from_request(request)
    if ip is not None:
        return ip
    return parse_ip(request.remote_addr)


def _normalize(ip: IPAddress) -> IPAddress:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _token_ok(request: Request, header: str, validate: TokenValidator) -> Verdict:
    values = request.headers.getall(header, [])
    if not values:
        return False, DenyReason.TOKEN_MISSING
    if len(values) != 1:
        return False, DenyReason.TOKEN_AMBIGUOUS
    token = values[0].strip()
    if not token:
        return False, DenyReason.TOKEN_EMPTY
    return validate(token)


def _ip_ok(request: Request, resolver: IPResolver, validate: IPValidator) -> Verdict:
    ip = resolver(request)
    if ip is None:
        return False, DenyReason.IP_PARSE_FAILED
    return validate(_normalize(ip))


def _deny(
    response: Response,
    request: Request,
    status: int,
    on_deny: Optional[DenyHook],
    reason: DenyReason,
) -> None:
    if on_deny is not None:
        try:
            on_deny(request, reason)
        except Exception as exc:
            parts = ["wsgikit: AccessGuard deny hook panicked"]
            if request.method:
                parts.append(f" method={request.method}")
            parts.append(f" url={request.url!r}")
            parts.append(f" value={exc}\n")
            _write_stderr("".join(parts))
    response.write_header(status)


def access_guard(
    tokens: Optional[Iterable[str]] = None,
    token_set: Optional[Collection[str]] = None,
    token_check: Optional[Callable[[str], bool]] = None,
    token_header: str = DEFAULT_ACCESS_GUARD_TOKEN_HEADER,
    ip_allow_list: Optional[Iterable[str]] = None,
    ip_allow_set: Optional[Collection[IPNetwork]] = None,
    ip_resolver: Optional[IPResolver] = None,
    deny_status: int = int(HTTPStatus.FORBIDDEN),
    any_of: bool = False,
    check: Optional[Callable[[Request], bool]] = None,
    on_deny: Optional[DenyHook] = None,
) -> Middleware:
    """Return a middleware that denies requests failing the configured checks.

    Token validation is enabled by ``tokens`` (static, blanks ignored),
    ``token_set`` (a live collection, consulted on every request) or
    ``token_check``. IP validation is enabled by ``ip_allow_list`` (CIDRs or
    single IPs, invalid entries ignored) or ``ip_allow_set`` (a live collection
    of networks). Empty sets deny everything. Both checks must pass unless
    ``any_of`` is true. ``check`` is an exclusive custom predicate.
    Conflicting or missing configuration raises ValueError.
    """
    token_sources = [
        name
        for name, value in (
            ("tokens", tokens),
            ("token_set", token_set),
            ("token_check", token_check),
        )
        if value is not None
    ]
    ip_sources = [
        name
        for name, value in (("ip_allow_list", ip_allow_list), ("ip_allow_set", ip_allow_set))
        if value is not None
    ]
    if len(token_sources) > 1:
        raise ValueError(
            f"wsgikit: AccessGuard {token_sources[1]} conflicts with existing token option"
        )
    if len(ip_sources) > 1:
        raise ValueError(
            f"wsgikit: AccessGuard {ip_sources[1]} conflicts with existing IP option"
        )
    if check is not None:
        if any_of:
            raise ValueError("wsgikit: AccessGuard check conflicts with any_of")
        if token_sources or ip_sources:
            raise ValueError("wsgikit: AccessGuard check conflicts with token/ip options")

    token_validator: Optional[TokenValidator] = None
    if tokens is not None:
        static = frozenset(t.strip() for t in tokens if t and t.strip())
        token_validator = _token_set_validator(static)
    elif token_set is not None:
        token_validator = _token_set_validator(token_set)
    elif token_check is not None:
        token_validator = _token_check_validator(token_check)

    ip_validator: Optional[IPValidator] = None
    if ip_allow_list is not None:
        ip_validator = _ip_set_validator(_static_networks(ip_allow_list))
    elif ip_allow_set is not None:
        ip_validator = _ip_set_validator(ip_allow_set)

    if token_validator is None and ip_validator is None and check is None:
        raise ValueError("wsgikit: access_guard has no checks configured")

    header = (token_header or "").strip() or DEFAULT_ACCESS_GUARD_TOKEN_HEADER
    status = deny_status if deny_status and deny_status > 0 else int(HTTPStatus.FORBIDDEN)
    resolver = ip_resolver or _default_ip_resolver

    def middleware(next_handler: Handler) -> Handler:
        if next_handler is None:
            raise TypeError("wsgikit: nil next handler")

        def handler(response: Response, request: Request) -> None:
            if request is None:
                raise TypeError("wsgikit: nil request")

            if check is not None:
                if not check(request):
                    _deny(response, request, status, on_deny, DenyReason.CUSTOM_CHECK_DENIED)
                    return
                next_handler(response, request)
                return

            verdicts = []
            if token_validator is not None:
                verdicts.append(_token_ok(request, header, token_validator))
            if ip_validator is not None:
                verdicts.append(_ip_ok(request, resolver, ip_validator))

            combine = any if any_of else all
            if not combine(ok for ok, _ in verdicts):
                reason = next(
                    (why for ok, why in verdicts if not ok and why is not None),
                    DenyReason.CUSTOM_CHECK_DENIED,
                )
                _deny(response, request, status, on_deny, reason)
                return

            next_handler(response, request)

        return handler

    return middleware