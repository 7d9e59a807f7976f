"""Middleware that works out the real client IP behind trusted proxies."""

from __future__ import annotations

import enum
import ipaddress
from dataclasses import replace
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from wsgikit.messages import Handler, Middleware, Request, Response

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]

DEFAULT_REAL_IP_HEADERS = ("X-Forwarded-For", "X-Real-IP")


class XFFInvalidPolicy(enum.Enum):
    """How X-Forwarded-For scanning treats entries that are not IPs."""

    STOP = "stop"
    SKIP = "skip"
    SKIP_UNKNOWN = "skip-unknown"


class TrustedProxyError(ValueError):
    """Raised when some trusted proxy entries cannot be parsed.

    ``networks`` holds the entries that did parse; ``invalid`` the raw
    entries that did not.
    """

    def __init__(self, networks: List[IPNetwork], invalid: List[str]) -> None:
        listed = ", ".join(repr(entry) for entry in invalid)
        super().__init__(f"wsgikit: invalid trusted proxy CIDR/IP entries: {listed}")
        self.networks = networks
        self.invalid = invalid


class _RealIPKey:
    def __repr__(self) -> str:
        return "<real ip key>"


_REAL_IP_KEY = _RealIPKey()


def _normalize(ip: IPAddress) -> IPAddress:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _parse_address(text: str) -> Optional[IPAddress]:
    """Parse a bare IP literal (no port, no zone)."""
    if not text or "%" in text:
        return None
    try:
        return _normalize(ipaddress.ip_address(text))
    except ValueError:
        return None


def _split_host(value: str) -> Optional[str]:
    """Return the host part of ``host:port``, or None if value is not in that form."""
    colon = value.rfind(":")
    if colon < 0:
        return None
    if value.startswith("["):
        end = value.find("]")
        if end < 0 or end + 1 != colon:
            return None
        host = value[1:end]
        if "[" in value[1:] or "]" in value[end + 1 :]:
            return None
        return host
    host = value[:colon]
    if ":" in host or "[" in host or "]" in host:
        return None
    if "[" in value[colon + 1 :] or "]" in value[colon + 1 :]:
        return None
    return host


def parse_ip(value: Optional[str]) -> Optional[IPAddress]:
    """Parse an IP address that may carry a port; None when it is not one."""
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None
    host = _split_host(text)
    if host is not None:
        text = host
    return _parse_address(text)


def _parse_network(text: str) -> Optional[IPNetwork]:
    if "/" in text:
        address, _, prefix = text.partition("/")
        if not prefix.isdigit() or "%" in address:
            return None
        try:
            return ipaddress.ip_network(text, strict=False)
        except ValueError:
            return None
    ip = _parse_address(text)
    if ip is None:
        return None
    return ipaddress.ip_network(ip)


def parse_trusted_proxies(cidrs: Optional[Iterable[str]]) -> List[IPNetwork]:
    """Parse CIDRs or single IPs into networks.

    Blank entries are ignored. If any entry is invalid, TrustedProxyError is
    raised carrying the networks that did parse.
    """
    networks: List[IPNetwork] = []
    invalid: List[str] = []
    for raw in cidrs or ():
        text = raw.strip()
        if not text:
            continue
        network = _parse_network(text)
        if network is None:
            invalid.append(raw)
            continue
        networks.append(network)
    if invalid:
        raise TrustedProxyError(networks, invalid)
    return networks


def is_trusted_ip(ip: IPAddress, trusted_proxies: Sequence[IPNetwork]) -> bool:
    """Report whether ip lies in one of the trusted networks."""
    ip = _normalize(ip)
    return any(ip in network for network in trusted_proxies)


def extract_from_xff(
    value: str,
    trusted_proxies: Sequence[IPNetwork],
    policy: XFFInvalidPolicy = XFFInvalidPolicy.STOP,
) -> Optional[IPAddress]:
    """Scan an X-Forwarded-For value right to left for the first untrusted IP."""
    for part in reversed(value.split(",")):
        token = part.strip()
        if not token:
            continue
        if policy is XFFInvalidPolicy.SKIP_UNKNOWN and token.lower() == "unknown":
            continue
        ip = parse_ip(token)
        if ip is None:
            if policy is XFFInvalidPolicy.SKIP:
                continue
            return None
        if not is_trusted_ip(ip, trusted_proxies):
            return ip
    return None


def _extract_from_header(
    request: Request,
    header: str,
    trusted_proxies: Sequence[IPNetwork],
    policy: XFFInvalidPolicy,
) -> Optional[IPAddress]:
    values = request.headers.getall(header, [])
    if not values:
        return None
    if header.lower() == "x-forwarded-for":
        return extract_from_xff(", ".join(values), trusted_proxies, policy)
    if len(values) != 1:
        return None
    return parse_ip(values[0])


def _extract_real_ip(
    request: Request,
    trusted_proxies: Sequence[IPNetwork],
    headers: Sequence[str],
    policy: XFFInvalidPolicy,
) -> Optional[IPAddress]:
    direct = parse_ip(request.remote_addr)
    if direct is None:
        return None
    if not trusted_proxies or not is_trusted_ip(direct, trusted_proxies):
        return direct
    for header in headers:
        ip = _extract_from_header(request, header, trusted_proxies, policy)
        if ip is not None:
            return ip
    return direct


def real_ip_from_context(context: Optional[Mapping[Any, Any]]) -> Optional[IPAddress]:
    """Return the real IP stored in context, or None."""
    if context is None:
        return None
    value = context.get(_REAL_IP_KEY)
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return value
    return None


def real_ip_from_request(request: Optional[Request]) -> Optional[IPAddress]:
    """Return the real IP stored in the request's context, or None."""
    if request is None:
        return None
    return real_ip_from_context(request.context)


def with_real_ip(
    context: Optional[Mapping[Any, Any]], ip: Optional[IPAddress]
) -> Mapping[Any, Any]:
    """Return a context carrying ip; a None ip returns the context unchanged."""
    if context is None:
        context = {}
    if ip is None:
        return context
    return {**context, _REAL_IP_KEY: ip}


def _coerce_policy(policy: Any) -> XFFInvalidPolicy:
    if isinstance(policy, XFFInvalidPolicy):
        return policy
    try:
        return XFFInvalidPolicy(policy)
    except ValueError:
        return XFFInvalidPolicy.STOP


def real_ip(
    trusted_proxies: Optional[Iterable[str]] = None,
    trusted_headers: Optional[Iterable[str]] = None,
    xff_invalid_policy: XFFInvalidPolicy = XFFInvalidPolicy.STOP,
) -> Middleware:
    """Return a middleware that stores the real client IP in the request context.

    Headers are trusted only when the direct peer lies in a trusted proxy
    network; invalid proxy entries are ignored. X-Forwarded-For is scanned
    right to left; other headers must hold exactly one value.
    """
    try:
        networks = parse_trusted_proxies(trusted_proxies)
    except TrustedProxyError as exc:
        networks = exc.networks
    headers = [h.strip() for h in (trusted_headers or ()) if h and h.strip()]
    if not headers:
        headers = list(DEFAULT_REAL_IP_HEADERS)
    policy = _coerce_policy(xff_invalid_policy)

    def middleware(next_handler: Handler) -> Handler:
        if next_handler is None:
            raise TypeError("wsgikit: nil next handler")

        def handler(response: Response, request: Request) -> None:
            if request is None:
                raise TypeError("wsgikit: nil request")
            ip = _extract_real_ip(request, networks, headers, policy)
            context = with_real_ip(request.context, ip)
            if context is request.context:
                next_handler(response, request)
                return
            next_handler(response, replace(request, context=context))

        return handler

    return middleware