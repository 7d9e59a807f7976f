"""Origin allowlist patterns and matching for CORS."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional, Sequence
from urllib.parse import urlsplit

from wsgikit.real_ip import _split_host

_FORBIDDEN_HOST_CHARS = frozenset(" \t\r\n/")


@dataclass(frozen=True)
class OriginPattern:
    """A hostname pattern: ``base`` and its subdomains, or subdomains only."""

    base: str
    require_subdomain: bool = False


def _normalize_hostname(host: Optional[str]) -> Optional[str]:
    if host is None:
        return None
    host = host.strip().lower()
    if host.endswith("."):
        host = host[:-1]
    if not host:
        return None
    if any(ch in _FORBIDDEN_HOST_CHARS for ch in host):
        return None
    return host


def _url_hostname(value: str, require_scheme: bool) -> Optional[str]:
    try:
        parts = urlsplit(value)
        parts.port
    except ValueError:
        return None
    if not parts.netloc or (require_scheme and not parts.scheme):
        return None
    return _normalize_hostname(parts.hostname)


def _normalize_host_like(value: str) -> Optional[str]:
    text = value.strip()
    if not text:
        return None
    if "://" in text:
        return _url_hostname(text, require_scheme=False)
    host = _split_host(text)
    if host is not None:
        text = host
    if len(text) > 2 and text.startswith("[") and text.endswith("]"):
        text = text[1:-1]
    return _normalize_hostname(text)


def parse_origin_pattern(value: str) -> Optional[OriginPattern]:
    """Parse a hostname, ``*.hostname`` or full origin into a pattern; None if invalid."""
    text = value.strip()
    if not text:
        return None
    if text.startswith("*."):
        base = _normalize_host_like(text[2:])
        return OriginPattern(base, require_subdomain=True) if base else None
    base = _normalize_host_like(text)
    return OriginPattern(base) if base else None


def count_valid_origin_patterns(origins: Iterable[str]) -> int:
    """Count the entries that parse as origin patterns, ignoring blanks."""
    return sum(
        1
        for raw in origins or ()
        if raw.strip() and parse_origin_pattern(raw) is not None
    )


def validate_origin_patterns(origins: Sequence[str]) -> None:
    """Raise ValueError when origins is non-empty but holds no valid pattern."""
    if not origins:
        return
    if count_valid_origin_patterns(origins) > 0:
        return
    raise ValueError("wsgikit: invalid allowed origins: no valid patterns parsed")


def origin_hostname(origin: str) -> Optional[str]:
    """Return the normalised hostname of an absolute origin, or None."""
    return _url_hostname(origin, require_scheme=True)


def match_hostname_pattern(host: str, pattern: OriginPattern) -> bool:
    """Match a hostname against a pattern on a dot boundary."""
    if not host or not pattern.base:
        return False
    host = host.lower()
    base = pattern.base.lower()
    if host == base:
        return not pattern.require_subdomain
    return host.endswith("." + base)


def is_origin_allowed(
    origin: str,
    patterns: Optional[Sequence[OriginPattern]],
    allow_null: bool = False,
) -> bool:
    """Decide whether an Origin value is allowed.

    None patterns allow any origin; an empty sequence denies all. The "null"
    origin is allowed only when ``allow_null`` is set.
    """
    if patterns is None:
        return True
    if len(patterns) == 0:
        return False
    if origin.lower() == "null":
        return allow_null
    host = origin_hostname(origin)
    if not host:
        return False
    return any(match_hostname_pattern(host, pattern) for pattern in patterns)