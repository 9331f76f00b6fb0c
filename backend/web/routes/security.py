"""
Same-origin checks for browser write requests (profile and avatar updates).
"""
from __future__ import annotations

import os
from typing import Optional, Tuple
from urllib.parse import urlparse

from fastapi import Request


def _default_port(scheme: str) -> int:
    return 443 if scheme == "https" else 80


def _parse_origin(url: str) -> Tuple[str, str, int]:
    p = urlparse(url)
    if not p.scheme or not p.hostname:
        raise ValueError("invalid_origin")
    scheme = p.scheme.lower()
    return scheme, p.hostname.lower(), int(p.port or _default_port(scheme))


def _server_origin(request: Request) -> Tuple[str, str, int]:
    """Origin the server is reached under; X-Forwarded-* only with APP_TRUST_PROXY=true."""
    trust_proxy = (os.getenv("APP_TRUST_PROXY", "false") or "").lower() == "true"
    if trust_proxy:
        proto = (request.headers.get("x-forwarded-proto") or request.url.scheme or "http").split(",")[0].strip().lower()
        host = (request.headers.get("x-forwarded-host") or request.headers.get("host") or "").split(",")[0].strip()
        if host:
            return _parse_origin(f"{proto}://{host}")
    scheme = (request.url.scheme or "http").lower()
    host = (request.url.hostname or "").lower()
    return scheme, host, int(request.url.port or _default_port(scheme))


def is_same_origin(request: Request) -> bool:
    """Verify same-origin using Origin or Referer headers.

    Without either header the request is allowed so non-browser clients keep
    working; ``csrf_violation`` is stricter in production.
    """
    claimed: Optional[str] = request.headers.get("origin") or request.headers.get("referer")
    if not claimed:
        return True
    try:
        return _parse_origin(claimed) == _server_origin(request)
    except ValueError:
        return False


def csrf_violation(request: Request) -> bool:
    """True when a write request must be rejected.

    In production (APP_ENV=prod) an Origin or Referer header is mandatory.
    """
    strict = (os.getenv("APP_ENV", "dev") or "").lower() in ("prod", "production")
    has_header = bool(request.headers.get("origin") or request.headers.get("referer"))
    if strict and not has_header:
        return True
    return not is_same_origin(request)
