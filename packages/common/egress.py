"""
ScrapRate — Outbound HTTP for the price sheet fetch.

The refresh cycle reaches exactly one remote host, the pricing interface
named by PRICING_ENDPOINT_URL.  `egress_get()` refuses any URL whose host is
not on EGRESS_ALLOWLIST, so a misconfigured endpoint fails with
EgressViolation (and the cycle falls back) instead of calling out to an
arbitrary server.
"""

from __future__ import annotations

import urllib.parse
from typing import Any, Dict, Optional

import httpx

from common.config import EGRESS_ALLOWLIST


class EgressViolation(Exception):
    """Raised before any request when the target host is not allowlisted."""

    def __init__(self, url: str, domain: str) -> None:
        self.url    = url
        self.domain = domain
        super().__init__(
            f"EgressViolation: domain '{domain}' is not on the allowlist. "
            f"Full URL: {url}"
        )


def _extract_domain(url: str) -> str:
    """Lower-cased host of `url` without port or a leading 'www.'."""
    parsed = urllib.parse.urlparse(url)
    host   = (parsed.netloc or parsed.path).split(":")[0].lower()
    return host[4:] if host.startswith("www.") else host


def check_allowlist(url: str) -> None:
    """Raise EgressViolation if the URL's domain is not allowed."""
    domain = _extract_domain(url)
    if any(domain == allowed or domain.endswith("." + allowed) for allowed in EGRESS_ALLOWLIST):
        return
    raise EgressViolation(url, domain)


async def egress_get(
    url: str,
    *,
    params:    Optional[Dict[str, Any]] = None,
    headers:   Optional[Dict[str, str]] = None,
    timeout:   float = 15.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.Response:
    """
    Perform an allowlist-checked HTTP GET.

    `transport` is passed straight to httpx.AsyncClient; tests use it to
    plug in an httpx.MockTransport.

    Raises:
        EgressViolation: if the host is not on EGRESS_ALLOWLIST
        httpx.HTTPError: on network / timeout errors
    """
    check_allowlist(url)
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        return await client.get(url, params=params, headers=headers)
