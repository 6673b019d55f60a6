"""Shared HTTP client factory for httpx-based destinations and checkers."""

from __future__ import annotations

import httpx

BROWSER_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"

MAX_REDIRECTS = 3


def create_http_client(
    *,
    proxy_url: str | None = None,
    user_agent: str = BROWSER_USER_AGENT,
    timeout: float = 30.0,
    follow_redirects: bool = False,
    base_url: str = "",
    headers: dict[str, str] | None = None,
    transport: httpx.BaseTransport | None = None,
) -> httpx.Client:
    """Create an httpx.Client with browser-like User-Agent and optional proxy."""
    merged = {"User-Agent": user_agent}
    if headers:
        merged.update(headers)
    return httpx.Client(
        base_url=base_url,
        headers=merged,
        timeout=timeout,
        proxy=proxy_url,
        follow_redirects=follow_redirects,
        max_redirects=MAX_REDIRECTS,
        transport=transport,
    )
