"""URL helpers for link identity and site URL mapping."""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

# Click ids and analytics markers that friend-link URLs pick up when copied
# from a browser. Any ``utm_*`` key is dropped as well.
TRACKING_PARAMS = frozenset({"fbclid", "gclid", "msclkid", "mc_cid", "mc_eid", "spm", "ref", "ref_src", "_ga", "_gl"})


def extract_domain(url: str | None) -> str | None:
    """Lowercased host without ``www.``, or None when the URL has no host."""
    if not url:
        return None
    host = urlparse(url.strip()).netloc.lower()
    return host.removeprefix("www.") or None


def _is_tracking(name: str) -> bool:
    name = name.lower()
    return name.startswith("utm_") or name in TRACKING_PARAMS


def strip_tracking_params(query: str) -> str:
    """Drop tracking keys from a query string and sort what is left."""
    kept = [(k, v) for k, v in parse_qsl(query, keep_blank_values=True) if not _is_tracking(k)]
    return urlencode(sorted(kept))


def normalize_url(url: str | None) -> str | None:
    """Canonical form of a link URL, used as its identity at the destination.

    ``http``/``https`` collapse to https, host is lowercased without ``www.``,
    tracking params and fragments are dropped and trailing slashes removed.
    """
    if not url:
        return None

    parsed = urlparse(url.strip())
    if parsed.scheme.lower() not in ("http", "https"):
        return None

    host = extract_domain(url)
    if not host:
        return None

    return urlunparse(("https", host, parsed.path.rstrip("/"), "", strip_tracking_params(parsed.query), ""))


def join_url(base: str, path: str) -> str:
    """Join a base URL and a path without doubling or dropping slashes."""
    return f"{base.rstrip('/')}/{path.lstrip('/')}"
