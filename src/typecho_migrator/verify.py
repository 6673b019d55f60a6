"""URL liveness checks: broken images in post bodies and old-to-new URL mapping.

Checks are I/O-bound and independent, so they run on a bounded thread pool.
Every check produces a ``CheckResult``; network problems are reported in the
result and never raised.
"""

from __future__ import annotations

import concurrent.futures
import re
from collections.abc import Iterable, Sequence
from urllib.parse import urlparse

import httpx
import structlog
from pydantic import BaseModel, Field

from typecho_migrator.models import ContentRecord
from typecho_migrator.utils.http import create_http_client
from typecho_migrator.utils.urls import join_url

IMAGE_WORKERS = 10
MAPPING_WORKERS = 5
DEFAULT_TIMEOUT = 30.0
DEFAULT_PATH_TEMPLATE = "/archives/{slug}.html"

_IMAGE_PATTERN = re.compile(r"!\[[^\]]*?\]\(([^)\s]+)[^)]*\)")

_IMAGE_HEADERS = {
    "Accept": "image/avif,image/webp,image/apng,image/svg+xml,image/*,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class CheckResult(BaseModel):
    url: str
    ok: bool
    status_code: int | None = None
    error: str | None = None

    model_config = {"frozen": True}

    @property
    def unreachable(self) -> bool:
        """No HTTP response at all (timeout, DNS, refused, bad URL)."""
        return not self.ok and self.status_code is None


class CleanResult(BaseModel):
    content: str
    removed: int = 0
    checked: int = 0
    broken: list[CheckResult] = Field(default_factory=list)


class MappingFailure(BaseModel):
    old_url: str
    new_url: str
    error: str


class MappingReport(BaseModel):
    checked: int = 0
    passed: int = 0
    failed: int = 0
    failures: list[MappingFailure] = Field(default_factory=list)

    def summary(self) -> str:
        lines = [f"Total: {self.checked} | Passed: {self.passed} | Failed: {self.failed}"]
        if self.failures:
            lines.append("Failures:")
            lines.extend(f"  {f.new_url} [{f.error}]" for f in self.failures)
        return "\n".join(lines)


def _valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def check_url(client: httpx.Client, url: str, method: str = "GET", *, require_200: bool = True) -> CheckResult:
    """Request *url* and classify the response.

    Images must answer exactly 200; pages (``require_200=False``) may answer
    any 2xx. Only the headers are read.
    """
    if not _valid_url(url):
        return CheckResult(url=url, ok=False, error="Invalid URL")

    try:
        with client.stream(method, url) as resp:
            status = resp.status_code
    except httpx.TimeoutException:
        return CheckResult(url=url, ok=False, error="Timeout")
    except httpx.TooManyRedirects:
        return CheckResult(url=url, ok=False, error="Too many redirects")
    except httpx.InvalidURL:
        return CheckResult(url=url, ok=False, error="Invalid URL")
    except httpx.HTTPError as exc:
        return CheckResult(url=url, ok=False, error=str(exc) or type(exc).__name__)

    ok = status == 200 if require_200 else 200 <= status < 300
    return CheckResult(url=url, ok=ok, status_code=status, error=None if ok else f"HTTP {status}")


def check_urls(
    urls: Sequence[str],
    *,
    max_workers: int = IMAGE_WORKERS,
    timeout: float = DEFAULT_TIMEOUT,
    method: str = "GET",
    require_200: bool = True,
    proxy_url: str | None = None,
    headers: dict[str, str] | None = None,
    transport: httpx.BaseTransport | None = None,
    log: structlog.stdlib.BoundLogger | None = None,
) -> list[CheckResult]:
    """Check every distinct URL on a pool of *max_workers* threads.

    Returns one result per input URL, in input order (duplicates share a
    single request).
    """
    log = log or structlog.get_logger(__name__)
    unique = list(dict.fromkeys(urls))
    if not unique:
        return []

    results: dict[str, CheckResult] = {}
    client = create_http_client(
        proxy_url=proxy_url,
        timeout=timeout,
        follow_redirects=True,
        headers=headers,
        transport=transport,
    )
    try:
        with concurrent.futures.ThreadPoolExecutor(max_workers=max_workers) as executor:
            futures = {executor.submit(check_url, client, url, method, require_200=require_200): url for url in unique}
            for future in concurrent.futures.as_completed(futures):
                result = future.result()
                results[futures[future]] = result
                if not result.ok:
                    log.info("verify.url_failed", url=result.url, status=result.status_code, error=result.error)
    finally:
        client.close()

    log.info("verify.urls_checked", total=len(unique), failed=sum(1 for r in results.values() if not r.ok))
    return [results[url] for url in urls]


def extract_image_urls(markdown: str) -> list[str]:
    """URLs of every ``![alt](url)`` image in *markdown*, in order of appearance."""
    return _IMAGE_PATTERN.findall(markdown)


def clean_broken_images(markdown: str, results: Iterable[CheckResult]) -> CleanResult:
    """Remove every image reference whose check failed."""
    checked = list(results)
    broken = [r for r in checked if not r.ok]
    broken_urls = {r.url for r in broken}
    removed = 0

    def _replace(match: re.Match[str]) -> str:
        nonlocal removed
        if match.group(1) in broken_urls:
            removed += 1
            return ""
        return match.group(0)

    content = _IMAGE_PATTERN.sub(_replace, markdown)
    return CleanResult(content=content, removed=removed, checked=len(checked), broken=broken)


def clean_images(
    markdown: str,
    *,
    max_workers: int = IMAGE_WORKERS,
    timeout: float = DEFAULT_TIMEOUT,
    proxy_url: str | None = None,
    transport: httpx.BaseTransport | None = None,
    log: structlog.stdlib.BoundLogger | None = None,
) -> CleanResult:
    """Check the images referenced by *markdown* and strip the broken ones."""
    urls = extract_image_urls(markdown)
    if not urls:
        return CleanResult(content=markdown)
    results = check_urls(
        urls,
        max_workers=max_workers,
        timeout=timeout,
        proxy_url=proxy_url,
        headers=_IMAGE_HEADERS,
        transport=transport,
        log=log,
    )
    return clean_broken_images(markdown, results)


def check_mapping(
    records: Iterable[ContentRecord],
    old_domain: str,
    new_domain: str,
    *,
    path_template: str = DEFAULT_PATH_TEMPLATE,
    max_workers: int = MAPPING_WORKERS,
    timeout: float = DEFAULT_TIMEOUT,
    proxy_url: str | None = None,
    transport: httpx.BaseTransport | None = None,
    log: structlog.stdlib.BoundLogger | None = None,
) -> MappingReport:
    """Confirm that each old-site content path answers on the new domain.

    Only the new URL is requested; the old URL is kept alongside it in the
    report so a failure shows which address it replaces.

    Args:
        records: Posts and pages whose slugs define the URLs.
        old_domain: Old site root, e.g. ``https://blog.example.com``.
        new_domain: New site root.
        path_template: Path format with a ``{slug}`` placeholder.
        max_workers: Concurrent HEAD requests.

    Returns:
        Counts plus the list of failing URL pairs.
    """
    log = log or structlog.get_logger(__name__)
    old_domain = old_domain.rstrip("/")
    new_domain = new_domain.rstrip("/")

    pairs = []
    for r in records:
        path = path_template.format(slug=r.slug)
        pairs.append((join_url(old_domain, path), join_url(new_domain, path)))
    log.info("verify.mapping_starting", old=old_domain, new=new_domain, total=len(pairs))

    results = check_urls(
        [new for _, new in pairs],
        max_workers=max_workers,
        timeout=timeout,
        method="HEAD",
        require_200=False,
        proxy_url=proxy_url,
        transport=transport,
        log=log,
    )

    report = MappingReport(checked=len(pairs))
    for (old_url, new_url), result in zip(pairs, results, strict=True):
        if result.ok:
            report.passed += 1
        else:
            report.failed += 1
            report.failures.append(MappingFailure(old_url=old_url, new_url=new_url, error=result.error or "unknown"))
    return report
