"""Destination adapter contract and shared HTTP helpers."""

from __future__ import annotations

from typing import Any, Protocol

import httpx
from tenacity import RetryCallState, retry, retry_if_exception, stop_after_attempt, wait_exponential

from typecho_migrator.errors import DestinationError
from typecho_migrator.models import IdentityEntry
from typecho_migrator.statuses import DestinationKind

RETRY_STATUSES = (429, 503)


class DestinationAdapter(Protocol):
    """What the sync loop needs from a destination."""

    kind: DestinationKind
    key_field: str

    def query_existing(self) -> dict[str, IdentityEntry]:
        """Natural key -> identity entry for everything already at the destination."""
        ...

    def create(self, record: Any) -> str:
        """Create *record*; return its remote id."""
        ...

    def update(self, remote_id: str, record: Any) -> None:
        ...


def _is_throttled(exc: BaseException) -> bool:
    return isinstance(exc, DestinationError) and exc.status_code in RETRY_STATUSES


def _retry_after_seconds(value: str | None) -> float | None:
    """Seconds from a Retry-After header; the HTTP-date form is left to the backoff."""
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


_backoff = wait_exponential(multiplier=1, min=1, max=30)


def _wait_for_retry(retry_state: RetryCallState) -> float:
    """Wait what the server asked for in ``Retry-After``, else back off exponentially."""
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(exc, DestinationError) and exc.retry_after:
        return exc.retry_after
    return _backoff(retry_state)


@retry(
    retry=retry_if_exception(_is_throttled),
    stop=stop_after_attempt(5),
    wait=_wait_for_retry,
    reraise=True,
)
def request_json(client: httpx.Client, method: str, url: str, *, label: str, **kwargs: Any) -> Any:
    """Send a request and return decoded JSON, mapping every failure to ``DestinationError``.

    429/503 responses are retried with exponential backoff, honoring
    ``Retry-After`` when the server sends one.
    """
    try:
        resp = client.request(method, url, **kwargs)
    except httpx.HTTPError as exc:
        raise DestinationError(f"{label} request failed: {exc}") from exc

    if resp.is_error:
        retry_after = _retry_after_seconds(resp.headers.get("retry-after")) if resp.status_code in RETRY_STATUSES else None
        raise DestinationError(
            f"{label} API error {resp.status_code}: {resp.text}",
            status_code=resp.status_code,
            retry_after=retry_after,
        )

    if not resp.content:
        return {}
    try:
        return resp.json()
    except ValueError as exc:
        raise DestinationError(f"{label} returned invalid JSON: {exc}", status_code=resp.status_code) from exc
