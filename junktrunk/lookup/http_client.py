"""HTTP helper with per-source policies and status-aware error handling."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

# Retryable exceptions (transport errors)
RETRYABLE_EXC = (
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.PoolTimeout,
)

# Backoff between attempts stays short; scans are answered synchronously.
MAX_BACKOFF_SECONDS = 2.0


@dataclass(frozen=True)
class SourcePolicy:
    """Per-source HTTP request policy configuration."""

    name: str
    max_attempts: int = 1
    treat_404_as_not_found: bool = True
    treat_403_as_blocked: bool = True
    treat_401_as_blocked: bool = True


class SourceUnavailable(RuntimeError):
    """An external source could not produce a usable answer."""
    pass


class BlockedError(SourceUnavailable):
    """Raised when access is refused (401/403, usually a bad or missing key)."""
    pass


class TransientFetchError(SourceUnavailable):
    """Raised when a request fails after retries (5xx, timeouts, etc.)."""
    pass


class RateLimitedError(SourceUnavailable):
    """Raised when rate limited (429)."""

    def __init__(self, retry_after: Optional[int] = None):
        super().__init__("Rate limited")
        self.retry_after = retry_after


class PermanentURLError(RuntimeError):
    """Raised when the source reports the item does not exist (404)."""
    pass


def _backoff(attempt: int) -> float:
    return min(MAX_BACKOFF_SECONDS, (2 ** (attempt - 1)) * 0.5 + random.random() * 0.25)


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    policy: SourcePolicy,
    params: Optional[dict[str, Any]] = None,
    headers: Optional[dict[str, str]] = None,
) -> Any:
    """
    GET a JSON document with per-source policy and status-aware error handling.

    Args:
        client: httpx AsyncClient instance
        url: URL to fetch
        policy: SourcePolicy configuration
        params: Query string parameters
        headers: Optional extra headers

    Returns:
        Decoded JSON body

    Raises:
        BlockedError: If access is refused (401/403)
        PermanentURLError: If the source answers 404
        RateLimitedError: If still rate limited on the final attempt
        TransientFetchError: If the request fails after all attempts
        ValueError: If the body is not valid JSON
    """
    last_exc: Exception | None = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            resp = await client.get(url, params=params, headers=headers)
            sc = resp.status_code

            if sc == 404 and policy.treat_404_as_not_found:
                raise PermanentURLError(f"{policy.name}: 404 for {url}")

            if (sc == 401 and policy.treat_401_as_blocked) or (
                sc == 403 and policy.treat_403_as_blocked
            ):
                raise BlockedError(f"{policy.name}: {sc} for {url}")

            if sc == 429:
                retry_after = resp.headers.get("Retry-After")
                retry_seconds = None
                if retry_after:
                    try:
                        retry_seconds = int(retry_after)
                    except (ValueError, TypeError):
                        pass
                raise RateLimitedError(retry_after=retry_seconds)

            if 200 <= sc < 300:
                return resp.json()

            last_exc = TransientFetchError(f"{policy.name}: status {sc} for {url}")
            if attempt < policy.max_attempts and sc >= 500:
                sleep_s = _backoff(attempt)
                logger.warning(
                    f"{policy.name}: Server error {sc}, retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                await asyncio.sleep(sleep_s)
                continue
            raise last_exc

        except RateLimitedError as e:
            # Long Retry-After values are not worth waiting for inside a scan
            if attempt < policy.max_attempts and (e.retry_after or 0) <= MAX_BACKOFF_SECONDS:
                sleep_s = float(e.retry_after) if e.retry_after else _backoff(attempt)
                logger.warning(
                    f"{policy.name}: Rate limited (429), retrying in {sleep_s:.1f}s "
                    f"(attempt {attempt}/{policy.max_attempts})"
                )
                await asyncio.sleep(sleep_s)
                last_exc = e
                continue
            raise

        except RETRYABLE_EXC as e:
            if attempt < policy.max_attempts:
                sleep_s = _backoff(attempt)
                logger.warning(
                    f"{policy.name}: Transport error ({type(e).__name__}), "
                    f"retrying in {sleep_s:.1f}s (attempt {attempt}/{policy.max_attempts})"
                )
                await asyncio.sleep(sleep_s)
                last_exc = e
                continue
            raise TransientFetchError(
                f"{policy.name}: {type(e).__name__} after {policy.max_attempts} attempt(s): {url}"
            ) from e

    raise TransientFetchError(
        f"{policy.name}: failed after {policy.max_attempts} attempts: {url}"
    ) from last_exc


# Per-source policy definitions
POLICIES: dict[str, SourcePolicy] = {
    # Trial endpoint is heavily rate limited; one shot only
    "upcitemdb": SourcePolicy(name="upcitemdb", max_attempts=1),
    "openfoodfacts": SourcePolicy(name="openfoodfacts", max_attempts=2),
    "ebay": SourcePolicy(name="ebay", max_attempts=1, treat_404_as_not_found=False),
    "google": SourcePolicy(name="google", max_attempts=1, treat_404_as_not_found=False),
    "default": SourcePolicy(name="default", max_attempts=1),
}


def get_policy(source: str) -> SourcePolicy:
    """Get the request policy for a source, or the default policy."""
    return POLICIES.get(source.lower(), POLICIES["default"])
