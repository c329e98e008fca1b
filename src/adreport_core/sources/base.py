"""Shared HTTP plumbing for source adapters.

Every adapter receives an injected aiohttp session and a semaphore bounding
outbound requests. Requests retry on 429, 5xx and network errors with
exponential backoff plus jitter; other 4xx responses fail immediately.
"""
import asyncio
import json
import logging
import math
import random
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Awaitable, Callable, Optional, TypeVar

import aiohttp

from ..exceptions import SourceApiError, SourceConfigurationError, SourceResponseError
from ..schemas.records import AdRankingRow, CampaignRecord
from ..schemas.settings import AccountSetting


logger = logging.getLogger(__name__)

T = TypeVar("T")


def to_number(value: Any) -> float:
    """Coerce a loosely typed metric to float, using 0 for anything unusable."""
    parsed = to_nullable_number(value)
    return parsed if parsed is not None else 0.0


def to_nullable_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def first_present(mapping: dict[str, Any], *keys: str) -> Any:
    """The first value under keys that is not None."""
    for key in keys:
        value = mapping.get(key)
        if value is not None:
            return value
    return None


def is_zero_like(value: Any) -> bool:
    """True for None, blank strings and numeric zero."""
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return to_nullable_number(value) == 0


def chunk_list(items: list[T], size: int = 100) -> list[list[T]]:
    return [items[index : index + size] for index in range(0, len(items), size)]


@dataclass
class HttpResult:
    status: int
    text: str
    headers: dict[str, str] = field(default_factory=dict)
    cookies: dict[str, str] = field(default_factory=dict)


class BaseSourceAdapter:
    """Base class for ad-delivery and conversion-log sources."""

    platform = "source"

    MAX_RETRY_ATTEMPTS = 3
    RETRY_BASE_DELAY = 0.5  # seconds
    RETRY_MULTIPLIER = 2.0
    RETRY_MAX_DELAY = 10.0  # seconds
    RETRY_JITTER_MS = 250  # milliseconds

    CHUNK_CONCURRENCY = 4

    REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=60, connect=10)

    def __init__(
        self,
        session: aiohttp.ClientSession,
        request_semaphore: Optional[asyncio.Semaphore] = None,
    ) -> None:
        """Initialize adapter.

        Args:
            session: Injected aiohttp ClientSession, owned by the caller
            request_semaphore: Bound on simultaneous outbound requests, shared
                across adapters of one report call
        """
        self.session = session
        self._semaphore = request_semaphore or asyncio.Semaphore(5)
        self._chunk_semaphore = asyncio.Semaphore(self.CHUNK_CONCURRENCY)

    # Credentials

    def _secrets(self) -> list[Optional[str]]:
        return []

    def missing_credentials(self) -> list[str]:
        """Names of required settings that are not configured."""
        return []

    def _redact(self, text: str) -> str:
        if not text:
            return text
        redacted = text
        for secret in self._secrets():
            if secret:
                redacted = redacted.replace(secret, "[REDACTED]")
        return redacted

    # HTTP

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff with jitter.

        Args:
            attempt: Current retry attempt number (1-indexed)

        Returns:
            Delay in seconds
        """
        delay = min(
            self.RETRY_BASE_DELAY * (self.RETRY_MULTIPLIER ** (attempt - 1)),
            self.RETRY_MAX_DELAY,
        )
        jitter = random.uniform(0, self.RETRY_JITTER_MS / 1000.0)
        return delay + jitter

    async def _send(self, method: str, url: str, **kwargs: Any) -> HttpResult:
        """Send a request with retry logic and return the raw result.

        Redirect responses (3xx) are returned as-is when the caller disables
        redirect following.

        Raises:
            SourceApiError: On non-retryable errors or max retries exceeded
        """
        kwargs.setdefault("timeout", self.REQUEST_TIMEOUT)

        attempt = 0
        while True:
            attempt += 1
            try:
                async with self._semaphore:
                    async with self.session.request(method, url, **kwargs) as resp:
                        text = await resp.text()
                        status = resp.status
                        headers = {key.lower(): value for key, value in resp.headers.items()}
                        cookies = {name: morsel.value for name, morsel in resp.cookies.items()}
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                if attempt >= self.MAX_RETRY_ATTEMPTS:
                    raise SourceApiError(
                        self.platform,
                        0,
                        f"Network error after {attempt} attempts: {self._redact(str(exc))}",
                    ) from exc
                delay = self._calculate_backoff(attempt)
                logger.warning(
                    "%s network error: %s, backoff=%.2fs, attempt=%s",
                    self.platform,
                    self._redact(str(exc)),
                    delay,
                    attempt,
                )
                await asyncio.sleep(delay)
                continue

            if status == 429 or 500 <= status < 600:
                if attempt >= self.MAX_RETRY_ATTEMPTS:
                    raise SourceApiError(
                        self.platform,
                        status,
                        f"HTTP {status} after {attempt} attempts: {self._redact(text[:200])}",
                    )
                retry_after = headers.get("retry-after")
                delay = (
                    min(float(retry_after), self.RETRY_MAX_DELAY)
                    if retry_after and retry_after.isdigit()
                    else self._calculate_backoff(attempt)
                )
                logger.warning(
                    "%s HTTP %s, backoff=%.2fs, attempt=%s", self.platform, status, delay, attempt
                )
                await asyncio.sleep(delay)
                continue

            if status >= 400:
                logger.error(
                    "%s API error (%s): %s", self.platform, status, self._redact(text[:500])
                )
                raise SourceApiError(self.platform, status, self._redact(text[:500]))

            return HttpResult(status=status, text=text, headers=headers, cookies=cookies)

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        """Send a request and decode the JSON body.

        Raises:
            SourceApiError: On HTTP errors
            SourceResponseError: If the body is not JSON
        """
        result = await self._send(method, url, **kwargs)
        if not result.text.strip():
            return {}
        try:
            return json.loads(result.text)
        except ValueError as exc:
            raise SourceResponseError(
                self.platform, f"Non-JSON response: {self._redact(result.text[:200])}"
            ) from exc

    async def _gather_chunks(
        self, lookup: Callable[[list[str]], Awaitable[T]], chunks: list[list[str]]
    ) -> list[Optional[T]]:
        """Run metadata lookups per chunk concurrently; failed chunks yield None."""

        async def run(chunk: list[str]) -> T:
            async with self._chunk_semaphore:
                return await lookup(chunk)

        results = await asyncio.gather(*(run(chunk) for chunk in chunks), return_exceptions=True)
        resolved: list[Optional[T]] = []
        for result in results:
            if isinstance(result, Exception):
                logger.warning(
                    "%s metadata lookup failed: %s", self.platform, self._redact(str(result))
                )
                resolved.append(None)
            else:
                resolved.append(result)
        return resolved


class AdSourceAdapter(BaseSourceAdapter):
    """An ad-delivery platform: campaign metrics for today, ad metrics for rankings."""

    async def fetch_campaigns(
        self, account: AccountSetting, target_date: date
    ) -> list[CampaignRecord]:
        """Fetch campaign-level metrics for one account and day.

        Returns an empty list when the platform is not configured. Records
        with non-positive spend are dropped.
        """
        missing = self.missing_credentials()
        if missing:
            logger.warning(
                "%s credentials not configured (%s), skipping",
                self.platform,
                ", ".join(missing),
            )
            return []

        records = await self._fetch_campaigns(account, target_date)
        kept = [record for record in records if record.spend > 0]
        logger.info(
            "Fetched %s %s campaigns for %s (%s with spend)",
            len(records),
            self.platform,
            target_date.isoformat(),
            len(kept),
        )
        return kept

    async def fetch_ads(
        self, account: AccountSetting, start: date, end: date
    ) -> list[AdRankingRow]:
        """Fetch ad-level spend and media conversions for a date range.

        Raises:
            SourceConfigurationError: If the platform is not configured
        """
        missing = self.missing_credentials()
        if missing:
            raise SourceConfigurationError(self.platform, missing)

        rows = await self._fetch_ads(account, start, end)
        kept = [row for row in rows if row.spend > 0]
        logger.info(
            "Fetched %s %s ads for account %s (%s with spend)",
            len(rows),
            self.platform,
            account.account_id,
            len(kept),
        )
        return kept

    async def _fetch_campaigns(
        self, account: AccountSetting, target_date: date
    ) -> list[CampaignRecord]:
        raise NotImplementedError

    async def _fetch_ads(
        self, account: AccountSetting, start: date, end: date
    ) -> list[AdRankingRow]:
        raise NotImplementedError
