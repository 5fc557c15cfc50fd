"""Rate-limited, retried, cached content fetching for single URLs."""

import asyncio
from collections.abc import Sequence

from research_fetch.clients import ContentCollaborator, CrawlRequest, CrawlResponse
from research_fetch.exceptions import (
    FetchError,
    FetchErrorKind,
    OperationCanceledError,
    OperationTimeoutError,
    UpstreamError,
    UpstreamRateLimitError,
)
from research_fetch.logging import get_logger
from research_fetch.models import ScrapingResult
from research_fetch.rate_limiter import RateLimiter
from research_fetch.retry import RetryPolicy, with_timeout
from research_fetch.urls import is_disallowed_url, is_valid_url, normalize_url

log = get_logger("research_fetch.fetcher")


class FetchCache:
    """Successful results and in-flight fetches, keyed by normalized URL.

    Failures are never stored, so a URL that failed is fetched again on the
    next request.
    """

    def __init__(self) -> None:
        self._results: dict[str, ScrapingResult] = {}
        self._in_flight: dict[str, asyncio.Task[ScrapingResult]] = {}
        self.lock = asyncio.Lock()

    def get(self, key: str) -> ScrapingResult | None:
        return self._results.get(key)

    def put(self, key: str, result: ScrapingResult) -> None:
        self._results[key] = result

    def in_flight(self, key: str) -> asyncio.Task[ScrapingResult] | None:
        return self._in_flight.get(key)

    def track(self, key: str, task: asyncio.Task[ScrapingResult]) -> None:
        self._in_flight[key] = task
        task.add_done_callback(lambda _: self._in_flight.pop(key, None))

    def clear(self) -> None:
        self._results.clear()

    def __len__(self) -> int:
        return len(self._results)

    def __contains__(self, key: str) -> bool:
        return key in self._results


class ContentFetcher:
    """Fetch extracted content for one URL through the content collaborator."""

    def __init__(
        self,
        client: ContentCollaborator,
        rate_limiter: RateLimiter,
        retry_policy: RetryPolicy,
        *,
        timeout_ms: int = 30_000,
        formats: Sequence[str] = ("markdown",),
        disallowed_prefixes: Sequence[str] = (),
        cache: FetchCache | None = None,
    ) -> None:
        self._client = client
        self._rate_limiter = rate_limiter
        self._retry = retry_policy
        self._timeout_ms = timeout_ms
        self._formats = list(formats)
        self._disallowed_prefixes = tuple(disallowed_prefixes)
        self.cache = cache if cache is not None else FetchCache()

    def clear_cache(self) -> None:
        self.cache.clear()

    async def fetch(
        self,
        url: str,
        *,
        source_target: str,
        timeout_ms: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ScrapingResult:
        """Return content for ``url``, from cache when it was fetched before.

        Raises:
            FetchError: With the kind of failure. Only successes are cached.
            OperationCanceledError: When cancellation interrupts retries.
        """
        if not is_valid_url(url):
            raise FetchError(url, FetchErrorKind.INVALID, "not an absolute http(s) URL")
        key = normalize_url(url)
        if is_disallowed_url(key, self._disallowed_prefixes):
            raise FetchError(url, FetchErrorKind.INVALID, "host is not fetchable")

        async with self.cache.lock:
            cached = self.cache.get(key)
            if cached is not None:
                log.debug("fetcher.cache.hit", url=key)
                return cached
            task = self.cache.in_flight(key)
            if task is None:
                task = asyncio.create_task(
                    self._fetch_uncached(key, source_target, timeout_ms or self._timeout_ms, cancel_event)
                )
                self.cache.track(key, task)
            else:
                log.debug("fetcher.in_flight.joined", url=key)

        return await asyncio.shield(task)

    async def _fetch_uncached(
        self,
        url: str,
        source_target: str,
        timeout_ms: int,
        cancel_event: asyncio.Event | None,
    ) -> ScrapingResult:
        if not self._rate_limiter.try_acquire():
            log.warning("fetcher.rate_limited", url=url)
            raise FetchError(url, FetchErrorKind.RATE_LIMITED, "local rate window is full")

        request = CrawlRequest(url=url, formats=self._formats)
        try:
            response: CrawlResponse = await self._retry.execute(
                lambda: with_timeout(self._client.scrape(request), timeout_ms, operation="fetch"),
                operation="fetch",
                cancel_event=cancel_event,
            )
        except OperationCanceledError:
            raise
        except OperationTimeoutError as e:
            raise FetchError(url, FetchErrorKind.TIMEOUT, str(e)) from e
        except UpstreamRateLimitError as e:
            raise FetchError(url, FetchErrorKind.RATE_LIMITED, str(e)) from e
        except UpstreamError as e:
            raise FetchError(url, FetchErrorKind.UPSTREAM_ERROR, str(e)) from e

        if not response.success:
            raise FetchError(url, FetchErrorKind.UPSTREAM_ERROR, response.error or "extraction failed")
        content = response.content or ""
        if not content.strip():
            raise FetchError(url, FetchErrorKind.EMPTY_CONTENT, "page has no extractable content")

        result = ScrapingResult(url=url, content=content, metadata=response.metadata, source_target=source_target)
        async with self.cache.lock:
            self.cache.put(url, result)
        log.info("fetcher.fetched", url=url, content_length=len(content))
        return result
