"""Resolution of search queries into ranked candidate URLs."""

import asyncio
from collections.abc import Sequence

from research_fetch.clients import SearchCollaborator
from research_fetch.exceptions import OperationCanceledError, ResolutionError
from research_fetch.logging import get_logger
from research_fetch.models import ResolvedURL, SearchTarget, TargetKind
from research_fetch.retry import RetryPolicy, with_timeout
from research_fetch.urls import extract_domain, host_of, is_disallowed_url, is_valid_url, matches_domain, normalize_url

log = get_logger("research_fetch.resolver")


def compose_query(query: str, *, context: str | None = None, date_window: str | None = None) -> str:
    """Append context and date window unless the query already contains them."""
    composed = query.strip()
    for part in (context, date_window):
        if part and part.strip() and part.strip().lower() not in composed.lower():
            composed = f"{composed} {part.strip()}"
    return composed


class SearchResolver:
    """Turns free-text and ``site:`` queries into URLs via the search collaborator."""

    def __init__(
        self,
        client: SearchCollaborator,
        retry_policy: RetryPolicy,
        *,
        excluded_domains: Sequence[str] = (),
        disallowed_prefixes: Sequence[str] = (),
        fallback_sources: Sequence[str] = (),
        timeout_ms: int = 15_000,
        num_results: int = 10,
    ) -> None:
        self._client = client
        self._retry = retry_policy
        self._excluded_domains = tuple(excluded_domains)
        self._disallowed_prefixes = tuple(disallowed_prefixes)
        self._fallback_sources = tuple(fallback_sources)
        self._timeout_ms = timeout_ms
        self._num_results = num_results

    def _is_allowed(self, url: str) -> bool:
        return is_valid_url(url) and not is_disallowed_url(url, self._disallowed_prefixes)

    def _rank(self, links: Sequence[str], knowledge_graph_website: str | None, limit: int) -> list[str]:
        ranked: list[str] = []
        seen: set[str] = set()

        def _add(link: str) -> None:
            normalized = normalize_url(link)
            if normalized not in seen:
                seen.add(normalized)
                ranked.append(normalized)

        allowed = [link for link in links if self._is_allowed(link)]
        # First pass: prefer hosts that are not excluded
        for link in allowed:
            if not matches_domain(host_of(link), self._excluded_domains):
                _add(link)
        # Second pass: fill up from everything that is not disallowed
        if len(ranked) < limit:
            for link in allowed:
                _add(link)

        if knowledge_graph_website and self._is_allowed(knowledge_graph_website):
            primary = normalize_url(knowledge_graph_website)
            ranked = [primary] + [url for url in ranked if url != primary]
        return ranked[:limit]

    async def resolve(
        self,
        query: str,
        *,
        limit: int,
        date_window: str | None = None,
        context: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[ResolvedURL]:
        """Return up to ``limit`` URLs for ``query``; empty when the search finds nothing.

        Raises:
            ResolutionError: When the search collaborator fails or is unreachable.
        """
        search_query = compose_query(query, context=context, date_window=date_window)
        try:
            response = await self._retry.execute(
                lambda: with_timeout(
                    self._client.search(search_query, self._num_results),
                    self._timeout_ms,
                    operation="search",
                ),
                operation="search",
                cancel_event=cancel_event,
            )
        except OperationCanceledError:
            raise
        except Exception as e:
            log.warning("resolver.search.failed", query=search_query, error=str(e))
            raise ResolutionError(query=query, reason=str(e)) from e

        links = [result.link for result in response.organic_results]
        urls = self._rank(links, response.knowledge_graph_website, limit)
        log.info("resolver.resolved", query=search_query, returned=len(links), kept=len(urls))
        return [ResolvedURL(url=url, source_target=query) for url in urls]

    def _domain_fallback(self, target: SearchTarget) -> list[ResolvedURL]:
        domain = extract_domain(target.text)
        if domain is None:
            return []
        url = normalize_url(domain)
        if not self._is_allowed(url):
            return []
        log.info("resolver.fallback.domain", target=target.text, url=url)
        return [ResolvedURL(url=url, source_target=target.text)]

    async def resolve_with_fallback(
        self,
        target: SearchTarget,
        *,
        limit: int,
        date_window: str | None = None,
        context: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[ResolvedURL]:
        """Resolve a target, falling back to its literal domain or the configured sources.

        Domain-like and ``site:`` targets never raise ResolutionError when a
        domain can be extracted from them. Free-text failures propagate.
        """
        structured = target.kind in (TargetKind.DOMAIN, TargetKind.SITE_QUERY)
        try:
            urls = await self.resolve(
                target.text,
                limit=limit,
                date_window=date_window,
                context=context,
                cancel_event=cancel_event,
            )
        except ResolutionError:
            if structured:
                fallback = self._domain_fallback(target)
                if fallback:
                    return fallback
            raise

        if urls:
            return urls
        if structured:
            return self._domain_fallback(target)
        if self._fallback_sources:
            log.info("resolver.fallback.sources", target=target.text, count=len(self._fallback_sources))
            return [
                ResolvedURL(url=normalize_url(source), source_target=target.text)
                for source in self._fallback_sources[:limit]
            ]
        return []
