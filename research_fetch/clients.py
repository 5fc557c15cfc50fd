"""Clients for the search-resolution and content-extraction collaborators."""

import os
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field, ValidationError

from research_fetch.exceptions import ConfigurationError, UpstreamError, UpstreamRateLimitError
from research_fetch.logging import get_logger

log = get_logger("research_fetch.clients")

SERPAPI_URL = "https://serpapi.com/search.json"
FIRECRAWL_BASE_URL = "https://api.firecrawl.dev"
DEFAULT_HTTP_TIMEOUT = 60.0


# --- Wire models ---


class OrganicResult(BaseModel):
    link: str
    title: str | None = None


class SearchResponse(BaseModel):
    """Search collaborator response, reduced to the fields resolution uses."""

    organic_results: list[OrganicResult] = Field(default_factory=list)
    knowledge_graph_website: str | None = None


class CrawlRequest(BaseModel):
    url: str
    # Extraction is single-page; crawling linked pages is not supported
    page_limit: int = Field(default=1, ge=1, le=1)
    formats: list[str] = Field(default_factory=lambda: ["markdown"])


class CrawlResponse(BaseModel):
    success: bool
    content: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None


# --- Collaborator protocols ---


class SearchCollaborator(Protocol):
    async def search(self, query: str, num_results: int) -> SearchResponse: ...


class ContentCollaborator(Protocol):
    async def scrape(self, request: CrawlRequest) -> CrawlResponse: ...


# --- HTTP helpers ---


def _raise_for_status(service: str, response: httpx.Response) -> None:
    if response.status_code == 429:
        raise UpstreamRateLimitError(service)
    if response.is_error:
        raise UpstreamError(service, response.text[:200] or response.reason_phrase, status_code=response.status_code)


def _json_payload(service: str, response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as e:
        raise UpstreamError(service, "response is not valid JSON", status_code=response.status_code, retryable=False) from e
    if not isinstance(payload, dict):
        raise UpstreamError(service, "response is not a JSON object", status_code=response.status_code, retryable=False)
    return payload


def _require_env(name: str) -> str:
    value = os.getenv(name, "").strip()
    if not value:
        raise ConfigurationError(setting=name, reason="environment variable is not set")
    return value


# --- SerpAPI ---


class SerpApiClient:
    """Google search through SerpAPI."""

    service = "serpapi"

    def __init__(
        self,
        api_key: str,
        *,
        url: str = SERPAPI_URL,
        engine: str = "google",
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = url
        self._engine = engine
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> "SerpApiClient":
        return cls(_require_env("SERPAPI_API_KEY"))

    async def search(self, query: str, num_results: int) -> SearchResponse:
        params = {"engine": self._engine, "q": query, "api_key": self._api_key, "num": str(num_results)}
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(self._url, params=params)
        except httpx.TransportError as e:
            raise UpstreamError(self.service, str(e) or type(e).__name__) from e

        _raise_for_status(self.service, response)
        payload = _json_payload(self.service, response)
        if payload.get("error"):
            raise UpstreamError(self.service, str(payload["error"]), status_code=response.status_code, retryable=False)

        knowledge_graph = payload.get("knowledge_graph") or {}
        try:
            return SearchResponse(
                organic_results=[item for item in payload.get("organic_results") or [] if item.get("link")],
                knowledge_graph_website=knowledge_graph.get("website") if isinstance(knowledge_graph, dict) else None,
            )
        except (ValidationError, AttributeError) as e:
            raise UpstreamError(self.service, f"unexpected response shape: {e}", retryable=False) from e


# --- Firecrawl ---


class FirecrawlClient:
    """Single-page content extraction through Firecrawl's scrape endpoint."""

    service = "firecrawl"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = FIRECRAWL_BASE_URL,
        timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_env(cls) -> "FirecrawlClient":
        return cls(
            _require_env("FIRECRAWL_API_KEY"),
            base_url=os.getenv("FIRECRAWL_BASE_URL", FIRECRAWL_BASE_URL),
        )

    async def scrape(self, request: CrawlRequest) -> CrawlResponse:
        body = {"url": request.url, "formats": request.formats, "onlyMainContent": True}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Authorization": f"Bearer {self._api_key}"},
            ) as client:
                response = await client.post("/v1/scrape", json=body)
        except httpx.TransportError as e:
            raise UpstreamError(self.service, str(e) or type(e).__name__) from e

        _raise_for_status(self.service, response)
        payload = _json_payload(self.service, response)
        if not payload.get("success"):
            return CrawlResponse(success=False, error=str(payload.get("error") or "extraction failed"))

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            reason = f"unexpected response shape: data is {type(data).__name__}"
            raise UpstreamError(self.service, reason, retryable=False)
        content = data.get("markdown") or data.get("content") or ""
        try:
            result = CrawlResponse(success=True, content=content, metadata=data.get("metadata") or {})
        except ValidationError as e:
            raise UpstreamError(self.service, f"unexpected response shape: {e}", retryable=False) from e
        log.debug("firecrawl.scraped", url=request.url, content_length=len(result.content or ""))
        return result
