"""Web research via the Tavily search API."""

from typing import Any, Final

import httpx

from cma_analyst.logging import get_logger
from cma_analyst.models import SearchResult

logger = get_logger(__name__)

_SEARCH_URL: Final = "https://api.tavily.com/search"
_TIMEOUT: Final = 30.0

# Results scoring at or below this are treated as noise
MIN_RESULT_SCORE: Final = 0.5

# Spanish property portals and regional press
RESEARCH_DOMAINS: Final = (
    "idealista.com",
    "fotocasa.es",
    "kyero.com",
    "thinkspain.com",
    "surinenglish.com",
    "malagahoy.es",
    "abc.es",
    "elmundo.es",
    "lavanguardia.com",
    "elpais.com",
)


class TavilySearchClient:
    """Tavily search client.

    Passing an ``httpx.AsyncClient`` shares its connection pool; otherwise a
    client is created lazily and closed by ``close()``.
    """

    def __init__(
        self,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        search_depth: str = "advanced",
        include_domains: tuple[str, ...] = RESEARCH_DOMAINS,
    ) -> None:
        self._api_key = api_key
        self._client = client
        self._owns_client = client is None
        self._search_depth = search_depth
        self._include_domains = include_domains

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=_TIMEOUT)
        return self._client

    async def search_web(self, query: str, max_results: int = 5) -> list[SearchResult]:
        """Run one search, returning results ranked by score.

        Returns an empty list if the request fails.
        """
        payload: dict[str, Any] = {
            "api_key": self._api_key,
            "query": query,
            "search_depth": self._search_depth,
            "include_answer": False,
            "include_raw_content": False,
            "max_results": max_results,
        }
        if self._include_domains:
            payload["include_domains"] = list(self._include_domains)

        try:
            resp = await self._get_client().post(_SEARCH_URL, json=payload)
            if resp.status_code != 200:
                logger.warning(
                    "tavily_search_http_error", query=query, status_code=resp.status_code
                )
                return []
            data = resp.json()
        except httpx.HTTPError:
            logger.warning("tavily_search_failed", query=query, exc_info=True)
            return []

        results = _parse_results(data.get("results") or [])
        logger.debug("tavily_search_complete", query=query, results=len(results))
        return results

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def _parse_results(raw: list[dict[str, Any]]) -> list[SearchResult]:
    seen: set[str] = set()
    results: list[SearchResult] = []
    for item in raw:
        score = float(item.get("score") or 0)
        url = str(item.get("url") or "")
        if score <= MIN_RESULT_SCORE or url in seen:
            continue
        seen.add(url)
        results.append(
            SearchResult(
                title=str(item.get("title") or ""),
                url=url,
                content=str(item.get("content") or ""),
                score=score,
            )
        )
    return sorted(results, key=lambda r: r.score, reverse=True)
