"""Search and content extraction provider client with per-pipeline call budgeting."""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any
from urllib.parse import urlparse

import httpx

from ..exceptions import SearchProviderError
from .models import DatePrecision, SourceReference

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 500

# Domain credibility table. Tier 1 >= 0.85, tier 2 in [0.70, 0.85).
DOMAIN_CREDIBILITY: dict[str, float] = {
    # Regulatory filings and wire services
    "sec.gov": 0.98,
    "reuters.com": 0.95,
    "bloomberg.com": 0.95,
    "apnews.com": 0.92,
    "wsj.com": 0.92,
    "ft.com": 0.92,
    "economist.com": 0.9,
    "nytimes.com": 0.88,
    "barrons.com": 0.87,
    "cnbc.com": 0.86,
    # Business press and data providers
    "fortune.com": 0.82,
    "marketwatch.com": 0.8,
    "forbes.com": 0.8,
    "businessinsider.com": 0.75,
    "finance.yahoo.com": 0.75,
    "techcrunch.com": 0.78,
    "supplychaindive.com": 0.76,
    "fooddive.com": 0.76,
    "retaildive.com": 0.76,
    "industryweek.com": 0.74,
    "prnewswire.com": 0.72,
    "businesswire.com": 0.72,
    "globenewswire.com": 0.72,
    "crunchbase.com": 0.72,
    "wikipedia.org": 0.7,
    # Profiles and aggregators
    "linkedin.com": 0.65,
    "zoominfo.com": 0.6,
    "dnb.com": 0.65,
    "glassdoor.com": 0.55,
    "indeed.com": 0.5,
    "reddit.com": 0.35,
}

SUFFIX_CREDIBILITY: dict[str, float] = {
    ".gov": 0.9,
    ".edu": 0.8,
    ".org": 0.6,
}

DEFAULT_CREDIBILITY = 0.5

_MONTHS = {
    name: index
    for index, names in enumerate(
        [
            ("january", "jan"),
            ("february", "feb"),
            ("march", "mar"),
            ("april", "apr"),
            ("may",),
            ("june", "jun"),
            ("july", "jul"),
            ("august", "aug"),
            ("september", "sep", "sept"),
            ("october", "oct"),
            ("november", "nov"),
            ("december", "dec"),
        ],
        start=1,
    )
    for name in names
}
_MONTH_PATTERN = "|".join(sorted(_MONTHS, key=len, reverse=True))

_ISO_DATE_RE = re.compile(r"\b((?:19|20)\d{2})-(\d{2})-(\d{2})\b")
_MONTH_DAY_YEAR_RE = re.compile(rf"\b({_MONTH_PATTERN})\.?\s+(\d{{1,2}}),?\s+((?:19|20)\d{{2}})\b", re.IGNORECASE)
_MONTH_YEAR_RE = re.compile(rf"\b({_MONTH_PATTERN})\.?\s+((?:19|20)\d{{2}})\b", re.IGNORECASE)
_QUARTER_RE = re.compile(r"\bQ([1-4])\s*(?:FY\s*)?((?:19|20)\d{2})\b", re.IGNORECASE)
_YEAR_RE = re.compile(r"\b(20\d{2})\b")


def extract_domain(url: str) -> str:
    """Hostname of a URL without a leading ``www.``."""
    host = urlparse(url).hostname or ""
    return host.removeprefix("www.")


def score_credibility(domain: str) -> float:
    """Credibility in [0, 1] for a source domain."""
    domain = domain.lower()
    for known, score in DOMAIN_CREDIBILITY.items():
        if domain == known or domain.endswith(f".{known}"):
            return score
    for suffix, score in SUFFIX_CREDIBILITY.items():
        if domain.endswith(suffix):
            return score
    return DEFAULT_CREDIBILITY


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def extract_publication_date(text: str, title: str = "", provider_date: str | None = None) -> tuple[str | None, DatePrecision]:
    """Find the most precise publication date available for a source.

    The provider's own date wins. Otherwise the title and text are scanned for,
    in order, an ISO date, "Month D, YYYY", "Month YYYY", "Qn YYYY" and a bare year.

    Returns:
        ISO date string (or None) and its precision.
    """
    if provider_date:
        try:
            parsed = datetime.fromisoformat(provider_date.replace("Z", "+00:00"))
            return parsed.date().isoformat(), DatePrecision.EXACT
        except ValueError:
            logger.debug(f"Unparseable provider date: {provider_date}")

    haystack = f"{title} {text}"

    if match := _ISO_DATE_RE.search(haystack):
        found = _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if found:
            return found.isoformat(), DatePrecision.EXACT

    if match := _MONTH_DAY_YEAR_RE.search(haystack):
        found = _safe_date(int(match.group(3)), _MONTHS[match.group(1).lower()], int(match.group(2)))
        if found:
            return found.isoformat(), DatePrecision.EXACT

    if match := _MONTH_YEAR_RE.search(haystack):
        return date(int(match.group(2)), _MONTHS[match.group(1).lower()], 1).isoformat(), DatePrecision.MONTH

    if match := _QUARTER_RE.search(haystack):
        quarter = int(match.group(1))
        return date(int(match.group(2)), (quarter - 1) * 3 + 1, 1).isoformat(), DatePrecision.QUARTER

    if match := _YEAR_RE.search(haystack):
        return date(int(match.group(1)), 1, 1).isoformat(), DatePrecision.YEAR

    return None, DatePrecision.UNKNOWN


@dataclass
class SearchHit:
    """A ranked result returned by the search provider."""

    title: str
    url: str
    content: str
    score: float = 0.0
    published_date: str | None = None

    def to_source_reference(self) -> SourceReference:
        """Enrich the hit with domain credibility and a publication date."""
        domain = extract_domain(self.url)
        publication_date, precision = extract_publication_date(self.content, self.title, self.published_date)
        return SourceReference(
            url=self.url,
            title=self.title,
            domain=domain,
            credibility_score=score_credibility(domain),
            publication_date=publication_date,
            date_precision=precision,
            snippet=self.content[:SNIPPET_LENGTH],
            relevance_score=self.score,
        )


@dataclass
class ExtractedPage:
    url: str
    raw_content: str


@dataclass
class ExtractResponse:
    """Pages returned by the extraction provider, split by outcome."""

    results: list[ExtractedPage] = field(default_factory=list)
    failed_results: list[dict[str, str]] = field(default_factory=list)


@dataclass
class QueryOutcome:
    """Result of a single query inside a stage's fan-out batch."""

    query: str
    success: bool
    hits: list[SearchHit] = field(default_factory=list)
    error: str | None = None


class CallTracker:
    """Call budget for one pipeline invocation.

    Every call attempt is counted, including attempts that later fail. The
    check-and-increment in ``try_acquire`` contains no await point, so
    concurrent queries in the same event loop cannot overshoot the limit.
    """

    def __init__(self, max_calls: int):
        self.max_calls = max_calls
        self.count = 0

    def can_make_call(self) -> bool:
        return self.count < self.max_calls

    def try_acquire(self) -> bool:
        """Reserve one call. Returns False once the budget is spent."""
        if self.count >= self.max_calls:
            return False
        self.count += 1
        return True

    @property
    def remaining(self) -> int:
        return max(self.max_calls - self.count, 0)


class TavilyClient:
    """Async client for the Tavily search and extract endpoints."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.tavily.com",
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def __aenter__(self) -> "TavilyClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            response = await self._client.post(f"{self.base_url}{path}", json={"api_key": self.api_key, **payload})
        except httpx.HTTPError as e:
            raise SearchProviderError(f"Request to {path} failed: {e}") from e

        if response.status_code >= 400:
            try:
                body = response.json()
            except ValueError:
                body = {}
            detail = (body.get("detail") or body.get("message")) if isinstance(body, dict) else None
            raise SearchProviderError(f"Tavily API error ({response.status_code}): {detail or response.reason_phrase}")

        try:
            data = response.json()
        except ValueError as e:
            raise SearchProviderError(f"Invalid JSON from {path}") from e
        if not isinstance(data, dict):
            raise SearchProviderError(f"Unexpected response from {path}: expected an object, got {type(data).__name__}")
        return data

    async def search(self, query: str, search_depth: str = "basic", max_results: int = 5) -> list[SearchHit]:
        """Run one search query.

        Raises:
            SearchProviderError: If the request fails or the provider returns an error status.
        """
        data = await self._post(
            "/search",
            {
                "query": query,
                "search_depth": search_depth,
                "max_results": max_results,
                "include_answer": False,
                "include_raw_content": False,
            },
        )
        hits = []
        for item in _objects(data.get("results")):
            if not item.get("url"):
                continue
            published_date = item.get("published_date")
            hits.append(
                SearchHit(
                    title=str(item.get("title") or item["url"]),
                    url=str(item["url"]),
                    content=str(item.get("content") or ""),
                    score=_lenient_float(item.get("score")),
                    published_date=published_date if isinstance(published_date, str) else None,
                )
            )
        return hits

    async def extract(self, urls: list[str]) -> ExtractResponse:
        """Fetch raw page content for a list of URLs.

        Raises:
            SearchProviderError: If the request fails or the provider returns an error status.
        """
        data = await self._post("/extract", {"urls": urls})
        return ExtractResponse(
            results=[
                ExtractedPage(url=str(item.get("url", "")), raw_content=str(item.get("raw_content") or ""))
                for item in _objects(data.get("results"))
            ],
            failed_results=[
                {"url": str(item.get("url", "")), "error": str(item.get("error", ""))}
                for item in _objects(data.get("failed_results"))
            ],
        )


def _objects(value: Any) -> list[dict[str, Any]]:
    """The dict elements of a provider list field; anything else yields nothing."""
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def _lenient_float(value: Any) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


async def batch_search(
    client: TavilyClient,
    queries: list[str],
    tracker: CallTracker,
    search_depth: str = "basic",
    max_results: int = 3,
) -> list[QueryOutcome]:
    """Issue all queries concurrently. A failing query never fails the batch."""

    async def _one(query: str) -> QueryOutcome:
        if not tracker.try_acquire():
            return QueryOutcome(query=query, success=False, error="Call limit reached")
        try:
            hits = await client.search(query, search_depth=search_depth, max_results=max_results)
        except SearchProviderError as e:
            logger.warning(f"Search failed for query '{query}': {e}")
            return QueryOutcome(query=query, success=False, error=str(e))
        return QueryOutcome(query=query, success=True, hits=hits)

    return list(await asyncio.gather(*(_one(q) for q in queries)))
