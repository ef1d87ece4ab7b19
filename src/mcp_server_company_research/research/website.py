"""Company website scraping through the content extraction provider."""

import logging
from dataclasses import dataclass, field

from bs4 import BeautifulSoup

from .models import SourceReference
from .search import SNIPPET_LENGTH, TavilyClient, extract_domain, extract_publication_date

logger = logging.getLogger(__name__)

KEY_PAGE_PATHS: list[tuple[str, str]] = [
    ("", "homepage"),
    ("/about", "about"),
    ("/about-us", "about"),
    ("/company", "about"),
    ("/news", "news"),
    ("/press", "news"),
    ("/newsroom", "news"),
    ("/blog", "news"),
    ("/products", "products"),
    ("/services", "products"),
    ("/careers", "careers"),
    ("/jobs", "careers"),
]

OWN_WEBSITE_CREDIBILITY = 0.9
MAX_PAGE_CONTENT = 5000
MIN_PAGE_CONTENT = 100


@dataclass
class WebsitePage:
    url: str
    page_type: str
    title: str = ""
    content: str = ""
    success: bool = True
    error: str | None = None


@dataclass
class WebsiteScrapeResult:
    base_url: str
    pages: list[WebsitePage] = field(default_factory=list)

    @property
    def pages_scraped(self) -> int:
        return sum(1 for page in self.pages if page.success)


def normalize_url(website: str) -> str:
    """Add a scheme if missing and drop trailing slashes."""
    url = website.strip()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url.rstrip("/")


def _parse(raw: str) -> BeautifulSoup:
    return BeautifulSoup(raw, "html.parser")


def html_to_text(raw: str) -> str:
    """Visible text of a page, whitespace collapsed. Plain text passes through."""
    soup = _parse(raw)
    for tag in soup(["script", "style", "noscript", "title"]):
        tag.decompose()
    return " ".join(soup.get_text(" ").split())


def extract_title(raw: str) -> str:
    soup = _parse(raw)
    if soup.title and soup.title.string:
        return soup.title.string.strip()
    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title and og_title.get("content"):
        return og_title["content"].strip()
    return ""


async def scrape_website(client: TavilyClient, website: str, max_pages: int = 5) -> WebsiteScrapeResult:
    """Fetch the key pages of a company website in one extraction call.

    Raises:
        SearchProviderError: If the extraction request itself fails.
    """
    base_url = normalize_url(website)
    targets = {f"{base_url}{path}": page_type for path, page_type in KEY_PAGE_PATHS[:max_pages]}

    response = await client.extract(list(targets))
    result = WebsiteScrapeResult(base_url=base_url)

    for page in response.results:
        result.pages.append(
            WebsitePage(
                url=page.url,
                page_type=targets.get(page.url, "other"),
                title=extract_title(page.raw_content),
                content=html_to_text(page.raw_content)[:MAX_PAGE_CONTENT],
            )
        )
    for failed in response.failed_results:
        result.pages.append(
            WebsitePage(
                url=failed["url"],
                page_type=targets.get(failed["url"], "other"),
                success=False,
                error=failed["error"],
            )
        )

    logger.info(f"Scraped {result.pages_scraped}/{len(targets)} pages from {base_url}")
    return result


def website_to_sources(result: WebsiteScrapeResult) -> list[SourceReference]:
    """Turn scraped pages with enough text into high-credibility sources."""
    domain = extract_domain(result.base_url)
    sources = []
    for page in result.pages:
        if not page.success or len(page.content) <= MIN_PAGE_CONTENT:
            continue
        publication_date, precision = extract_publication_date(page.content, page.title)
        sources.append(
            SourceReference(
                url=page.url,
                title=page.title or f"{page.page_type} page",
                domain=domain,
                credibility_score=OWN_WEBSITE_CREDIBILITY,
                publication_date=publication_date,
                date_precision=precision,
                snippet=page.content[:SNIPPET_LENGTH],
                relevance_score=1.0,
            )
        )
    return sources


def format_website_content(result: WebsiteScrapeResult) -> str:
    if result.pages_scraped == 0:
        return ""

    sections = [f"--- COMPANY WEBSITE CONTENT ({result.base_url}) ---"]
    for page in result.pages:
        if page.success:
            sections.append(f"[{page.page_type.upper()}] {page.title}\nURL: {page.url}\nContent: {page.content[:1500]}")
    return "\n\n".join(sections)
