"""DuckDuckGo HTML search followed by a scrape of the top result pages."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass

import httpx
from bs4 import BeautifulSoup
from loguru import logger

from planner.config import settings
from planner.errors import PerUrlFetchFailure, ProviderError
from planner.tools.web_utils import clean_content, normalize_result_url

RESULT_URL_SELECTOR = ".result__url"
NO_CONTENT = "No content found"
INVISIBLE_TAGS = ["script", "style", "noscript", "template"]


@dataclass
class PageResult:
    url: str
    content: str | None = None
    failure: PerUrlFetchFailure | None = None

    def render(self) -> str:
        if self.failure is not None:
            return f"{self.failure}\n"
        if self.content is None:
            return ""
        return f"URL: {self.url}\nContent: {self.content}\n\n"


def extract_result_urls(html: str, max_urls: int = 5) -> list[str]:
    """Result links in document order, capped at ``max_urls``."""
    if max_urls <= 0:
        return []
    soup = BeautifulSoup(html, "html.parser")
    urls: list[str] = []
    for element in soup.select(RESULT_URL_SELECTOR):
        href = element.get("href")
        if not href:
            continue
        urls.append(normalize_result_url(str(href)))
        if len(urls) >= max_urls:
            break
    return urls


def extract_body_text(html: str) -> str | None:
    """Visible text inside ``<body>`` joined by single spaces, or None without a body."""
    soup = BeautifulSoup(html, "html.parser")
    body = soup.body
    if body is None:
        return None
    for tag in body.find_all(INVISIBLE_TAGS):
        tag.decompose()
    return " ".join(body.stripped_strings)


async def fetch_page(client: httpx.AsyncClient, url: str) -> PageResult:
    try:
        response = await client.get(url)
        response.raise_for_status()
        html = response.text
    except httpx.HTTPError as e:
        raise PerUrlFetchFailure(url, str(e)) from e

    text = extract_body_text(html)
    if text is None:
        return PageResult(url=url)
    return PageResult(url=url, content=clean_content(text, settings.scrape_max_page_chars))


async def _search_result_urls(client: httpx.AsyncClient, query: str, max_urls: int) -> list[str]:
    try:
        response = await client.get(settings.search_url, params={"q": query})
        response.raise_for_status()
    except httpx.HTTPStatusError as e:
        raise ProviderError(
            f"Search provider returned HTTP {e.response.status_code}",
            status_code=e.response.status_code,
        ) from e
    except httpx.HTTPError as e:
        raise ProviderError(f"Search request failed: {e}") from e

    return extract_result_urls(response.text, max_urls)


async def _scrape_all(client: httpx.AsyncClient, urls: list[str]) -> list[PageResult]:
    results = await asyncio.gather(
        *(fetch_page(client, url) for url in urls),
        return_exceptions=True,
    )

    pages: list[PageResult] = []
    for url, r in zip(urls, results):
        if isinstance(r, PageResult):
            pages.append(r)
        elif isinstance(r, PerUrlFetchFailure):
            pages.append(PageResult(url=url, failure=r))
        elif isinstance(r, Exception):
            pages.append(PageResult(url=url, failure=PerUrlFetchFailure(url, str(r))))
        else:
            raise r
    return pages


async def search(
    query: str,
    *,
    max_urls: int | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> str:
    """Search DuckDuckGo and return the aggregated text of the top result pages.

    Per-page failures are reported inline; a failed results-page fetch raises
    ``ProviderError``.
    """
    if not query.strip():
        return NO_CONTENT

    limit = max_urls if max_urls is not None else settings.search_max_urls

    async def _run(client: httpx.AsyncClient) -> str:
        urls = await _search_result_urls(client, query, limit)
        logger.debug(f"DuckDuckGo returned {len(urls)} result URLs for {query!r}")
        pages = await _scrape_all(client, urls)
        failures = sum(1 for p in pages if p.failure is not None)
        if failures:
            logger.warning(f"{failures}/{len(pages)} pages failed to load for {query!r}")
        return "".join(p.render() for p in pages)

    if http_client is None:
        async with httpx.AsyncClient(
            timeout=settings.search_timeout_seconds,
            headers={"User-Agent": settings.search_user_agent},
            follow_redirects=True,
        ) as client:
            combined = await _run(client)
    else:
        combined = await _run(http_client)

    return combined or NO_CONTENT
