"""Minimal client for the Firecrawl scrape API (page-fetch collaborator)."""

import logging
from dataclasses import dataclass, field, asdict

import httpx

from app.core.exceptions import UpstreamFetchError

logger = logging.getLogger(__name__)

HOMEPAGE_FORMATS = ["rawHtml", "links", "metadata"]
SUBPAGE_FORMATS = ["rawHtml"]


@dataclass
class ScrapedPage:
    raw_html: str = ""
    links: list[str] = field(default_factory=list)
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ScrapedPage":
        links = data.get("links") or []
        return cls(
            raw_html=data.get("raw_html") or "",
            links=[link for link in links if isinstance(link, str)],
            metadata=data.get("metadata") or {},
        )


class FirecrawlClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        api_key: str,
        api_url: str = "https://api.firecrawl.dev",
        timeout: float = 30.0,
    ):
        self.http = http
        self.api_key = api_key.strip()
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    async def scrape(
        self,
        url: str,
        formats: list[str],
        only_main_content: bool = False,
        cache_bypass: bool = False,
    ) -> ScrapedPage:
        """Render ``url`` and return its raw HTML, links and metadata.

        Raises UpstreamFetchError on any transport, HTTP or API-level failure.
        """
        if not self.api_key:
            raise UpstreamFetchError("FIRECRAWL_API_KEY is not set")

        body = {"url": url, "formats": formats, "onlyMainContent": only_main_content}
        if cache_bypass:
            body["maxAge"] = 0

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            response = await self.http.post(
                f"{self.api_url}/v1/scrape",
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise UpstreamFetchError(
                f"Page fetch failed for {url}", details=f"{type(e).__name__}: {e}"
            ) from e

        if response.status_code >= 400:
            raise UpstreamFetchError(
                f"Page fetch failed for {url}",
                details=f"Firecrawl returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamFetchError(
                f"Page fetch failed for {url}", details="Firecrawl returned non-JSON body"
            ) from e

        if payload.get("success") is False:
            raise UpstreamFetchError(
                f"Page fetch failed for {url}", details=str(payload.get("error", ""))[:500]
            )

        data = payload.get("data") or {}
        page = ScrapedPage(
            raw_html=data.get("rawHtml") or "",
            links=[link for link in data.get("links") or [] if isinstance(link, str)],
            metadata=data.get("metadata") or {},
        )
        logger.info(
            f"Fetched {url}: {len(page.raw_html)} chars of HTML, {len(page.links)} links"
        )
        return page
