"""Web page scraper tool for retrieving readable page content."""

import json
import re
from typing import Any
from urllib.parse import urljoin

from bs4 import BeautifulSoup
import httpx

from loopwright.config import get_config
from loopwright.logging import get_logger
from loopwright.memory import MemoryIndex
from loopwright.tools.registry import Tool, ToolResult

log = get_logger(__name__)

MAX_LINKS = 5


class WebPageScraperTool(Tool):
    """Fetch a page, return its readable text and keep the full text in memory."""

    name = "web_page_scraper"
    description = "Scrape the readable text and links from a web page."
    parameters = {
        "type": "object",
        "properties": {
            "url": {
                "type": "string",
                "description": "The URL of the web page to scrape",
            },
            "question": {
                "type": "string",
                "description": "The question the page should answer",
            },
        },
        "required": ["url"],
    }
    response_format = {
        "text": "The readable text from the web page",
        "links": "The extracted links from the web page",
    }

    def __init__(self, memory: MemoryIndex | None = None):
        self.memory = memory
        self.client = httpx.AsyncClient(
            timeout=30.0,
            follow_redirects=True,
            headers={
                "User-Agent": "Loopwright/0.1.0 (Web Page Scraper Tool)",
            },
        )

    async def execute(
        self,
        url: str,
        question: str = "",
        **kwargs: Any,
    ) -> ToolResult:
        """Fetch a web page and extract readable text via BeautifulSoup.

        Args:
            url: URL to fetch
            question: Optional question used to label remembered chunks

        Returns:
            ToolResult with JSON ``{"text", "links"}`` content
        """
        scraper_cfg = get_config().tools.web_page_scraper
        try:
            log.info("Scraping URL", url=url)
            response = await self.client.get(url, timeout=float(scraper_cfg.timeout or 30))
            response.raise_for_status()
        except httpx.HTTPError as e:
            log.error("HTTP fetch failed", url=url, error=str(e))
            return ToolResult(success=False, error=f"HTTP error: {e}")

        text, links = self._extract_readable_text(response.text, base_url=url)
        self._add_to_memory(url, question, text, chunk_chars=max(200, int(scraper_cfg.chunk_chars)))

        max_chars = max(1, int(scraper_cfg.max_chars))
        if len(text) > max_chars:
            text = text[:max_chars] + "\n... [truncated; full text saved to memory]"

        return ToolResult(
            success=True,
            content=json.dumps({"text": text, "links": links}),
        )

    def _add_to_memory(self, url: str, question: str, text: str, chunk_chars: int) -> None:
        if self.memory is None or not text:
            return
        label = f"Text from {url}" + (f" (question: {question})" if question else "")
        for start in range(0, len(text), chunk_chars):
            chunk = text[start:start + chunk_chars]
            self.memory.add(f"{label}:\n{chunk}", key=f"{question}\n{chunk}" if question else None)

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()

    @staticmethod
    def _extract_readable_text(html: str, base_url: str | None = None) -> tuple[str, list[str]]:
        """Extract human-readable text and the first links from raw HTML."""
        soup = BeautifulSoup(html, "html.parser")

        for tag in soup(["script", "style", "noscript", "template", "svg", "canvas"]):
            tag.decompose()

        links: list[str] = []
        for anchor in soup.find_all("a"):
            href = (anchor.get("href") or "").strip()
            if not href or href.startswith(("#", "javascript:")):
                continue
            absolute = urljoin(base_url, href) if base_url else href
            if absolute not in links:
                links.append(absolute)
            if len(links) >= MAX_LINKS:
                break

        title = ""
        if soup.title and soup.title.string:
            title = soup.title.string.strip()

        lines: list[str] = []
        for line in soup.get_text(separator="\n").splitlines():
            cleaned = re.sub(r"\s+", " ", line).strip()
            if cleaned:
                lines.append(cleaned)

        text = "\n".join(lines)
        if title and not text.startswith(title):
            text = f"{title}\n\n{text}" if text else title
        return text, links
