"""Web search tool powered by the Google Custom Search JSON API."""

import os
import re
from typing import Any

import httpx

from loopwright.config import get_config
from loopwright.logging import get_logger
from loopwright.memory import MemoryIndex
from loopwright.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class WebSearchTool(Tool):
    """Search the web and remember the results."""

    name = "web_search"
    description = "Search the web and return ranked results with titles, links, and snippets."
    parameters = {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "The query to search for",
            },
            "num_results": {
                "type": "number",
                "description": "Maximum results to return (default from config, max 10)",
            },
        },
        "required": ["query"],
    }
    response_format = {
        "results": "A list of results. Each result has a title, link and snippet",
    }

    def __init__(self, memory: MemoryIndex | None = None):
        self.memory = memory
        self.client = httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": "Loopwright/0.1.0 (Web Search Tool)"},
        )

    @staticmethod
    def _clean_text(value: str, max_chars: int = 500) -> str:
        """Normalize whitespace and bound output size."""
        cleaned = re.sub(r"\s+", " ", (value or "")).strip()
        if len(cleaned) <= max_chars:
            return cleaned
        return cleaned[:max_chars].rstrip() + "... [truncated]"

    def _add_to_memory(self, query: str, results: list[tuple[str, str, str]]) -> None:
        if self.memory is None or not results:
            return
        entry = f"Search result for {query}:\n"
        for title, link, _ in results:
            entry += f"\t{title}: {link}\n"
        self.memory.add(entry + "\n")

    async def execute(
        self,
        query: str,
        num_results: int | None = None,
        **kwargs: Any,
    ) -> ToolResult:
        """Execute a Google Custom Search query."""
        q = str(query or "").strip()
        if not q:
            return ToolResult(success=False, error="Missing required query")

        search_cfg = get_config().tools.web_search
        api_key = search_cfg.api_key.strip() or os.environ.get("GOOGLE_API_KEY", "").strip()
        cx_id = search_cfg.cx_id.strip() or os.environ.get("GOOGLE_CX_ID", "").strip()
        if not api_key or not cx_id:
            return ToolResult(
                success=False,
                error=(
                    "Missing Google search credentials. Set tools.web_search.api_key and "
                    "tools.web_search.cx_id in config or GOOGLE_API_KEY / GOOGLE_CX_ID."
                ),
            )

        default_count = int(search_cfg.max_results or 8)
        effective_count = default_count if num_results is None else int(num_results)
        effective_count = min(max(effective_count, 1), 10)

        try:
            response = await self.client.get(
                search_cfg.base_url,
                params={"key": api_key, "cx": cx_id, "q": q, "num": effective_count},
                timeout=float(search_cfg.timeout or 20),
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            detail = f"HTTP {e.response.status_code}"
            body = self._clean_text(e.response.text or "", max_chars=300)
            if body:
                detail = f"{detail}: {body}"
            log.error("Google web search failed", query=q, error=detail)
            return ToolResult(success=False, error=detail)
        except httpx.HTTPError as e:
            log.error("Web search failed", query=q, error=str(e))
            return ToolResult(success=False, error=str(e))

        items = payload.get("items", []) if isinstance(payload, dict) else []
        if not isinstance(items, list):
            items = []

        results: list[tuple[str, str, str]] = []
        for item in items[:effective_count]:
            if not isinstance(item, dict):
                continue
            results.append(
                (
                    self._clean_text(str(item.get("title", "") or "Untitled"), max_chars=180),
                    str(item.get("link", "") or "").strip(),
                    self._clean_text(str(item.get("snippet", "") or "")),
                )
            )

        self._add_to_memory(q, results)

        lines = [f"[QUERY: {q}]", f"[RESULTS: {len(results)}]", ""]
        if not results:
            lines.append("No results found.")
        for idx, (title, link, snippet) in enumerate(results, start=1):
            lines.append(f"{idx}. {title}")
            lines.append(f"   URL: {link or '-'}")
            lines.append(f"   Snippet: {snippet or '-'}")
            lines.append("")
        return ToolResult(success=True, content="\n".join(lines).strip())

    async def close(self) -> None:
        """Close HTTP client."""
        await self.client.aclose()
