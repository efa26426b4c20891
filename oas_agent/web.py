"""Documentation lookups backing the evidence tools: search for doc URLs, read a page."""

import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .errors import ToolFailure
from .tavily import TavilyClient

logger = logging.getLogger("uvicorn.error")

SEARCH_SUFFIX = "API documentation"


def _trim_text(text: Any, max_chars: int) -> Tuple[str, bool]:
    raw = "" if text is None else str(text)
    if max_chars <= 0 or len(raw) <= max_chars:
        return raw, False
    if max_chars <= 3:
        return raw[:max_chars], True
    return raw[: max_chars - 3].rstrip() + "...", True


def _describe_error(resp: Dict[str, Any]) -> str:
    detail = resp.get("detail")
    code = resp.get("status_code")
    parts = [str(resp.get("error"))]
    if code:
        parts.append(f"HTTP {code}")
    if detail:
        parts.append(str(detail))
    return " - ".join(parts)


class DocumentationTools:
    def __init__(
        self,
        tavily: TavilyClient,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        max_results: int = 5,
        extract_depth: str = "basic",
        max_chars: int = 20000,
    ):
        self.tavily = tavily
        self.http_client = http_client or httpx.AsyncClient(timeout=30, follow_redirects=True)
        self.max_results = max_results
        self.extract_depth = extract_depth
        self.max_chars = max_chars

    async def search(self, query: str) -> List[str]:
        """Ranked documentation URLs for a natural-language query."""
        query = str(query or "").strip()
        if not query:
            raise ToolFailure("Documentation search failed: empty query")
        resp = await self.tavily.search(f"{query} {SEARCH_SUFFIX}", max_results=self.max_results)
        if resp.get("error"):
            raise ToolFailure(f"Documentation search failed: {_describe_error(resp)}")
        urls: List[str] = []
        for item in resp.get("results") or []:
            url = item.get("url") if isinstance(item, dict) else None
            if url and url not in urls:
                urls.append(url)
        logger.info("Documentation search for %r found %d URL(s)", query, len(urls))
        return urls

    async def fetch(self, url: str) -> str:
        """Page text, preferring extracted markdown and falling back to the raw markup."""
        url = str(url or "").strip()
        try:
            scheme = httpx.URL(url).scheme if url else ""
        except httpx.InvalidURL:
            scheme = ""
        if scheme not in ("http", "https"):
            raise ToolFailure(f"Failed to read {url or '<empty>'}: only http/https URLs are allowed")

        extract_error = ""
        resp = await self.tavily.extract([url], extract_depth=self.extract_depth, format="markdown")
        if resp.get("error"):
            extract_error = _describe_error(resp)
        else:
            for item in resp.get("results") or []:
                content = item.get("raw_content") if isinstance(item, dict) else None
                if content and str(content).strip():
                    text, truncated = _trim_text(content, self.max_chars)
                    logger.info("Read %s via extract (%d chars, truncated=%s)", url, len(text), truncated)
                    return text
            failed = resp.get("failed_results") or []
            extract_error = f"no extracted content ({len(failed)} failed)"

        try:
            page = await self.http_client.get(url)
            page.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ToolFailure(
                f"Failed to read {url}: extract {extract_error}; direct fetch HTTP {exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise ToolFailure(f"Failed to read {url}: extract {extract_error}; direct fetch {exc}") from exc
        if not page.text.strip():
            raise ToolFailure(f"Failed to read {url}: extract {extract_error}; direct fetch returned no content")
        text, truncated = _trim_text(page.text, self.max_chars)
        logger.info("Read %s via direct fetch (%d chars, truncated=%s)", url, len(text), truncated)
        return text

    async def close(self) -> None:
        if not self.http_client.is_closed:
            await self.http_client.aclose()
