"""网页搜索能力（Google Custom Search JSON API）。"""

from typing import Any, Dict, List

import httpx

from gemini_relay.domain.exceptions import CapabilityError
from .definitions import CapabilityContext, CapabilityDeclaration, CapabilityFunc, CapabilityParam


SEARCH_DECLARATION = CapabilityDeclaration(
    name="performWebSearch",
    description=(
        "Search the web for up-to-date information. Returns page titles, URLs and short snippets."
    ),
    params={
        "query": CapabilityParam(
            name="query",
            description="The search query",
            required=True,
        ),
    },
)


def make_search_capability(cfg) -> CapabilityFunc:
    def _run(args: Dict[str, Any], context: CapabilityContext) -> Dict[str, Any]:
        query = str(args.get("query") or "").strip()
        if not query:
            return {"error": "query is required"}
        if not cfg.google_search_api_key or not cfg.google_search_engine_id:
            return {"error": "Web search is not configured on the server."}
        try:
            with httpx.Client(timeout=cfg.http_timeout, trust_env=False) as client:
                resp = client.get(
                    cfg.search_base_url,
                    params={
                        "key": cfg.google_search_api_key,
                        "cx": cfg.google_search_engine_id,
                        "q": query,
                        "num": cfg.search_max_results,
                    },
                )
        except httpx.RequestError as e:
            raise CapabilityError(f"Search service unreachable: {e}")
        if resp.status_code >= 400:
            raise CapabilityError(f"Search service returned {resp.status_code}")
        try:
            data = resp.json()
        except ValueError:
            raise CapabilityError(f"Search service returned an unreadable answer for {query!r}")
        if not isinstance(data, dict):
            raise CapabilityError(f"Search service returned an unreadable answer for {query!r}")
        results: List[Dict[str, str]] = [
            {
                "title": item.get("title", ""),
                "url": item.get("link", ""),
                "snippet": item.get("snippet", ""),
            }
            for item in data.get("items") or []
        ]
        return {"query": query, "results": results}

    return _run
