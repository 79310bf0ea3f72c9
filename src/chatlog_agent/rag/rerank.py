"""Optional cross-encoder reranking through a ``/rerank`` HTTP endpoint (Jina / Cohere style)."""

from __future__ import annotations

from typing import Optional

import httpx

from chatlog_agent.config import RerankConfig
from chatlog_agent.log import get_logger

logger = get_logger(__name__)


class RerankService:
    """Scores documents against a query; returns ``(index, score)`` pairs, best first."""

    def __init__(self, config: RerankConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._config = config
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return self._config.enabled and bool(self._config.base_url)

    @property
    def top_n(self) -> int:
        return self._config.top_n

    async def rerank(self, query: str, documents: list[str], top_n: Optional[int] = None) -> list[tuple[int, float]]:
        if not documents:
            return []

        headers = {"Content-Type": "application/json"}
        if self._config.api_key:
            headers["Authorization"] = f"Bearer {self._config.api_key}"
        payload = {
            "model": self._config.model,
            "query": query,
            "documents": documents,
            "top_n": min(top_n or self._config.top_n, len(documents)),
        }

        async with httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            timeout=httpx.Timeout(self._config.timeout, connect=10.0),
            headers=headers,
            transport=self._transport,
        ) as client:
            resp = await client.post("/rerank", json=payload)
            resp.raise_for_status()
            data = resp.json()

        ranked = [
            (int(item["index"]), float(item.get("relevance_score", item.get("score", 0.0))))
            for item in data.get("results", [])
            if 0 <= int(item["index"]) < len(documents)
        ]
        ranked.sort(key=lambda pair: pair[1], reverse=True)
        logger.debug("rerank_done", documents=len(documents), returned=len(ranked))
        return ranked
