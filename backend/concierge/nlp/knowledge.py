"""Recuperación de conocimiento del tenant por similitud vectorial."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

from openai import AsyncOpenAI

from concierge.core.config import settings
from concierge.repositories.supabase import SupabaseRepository
from concierge.services import openai as openai_service


class KnowledgeRetriever(Protocol):
    async def search_similar(self, query: str, tenant_id: str) -> list[str]: ...


class VectorKnowledgeRetriever(SupabaseRepository):
    """Embebe la consulta con OpenAI y la compara contra `knowledge_base` (pgvector).

    Usa la función RPC `match_knowledge_entries(p_tenant_id, p_query_embedding,
    p_match_count)`, que devuelve filas ordenadas por similitud descendente.
    """

    def __init__(
        self,
        *,
        client_factory: Callable[[], AsyncOpenAI] = openai_service.get_openai_client,
        embedding_model: str | None = None,
        match_count: int | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)
        self._client_factory = client_factory
        self._embedding_model = embedding_model or settings.openai_embedding_model
        self._match_count = match_count or settings.knowledge_match_count

    async def search_similar(self, query: str, tenant_id: str) -> list[str]:
        if not query.strip():
            return []
        embedding = await self._client_factory().embeddings.create(
            model=self._embedding_model, input=query
        )
        vector = list(embedding.data[0].embedding)
        response = await self._request(
            "POST",
            "/rest/v1/rpc/match_knowledge_entries",
            json={
                "p_tenant_id": tenant_id,
                "p_query_embedding": vector,
                "p_match_count": self._match_count,
            },
        )
        return [str(row["content"]) for row in self._json_list(response) if row.get("content")]
