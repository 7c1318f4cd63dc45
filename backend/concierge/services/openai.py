"""Cliente centralizado para interactuar con OpenAI."""

from __future__ import annotations

from functools import lru_cache
from typing import Any

from openai import AsyncOpenAI

from concierge.core.config import settings


@lru_cache(maxsize=1)
def get_openai_client() -> AsyncOpenAI:
    """Crea un cliente asíncrono reutilizable."""
    if not settings.openai_api_key:
        msg = "OPENAI_API_KEY is not configured"
        raise RuntimeError(msg)
    return AsyncOpenAI(api_key=settings.openai_api_key)


def extract_output_text(response: Any) -> str | None:
    """Concatena los fragmentos `output_text` de una respuesta de Responses API."""
    dump = response.model_dump() if hasattr(response, "model_dump") else response
    if not isinstance(dump, dict):
        return None
    fragments: list[str] = []
    for item in dump.get("output") or []:
        if item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if content.get("type") == "output_text" and content.get("text"):
                fragments.append(content["text"].strip())
    return "\n".join(fragments) if fragments else None
