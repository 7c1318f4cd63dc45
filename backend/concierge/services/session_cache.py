"""Caché en memoria de punteros sesión → conversación activa.

El valor guardado es sólo un acelerador: quien lo lee debe revalidar contra el
store antes de confiar en él. Vive en el proceso, igual que los demás caches
del servicio; un despliegue multi-proceso puede sustituirlo por cualquier
implementación de `SessionCache`.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from typing import Protocol


class SessionCache(Protocol):
    async def get(self, key: str) -> str | None: ...

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def delete(self, key: str) -> None: ...


def conversation_cache_key(tenant_id: str, counterpart: str) -> str:
    """Clave `conversation:{tenant}:{cliente o sesión}` usada por el orquestador."""
    return f"conversation:{tenant_id}:{counterpart}"


class InMemorySessionCache:
    """Diccionario con expiración perezosa y purga ocasional."""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        purge_every: int = 256,
    ) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()
        self._writes = 0
        self._purge_every = purge_every

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        async with self._lock:
            self._entries[key] = (value, self._clock() + ttl_seconds)
            self._writes += 1
            if self._writes % self._purge_every == 0:
                self._purge_expired()

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)

    def _purge_expired(self) -> None:
        now = self._clock()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]
