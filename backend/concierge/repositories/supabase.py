"""Cliente base para repositorios sobre Supabase REST (PostgREST)."""

from __future__ import annotations

from typing import Any

import httpx

from concierge.core.config import settings
from concierge.core.errors import StorageError
from concierge.core.logging import get_logger

logger = get_logger(__name__)


class SupabaseRepository:
    """Pequeña capa de acceso a Supabase REST autenticada con el service role."""

    error_class: type[StorageError] = StorageError

    def __init__(
        self,
        *,
        base_url: str | None = None,
        service_role: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ) -> None:
        url = base_url or settings.supabase_url
        if not url:
            raise self.error_class("Supabase URL no configurada")
        self._base_url = url.rstrip("/")
        self._service_role = service_role or settings.supabase_service_role
        self._transport = transport
        self._timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        headers = self._headers(prefer, has_body=json is not None)
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=headers,
                )
        except httpx.RequestError as exc:
            logger.exception("supabase.request_failed", extra={"path": path, "error": str(exc)})
            raise self.error_class(f"Error al conectar a Supabase: {exc}") from exc
        if response.status_code >= 400:
            logger.error(
                "supabase.response_error",
                extra={"path": path, "status": response.status_code, "body": response.text},
            )
            raise self.error_class(f"Supabase respondió {response.status_code}: {response.text}")
        return response

    def _headers(self, prefer: str | None, *, has_body: bool) -> dict[str, str]:
        if not self._service_role:
            raise self.error_class("Falta SUPABASE_SERVICE_ROLE para realizar la operación")
        headers: dict[str, str] = {
            "Accept": "application/json",
            "apikey": self._service_role,
            "Authorization": f"Bearer {self._service_role}",
        }
        if prefer:
            headers["Prefer"] = prefer
        if has_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _json_list(self, response: httpx.Response) -> list[dict[str, Any]]:
        payload = response.json() or []
        if not isinstance(payload, list):
            raise self.error_class("Respuesta inesperada de Supabase")
        return [row for row in payload if isinstance(row, dict)]

    def _first(self, response: httpx.Response) -> dict[str, Any] | None:
        rows = self._json_list(response)
        return rows[0] if rows else None
