"""Repositorio de tenants, conversaciones, mensajes y base de conocimiento."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import UUID

from concierge.core.errors import StorageError
from concierge.models.conversation import (
    STATUS_ACTIVE,
    STATUS_CLOSED,
    Conversation,
    ConversationStatus,
    KnowledgeEntry,
    Message,
    MessageRole,
    Tenant,
)

from .supabase import SupabaseRepository

_CONVERSATION_FIELDS = "id,tenant_id,channel,customer_id,status,metadata,created_at,ended_at"
_MESSAGE_FIELDS = "id,conversation_id,role,content,metadata,created_at"


class ConversationStore(Protocol):
    """Operaciones de persistencia que consume el pipeline de turnos."""

    async def find_tenant(self, identifier: str) -> Tenant | None: ...

    async def update_tenant_settings(
        self, tenant_id: str, tenant_settings: dict[str, Any]
    ) -> Tenant: ...

    async def find_active_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def create_conversation(
        self,
        tenant_id: str,
        channel: str,
        customer_id: str | None,
        metadata: dict[str, Any],
    ) -> Conversation: ...

    async def update_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> Conversation: ...

    async def list_active_conversations(self, tenant_id: str) -> list[Conversation]: ...

    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message: ...

    async def recent_messages(self, conversation_id: str, limit: int) -> list[Message]: ...

    async def list_messages(self, conversation_id: str) -> list[Message]: ...

    async def find_knowledge_entry(
        self, tenant_id: str, category: str, key: str
    ) -> KnowledgeEntry | None: ...


def _is_uuid(value: str | None) -> bool:
    if not value:
        return False
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


def _tenant(row: dict[str, Any]) -> Tenant:
    return Tenant.model_validate({**row, "settings": row.get("settings") or {}})


def _conversation(row: dict[str, Any]) -> Conversation:
    return Conversation.model_validate({**row, "metadata": row.get("metadata") or {}})


def _message(row: dict[str, Any]) -> Message:
    return Message.model_validate(row)


class ConversationRepository(SupabaseRepository):
    """Implementación de `ConversationStore` sobre Supabase REST."""

    async def find_tenant(self, identifier: str) -> Tenant | None:
        """Busca un tenant activo por slug o, si el valor es UUID, por id."""
        queries = [{"slug": f"eq.{identifier}"}]
        if _is_uuid(identifier):
            queries.insert(0, {"id": f"eq.{identifier}"})
        for query in queries:
            params = {"select": "id,slug,is_active,settings", "is_active": "eq.true", "limit": "1"}
            params.update(query)
            row = self._first(await self._request("GET", "/rest/v1/tenants", params=params))
            if row:
                return _tenant(row)
        return None

    async def update_tenant_settings(
        self, tenant_id: str, tenant_settings: dict[str, Any]
    ) -> Tenant:
        response = await self._request(
            "PATCH",
            "/rest/v1/tenants",
            params={"id": f"eq.{tenant_id}"},
            json={"settings": tenant_settings},
            prefer="return=representation",
        )
        row = self._first(response)
        if not row:
            raise StorageError(f"Tenant {tenant_id} no encontrado")
        return _tenant(row)

    async def find_active_conversation(self, conversation_id: str) -> Conversation | None:
        params = {
            "select": _CONVERSATION_FIELDS,
            "id": f"eq.{conversation_id}",
            "status": f"eq.{STATUS_ACTIVE}",
            "limit": "1",
        }
        row = self._first(await self._request("GET", "/rest/v1/conversations", params=params))
        return _conversation(row) if row else None

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        params = {"select": _CONVERSATION_FIELDS, "id": f"eq.{conversation_id}", "limit": "1"}
        row = self._first(await self._request("GET", "/rest/v1/conversations", params=params))
        return _conversation(row) if row else None

    async def create_conversation(
        self,
        tenant_id: str,
        channel: str,
        customer_id: str | None,
        metadata: dict[str, Any],
    ) -> Conversation:
        payload = {
            "tenant_id": tenant_id,
            "channel": channel,
            "customer_id": customer_id,
            "status": STATUS_ACTIVE,
            "metadata": metadata,
        }
        response = await self._request(
            "POST", "/rest/v1/conversations", json=payload, prefer="return=representation"
        )
        row = self._first(response)
        if not row:
            raise StorageError("Supabase no devolvió la conversación creada")
        return _conversation(row)

    async def update_conversation_status(
        self, conversation_id: str, status: ConversationStatus
    ) -> Conversation:
        patch: dict[str, Any] = {"status": status}
        if status == STATUS_CLOSED:
            patch["ended_at"] = datetime.now(timezone.utc).isoformat()
        response = await self._request(
            "PATCH",
            "/rest/v1/conversations",
            params={"id": f"eq.{conversation_id}"},
            json=patch,
            prefer="return=representation",
        )
        row = self._first(response)
        if not row:
            raise StorageError(f"Conversación {conversation_id} no encontrada")
        return _conversation(row)

    async def list_active_conversations(self, tenant_id: str) -> list[Conversation]:
        params = {
            "select": _CONVERSATION_FIELDS,
            "tenant_id": f"eq.{tenant_id}",
            "status": f"eq.{STATUS_ACTIVE}",
            "order": "created_at.desc",
        }
        response = await self._request("GET", "/rest/v1/conversations", params=params)
        return [_conversation(row) for row in self._json_list(response)]

    async def append_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        payload = {
            "conversation_id": conversation_id,
            "role": role,
            "content": content,
            "metadata": metadata,
        }
        response = await self._request(
            "POST", "/rest/v1/messages", json=payload, prefer="return=representation"
        )
        row = self._first(response)
        if not row:
            raise StorageError("Supabase no devolvió el mensaje creado")
        return _message(row)

    async def recent_messages(self, conversation_id: str, limit: int) -> list[Message]:
        """Últimos `limit` mensajes, devueltos en orden cronológico ascendente."""
        params = {
            "select": _MESSAGE_FIELDS,
            "conversation_id": f"eq.{conversation_id}",
            "order": "created_at.desc",
            "limit": str(limit),
        }
        response = await self._request("GET", "/rest/v1/messages", params=params)
        rows = self._json_list(response)
        return [_message(row) for row in reversed(rows)]

    async def list_messages(self, conversation_id: str) -> list[Message]:
        params = {
            "select": _MESSAGE_FIELDS,
            "conversation_id": f"eq.{conversation_id}",
            "order": "created_at.asc",
        }
        response = await self._request("GET", "/rest/v1/messages", params=params)
        return [_message(row) for row in self._json_list(response)]

    async def find_knowledge_entry(
        self, tenant_id: str, category: str, key: str
    ) -> KnowledgeEntry | None:
        params = {
            "select": "id,tenant_id,category,title,content",
            "tenant_id": f"eq.{tenant_id}",
            "category": f"eq.{category}",
            "title": f"eq.{key}",
            "limit": "1",
        }
        row = self._first(await self._request("GET", "/rest/v1/knowledge_base", params=params))
        return KnowledgeEntry.model_validate(row) if row else None
