"""Rutas de operación: conversaciones activas, detalle, cierre y ajustes del tenant."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from concierge.api.deps import current_tenant, get_services
from concierge.bootstrap import Services
from concierge.core.errors import StorageError
from concierge.core.logging import get_logger, log_event
from concierge.models.conversation import Conversation, ConversationStatus, Message, Tenant

router = APIRouter(prefix="", tags=["conversations"])

logger = get_logger(__name__)


class ConversationSummary(BaseModel):
    id: str
    channel: str
    customer_id: str | None = None
    status: ConversationStatus
    created_at: datetime
    ended_at: datetime | None = None


class ConversationDetail(ConversationSummary):
    """Conversación con todos sus mensajes en orden cronológico."""

    metadata: dict[str, Any] = Field(default_factory=dict)
    messages: list[Message] = Field(default_factory=list)


class TenantSettingsPayload(BaseModel):
    """Claves a fusionar sobre los ajustes actuales del tenant."""

    settings: dict[str, Any] = Field(..., description="Ajustes parciales; se fusionan.")


def _summary(conversation: Conversation) -> ConversationSummary:
    return ConversationSummary(
        id=conversation.id,
        channel=conversation.channel,
        customer_id=conversation.customer_id,
        status=conversation.status,
        created_at=conversation.created_at,
        ended_at=conversation.ended_at,
    )


def _storage_failure(event: str, exc: StorageError, **extra: Any) -> HTTPException:
    logger.exception(event, extra={**extra, "error": str(exc)})
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Storage unavailable")


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    tenant: Tenant = Depends(current_tenant),
    services: Services = Depends(get_services),
) -> list[ConversationSummary]:
    """Conversaciones activas del tenant, más recientes primero."""
    try:
        conversations = await services.orchestrator.list_active_conversations(tenant.id)
    except StorageError as exc:
        raise _storage_failure("conversations.list_failed", exc, tenant_id=tenant.id) from exc
    return [_summary(conversation) for conversation in conversations]


@router.get("/conversations/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: str,
    tenant: Tenant = Depends(current_tenant),
    services: Services = Depends(get_services),
) -> ConversationDetail:
    try:
        found = await services.orchestrator.get_conversation(conversation_id)
    except StorageError as exc:
        raise _storage_failure(
            "conversations.fetch_failed", exc, conversation_id=conversation_id
        ) from exc
    if found is None or found[0].tenant_id != tenant.id:
        raise HTTPException(status_code=404, detail="Conversation not found")

    conversation, messages = found
    summary = _summary(conversation)
    return ConversationDetail(
        **summary.model_dump(), metadata=conversation.metadata, messages=messages
    )


@router.post("/conversations/{conversation_id}/end", response_model=ConversationSummary)
async def end_conversation(
    conversation_id: str,
    tenant: Tenant = Depends(current_tenant),
    services: Services = Depends(get_services),
) -> ConversationSummary:
    """Cierra la conversación; el siguiente mensaje del cliente abrirá otra."""
    try:
        conversation = await services.store.get_conversation(conversation_id)
        if conversation is None or conversation.tenant_id != tenant.id:
            raise HTTPException(status_code=404, detail="Conversation not found")
        closed = await services.orchestrator.end_conversation(conversation_id)
    except StorageError as exc:
        raise _storage_failure(
            "conversations.end_failed", exc, conversation_id=conversation_id
        ) from exc
    return _summary(closed)


@router.patch("/tenant/settings", response_model=Tenant)
async def update_tenant_settings(
    payload: TenantSettingsPayload,
    tenant: Tenant = Depends(current_tenant),
    services: Services = Depends(get_services),
) -> Tenant:
    merged = {**tenant.settings, **payload.settings}
    try:
        updated = await services.store.update_tenant_settings(tenant.id, merged)
    except StorageError as exc:
        raise _storage_failure("tenant.settings_update_failed", exc, tenant_id=tenant.id) from exc
    log_event(logger, "tenant.settings_updated", tenant_id=tenant.id, keys=sorted(payload.settings))
    return updated
