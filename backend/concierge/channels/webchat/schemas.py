"""Esquemas de datos para el canal Webchat."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from concierge.models.conversation import ConversationStatus, MessageRole


class MessageRequest(BaseModel):
    """Payload recibido desde el widget webchat."""

    session_id: str = Field(
        ..., min_length=4, description="Identificador único por visitante/navegador."
    )
    content: str = Field(..., min_length=1, description="Mensaje en texto plano.")
    customer_id: str | None = Field(
        default=None,
        description="Cliente identificado; tiene prioridad sobre session_id.",
    )


class MessageResponse(BaseModel):
    """Respuesta a POST /messages."""

    reply: str
    conversation_id: str | None = None
    resolved: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class HistoryMessage(BaseModel):
    """Elemento individual del historial de mensajes."""

    id: str
    role: MessageRole
    content: str
    created_at: datetime
    metadata: dict[str, Any] | None = None


class HistoryResponse(BaseModel):
    """Respuesta de GET /messages."""

    conversation_id: str
    status: ConversationStatus
    messages: list[HistoryMessage] = Field(default_factory=list)


class CloseConversationRequest(BaseModel):
    """Payload para POST /close."""

    conversation_id: str = Field(..., description="Conversación a cerrar.")
