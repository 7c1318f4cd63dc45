"""Modelos base para tenants, conversaciones y turnos."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

ConversationStatus = Literal["active", "closed", "pending_handoff"]
MessageRole = Literal["user", "assistant", "system"]

STATUS_ACTIVE: ConversationStatus = "active"
STATUS_CLOSED: ConversationStatus = "closed"
STATUS_PENDING_HANDOFF: ConversationStatus = "pending_handoff"


class Tenant(BaseModel):
    """Negocio dueño de conversaciones y base de conocimiento."""

    id: str
    slug: str
    is_active: bool = True
    settings: dict[str, Any] = Field(default_factory=dict)


class Conversation(BaseModel):
    """Representa una conversación multicanal."""

    id: str
    tenant_id: str
    channel: str
    customer_id: str | None = None
    status: ConversationStatus = STATUS_ACTIVE
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    ended_at: datetime | None = None


class Message(BaseModel):
    """Mensaje persistido; sólo se agregan, nunca se editan."""

    id: str
    conversation_id: str
    role: MessageRole
    content: str
    metadata: dict[str, Any] | None = None
    created_at: datetime


class KnowledgeEntry(BaseModel):
    id: str
    tenant_id: str
    category: str
    title: str
    content: str


class Booking(BaseModel):
    id: str
    tenant_id: str
    customer_id: str | None = None
    service: str
    date: str
    time: str


@dataclass(slots=True)
class ConversationContext:
    """Proyección de lectura reconstruida en cada turno a partir de los mensajes."""

    conversation_id: str
    tenant_id: str
    channel: str
    customer_id: str | None
    history: list[Message] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def last_user_message(self) -> str | None:
        for message in reversed(self.history):
            if message.role == "user":
                return message.content
        return None


@dataclass(slots=True)
class ClassificationResult:
    """Intención detectada para un turno."""

    intent: str
    entities: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.0
    sentiment: dict[str, Any] | None = None
    suggestions: list[str] | None = None
    source: str | None = None


@dataclass(slots=True)
class TurnResponse:
    """Respuesta final de un turno."""

    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    resolved: bool = False
    conversation_id: str | None = None

    @property
    def intent(self) -> str | None:
        value = self.metadata.get("intent")
        return str(value) if value is not None else None
