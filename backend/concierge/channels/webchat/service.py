"""Servicios del canal webchat: HTTP para el widget y sesiones WebSocket."""

from __future__ import annotations

import json
from typing import Any

from fastapi import HTTPException, WebSocket, WebSocketDisconnect, status

from concierge.bootstrap import WEB_CHANNEL, Services
from concierge.core.errors import DEFAULT_APOLOGY, StorageError, TurnProcessingError
from concierge.core.logging import get_logger, log_event
from concierge.models.conversation import Conversation, Tenant

from . import schemas

logger = get_logger("concierge.channels.webchat")

CONVERSATION_NOT_FOUND = "Conversation not found"


async def handle_message(
    services: Services, tenant: Tenant, payload: schemas.MessageRequest
) -> schemas.MessageResponse:
    """Procesa el mensaje del widget como un turno y devuelve la respuesta."""
    try:
        response = await services.orchestrator.process_turn(
            tenant.id,
            WEB_CHANNEL,
            payload.content,
            customer_id=payload.customer_id,
            session_id=payload.session_id,
        )
    except TurnProcessingError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=DEFAULT_APOLOGY) from exc

    return schemas.MessageResponse(
        reply=response.content,
        conversation_id=response.conversation_id,
        resolved=response.resolved,
        metadata=response.metadata,
    )


async def fetch_history(
    services: Services, tenant: Tenant, conversation_id: str
) -> schemas.HistoryResponse:
    """Devuelve la conversación y todos sus mensajes en orden cronológico."""
    try:
        found = await services.orchestrator.get_conversation(conversation_id)
    except StorageError as exc:
        logger.exception(
            "webchat.history_fetch_failed",
            extra={"conversation_id": conversation_id, "error": str(exc)},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Unable to load history"
        ) from exc

    if found is None or found[0].tenant_id != tenant.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=CONVERSATION_NOT_FOUND)

    conversation, messages = found
    return schemas.HistoryResponse(
        conversation_id=conversation.id,
        status=conversation.status,
        messages=[
            schemas.HistoryMessage(
                id=message.id,
                role=message.role,
                content=message.content,
                created_at=message.created_at,
                metadata=message.metadata,
            )
            for message in messages
        ],
    )


async def close_conversation(
    services: Services, tenant: Tenant, conversation_id: str
) -> Conversation:
    """Cierra la conversación si pertenece al tenant."""
    try:
        conversation = await services.store.get_conversation(conversation_id)
        if conversation is None or conversation.tenant_id != tenant.id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail=CONVERSATION_NOT_FOUND
            )
        return await services.orchestrator.end_conversation(conversation_id)
    except StorageError as exc:
        logger.exception(
            "webchat.close_failed",
            extra={"conversation_id": conversation_id, "error": str(exc)},
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY, detail="Unable to close conversation"
        ) from exc


async def run_visitor_socket(
    websocket: WebSocket, services: Services, tenant: Tenant, session_id: str
) -> None:
    """Atiende un socket del widget hasta que el cliente se desconecta.

    Eventos aceptados: `start-conversation`, `message` y `typing`. Las
    respuestas de cada turno llegan por `WebSocketHub.send` como evento
    `message`; los fallos se reportan como evento `error` con la disculpa.
    """
    await websocket.accept()
    services.hub.attach_session(session_id, websocket)
    log_event(logger, "webchat.socket_opened", tenant_id=tenant.id, session_id=session_id)
    await websocket.send_json(
        {"event": "connected", "data": {"tenant_id": tenant.id, "session_id": session_id}}
    )
    try:
        while True:
            frame = _parse_frame(await websocket.receive_text())
            if frame is None:
                await _send_error(websocket, "Invalid frame")
                continue
            event, data = frame
            if event == "start-conversation":
                await _start_conversation(websocket, services, tenant, session_id)
            elif event == "message":
                await _run_socket_turn(websocket, services, tenant, session_id, data)
            elif event == "typing":
                await services.hub.broadcast(
                    tenant.id,
                    "visitor-typing",
                    {"session_id": session_id, "is_typing": bool(data.get("is_typing"))},
                )
            else:
                await _send_error(websocket, f"Unknown event: {event}")
    except WebSocketDisconnect:
        log_event(logger, "webchat.socket_closed", tenant_id=tenant.id, session_id=session_id)
    finally:
        services.hub.detach_session(session_id, websocket)


async def run_operator_socket(websocket: WebSocket, services: Services, tenant: Tenant) -> None:
    """Suscribe un panel de operador a la sala del tenant."""
    await websocket.accept()
    services.hub.join_room(tenant.id, websocket)
    log_event(logger, "webchat.operator_joined", tenant_id=tenant.id)
    await websocket.send_json({"event": "joined", "data": {"tenant_id": tenant.id}})
    try:
        while True:
            frame = _parse_frame(await websocket.receive_text())
            if frame is not None and frame[0] == "ping":
                await websocket.send_json({"event": "pong", "data": {}})
    except WebSocketDisconnect:
        log_event(logger, "webchat.operator_left", tenant_id=tenant.id)
    finally:
        services.hub.leave_room(tenant.id, websocket)


async def _start_conversation(
    websocket: WebSocket, services: Services, tenant: Tenant, session_id: str
) -> None:
    try:
        conversation = await services.orchestrator.start_conversation(
            tenant.id, WEB_CHANNEL, session_id=session_id
        )
    except StorageError:
        logger.exception(
            "webchat.start_failed", extra={"tenant_id": tenant.id, "session_id": session_id}
        )
        await _send_error(websocket, DEFAULT_APOLOGY)
        return
    await websocket.send_json(
        {"event": "conversation-started", "data": {"conversation_id": conversation.id}}
    )


async def _run_socket_turn(
    websocket: WebSocket,
    services: Services,
    tenant: Tenant,
    session_id: str,
    data: dict[str, Any],
) -> None:
    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        await _send_error(websocket, "Message content is required")
        return

    await websocket.send_json({"event": "typing", "data": {"is_typing": True}})
    try:
        await services.orchestrator.process_turn(
            tenant.id, WEB_CHANNEL, content, session_id=session_id
        )
    except TurnProcessingError:
        await _send_error(websocket, DEFAULT_APOLOGY)
    finally:
        await websocket.send_json({"event": "typing", "data": {"is_typing": False}})


def _parse_frame(raw: str) -> tuple[str, dict[str, Any]] | None:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("event"), str):
        return None
    data = payload.get("data")
    return payload["event"], data if isinstance(data, dict) else {}


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "data": {"message": message}})
