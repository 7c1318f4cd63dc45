"""Endpoints del canal webchat."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Response, WebSocket

from concierge.api.deps import current_tenant, get_services
from concierge.bootstrap import Services
from concierge.core.errors import TenantNotFoundError
from concierge.core.logging import get_logger
from concierge.models.conversation import Tenant
from concierge.services.tenants import resolve_tenant

from . import schemas, service

logger = get_logger("concierge.channels.webchat")

router = APIRouter(prefix="/webchat", tags=["webchat"])

# Código de cierre para tenants inválidos (rango 4000-4999 reservado a la app).
INVALID_TENANT_CLOSE_CODE = 4400


@router.post(
    "/messages",
    response_model=schemas.MessageResponse,
    summary="Procesa un mensaje entrante del widget webchat",
)
async def post_webchat_message(
    payload: schemas.MessageRequest,
    tenant: Tenant = Depends(current_tenant),
    services: Services = Depends(get_services),
) -> schemas.MessageResponse:
    """Recibe un mensaje del widget, ejecuta el turno y responde."""
    return await service.handle_message(services, tenant, payload)


@router.get(
    "/messages",
    response_model=schemas.HistoryResponse,
    summary="Recupera el historial de una conversación",
)
async def get_webchat_messages(
    conversation_id: str = Query(..., min_length=1, description="Conversación a consultar."),
    tenant: Tenant = Depends(current_tenant),
    services: Services = Depends(get_services),
) -> schemas.HistoryResponse:
    return await service.fetch_history(services, tenant, conversation_id)


@router.post(
    "/close",
    status_code=204,
    summary="Cierra explícitamente una conversación webchat",
)
async def close_webchat_conversation(
    payload: schemas.CloseConversationRequest,
    tenant: Tenant = Depends(current_tenant),
    services: Services = Depends(get_services),
) -> Response:
    await service.close_conversation(services, tenant, payload.conversation_id)
    return Response(status_code=204)


@router.websocket("/ws")
async def webchat_socket(
    websocket: WebSocket,
    tenant: str = Query(..., description="Id o slug del tenant."),
    session_id: str = Query(..., min_length=4),
) -> None:
    """Socket del widget: turnos en tiempo real para una sesión."""
    services: Services = websocket.app.state.services
    resolved = await _tenant_or_close(websocket, services, tenant)
    if resolved is not None:
        await service.run_visitor_socket(websocket, services, resolved, session_id)


@router.websocket("/ws/admin")
async def operator_socket(
    websocket: WebSocket,
    tenant: str = Query(..., description="Id o slug del tenant."),
) -> None:
    """Socket de operadores: recibe `new-message` y `handoff` del tenant."""
    services: Services = websocket.app.state.services
    resolved = await _tenant_or_close(websocket, services, tenant)
    if resolved is not None:
        await service.run_operator_socket(websocket, services, resolved)


async def _tenant_or_close(
    websocket: WebSocket, services: Services, identifier: str
) -> Tenant | None:
    try:
        return await resolve_tenant(services.store, identifier)
    except TenantNotFoundError:
        logger.warning("webchat.socket_invalid_tenant", extra={"tenant": identifier})
        await websocket.close(code=INVALID_TENANT_CLOSE_CODE)
        return None
