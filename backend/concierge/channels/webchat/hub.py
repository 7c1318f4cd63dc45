"""Conexiones WebSocket del widget y de los paneles de cada tenant."""

from __future__ import annotations

from collections import defaultdict
from typing import Any

from fastapi import WebSocket

from concierge.core.logging import get_logger, log_event
from concierge.models.conversation import TurnResponse
from concierge.services.events import EVENT_HANDOFF

logger = get_logger("concierge.channels.webchat")

NEW_MESSAGE_EVENT = "new-message"
_ROOM_EVENTS = {
    EVENT_HANDOFF: "handoff",
}


class WebSocketHub:
    """Sender del canal `web` y difusión a la sala `tenant:<id>` de operadores.

    Los sockets de visitantes se indexan por su destinatario (cliente o
    sesión); los de operadores por tenant.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, set[WebSocket]] = defaultdict(set)
        self._rooms: dict[str, set[WebSocket]] = defaultdict(set)

    def attach_session(self, recipient: str, websocket: WebSocket) -> None:
        self._sessions[recipient].add(websocket)

    def detach_session(self, recipient: str, websocket: WebSocket) -> None:
        _discard(self._sessions, recipient, websocket)

    def join_room(self, tenant_id: str, websocket: WebSocket) -> None:
        self._rooms[tenant_id].add(websocket)

    def leave_room(self, tenant_id: str, websocket: WebSocket) -> None:
        _discard(self._rooms, tenant_id, websocket)

    def has_session(self, recipient: str) -> bool:
        return bool(self._sessions.get(recipient))

    async def send(self, recipient: str, response: TurnResponse) -> None:
        sockets = list(self._sessions.get(recipient, ()))
        if not sockets:
            log_event(logger, "webchat.no_live_socket", recipient=recipient)
            return
        frame = {
            "event": "message",
            "data": {
                "content": response.content,
                "metadata": response.metadata,
                "resolved": response.resolved,
            },
        }
        for websocket in sockets:
            if not await _send_json(websocket, frame):
                self.detach_session(recipient, websocket)

    async def broadcast(self, tenant_id: str, event: str, data: dict[str, Any]) -> None:
        frame = {"event": event, "data": data}
        for websocket in list(self._rooms.get(tenant_id, ())):
            if not await _send_json(websocket, frame):
                self.leave_room(tenant_id, websocket)

    async def notify_turn(self, tenant_id: str, data: dict[str, Any]) -> None:
        """Difunde el mensaje del visitante y la respuesta a la sala del tenant."""
        await self.broadcast(tenant_id, NEW_MESSAGE_EVENT, {"tenant_id": tenant_id, **data})

    async def on_event(self, event_name: str, payload: dict[str, Any]) -> None:
        """Suscriptor del bus: reenvía handoffs a los operadores del tenant."""
        room_event = _ROOM_EVENTS.get(event_name)
        tenant_id = payload.get("tenant_id")
        if room_event and tenant_id:
            await self.broadcast(str(tenant_id), room_event, payload)


def _discard(index: dict[str, set[WebSocket]], key: str, websocket: WebSocket) -> None:
    sockets = index.get(key)
    if sockets is None:
        return
    sockets.discard(websocket)
    if not sockets:
        del index[key]


async def _send_json(websocket: WebSocket, frame: dict[str, Any]) -> bool:
    try:
        await websocket.send_json(frame)
    except Exception:
        logger.warning("webchat.socket_send_failed", exc_info=True)
        return False
    return True
