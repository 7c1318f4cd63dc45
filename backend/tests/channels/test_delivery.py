"""Pruebas de la entrega por canal, el hub WebSocket y el sender de SMS."""

from types import SimpleNamespace
from typing import Any

from concierge.channels.delivery import ChannelDelivery
from concierge.channels.sms.sender import TwilioSmsSender
from concierge.channels.webchat.hub import WebSocketHub
from concierge.models.conversation import TurnResponse


async def test_delivery_routes_to_registered_sender(recording_sender) -> None:
    web, sms = recording_sender(), recording_sender()
    delivery = ChannelDelivery({"web": web})
    delivery.register("sms", sms)
    response = TurnResponse(content="hi", metadata={"intent": "greet"})

    await delivery.send("sms", "+1555", response)

    assert sms.sent == [("+1555", response)]
    assert web.sent == []
    assert delivery.channels == ["sms", "web"]


async def test_unknown_channel_is_ignored() -> None:
    delivery = ChannelDelivery()

    await delivery.send("fax", "nobody", TurnResponse(content="hi"))


async def test_hub_sends_message_frame_to_session(fake_websocket) -> None:
    hub = WebSocketHub()
    socket = fake_websocket()
    hub.attach_session("sess-1", socket)

    await hub.send("sess-1", TurnResponse(content="hello", metadata={"intent": "x"}, resolved=True))

    assert socket.frames == [
        {
            "event": "message",
            "data": {"content": "hello", "metadata": {"intent": "x"}, "resolved": True},
        }
    ]


async def test_hub_drops_broken_sockets(fake_websocket) -> None:
    hub = WebSocketHub()
    broken = fake_websocket(fail=True)
    hub.attach_session("sess-1", broken)

    await hub.send("sess-1", TurnResponse(content="hello"))

    assert hub.has_session("sess-1") is False


async def test_hub_relays_events_to_tenant_room(fake_websocket) -> None:
    hub = WebSocketHub()
    operator, other_tenant = fake_websocket(), fake_websocket()
    hub.join_room("tenant-1", operator)
    hub.join_room("tenant-2", other_tenant)
    handoff = {"tenant_id": "tenant-1", "conversation_id": "conv-1", "reason": "requested"}

    await hub.notify_turn("tenant-1", {"conversation_id": "conv-1", "message": "hi"})
    await hub.on_event("conversation.handoff", handoff)
    await hub.on_event("conversation.message", {"tenant_id": "tenant-1", "intent": "faq.hours"})
    await hub.on_event("unrelated", handoff)

    assert [frame["event"] for frame in operator.frames] == ["new-message", "handoff"]
    assert operator.frames[0]["data"] == {
        "tenant_id": "tenant-1",
        "conversation_id": "conv-1",
        "message": "hi",
    }
    assert operator.frames[1]["data"] == handoff
    assert other_tenant.frames == []


async def test_twilio_sender_uses_messages_api() -> None:
    created: list[dict[str, Any]] = []

    def create(**kwargs: Any) -> SimpleNamespace:
        created.append(kwargs)
        return SimpleNamespace(sid="SM123")

    client = SimpleNamespace(messages=SimpleNamespace(create=create))
    sender = TwilioSmsSender(from_number="+15559990000", client_factory=lambda: client)

    await sender.send("+15550001111", TurnResponse(content="We are open 9-5"))

    assert created == [
        {"to": "+15550001111", "from_": "+15559990000", "body": "We are open 9-5"}
    ]
