"""Entrega de respuestas por el canal de origen de cada conversación."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Protocol

from concierge.core.logging import get_logger, log_event
from concierge.models.conversation import TurnResponse

logger = get_logger("concierge.channels")


class ChannelSender(Protocol):
    async def send(self, recipient: str, response: TurnResponse) -> None: ...


class DeliverySink(Protocol):
    async def send(self, channel: str, recipient: str, response: TurnResponse) -> None: ...


class ChannelDelivery:
    """Enruta cada respuesta al sender registrado para su canal."""

    def __init__(self, senders: Mapping[str, ChannelSender] | None = None) -> None:
        self._senders: dict[str, ChannelSender] = dict(senders or {})

    def register(self, channel: str, sender: ChannelSender) -> None:
        self._senders[channel] = sender

    @property
    def channels(self) -> list[str]:
        return sorted(self._senders)

    async def send(self, channel: str, recipient: str, response: TurnResponse) -> None:
        sender = self._senders.get(channel)
        if sender is None:
            logger.warning("delivery.unknown_channel", extra={"channel": channel})
            return
        await sender.send(recipient, response)
        log_event(logger, "delivery.sent", channel=channel, intent=response.intent)
