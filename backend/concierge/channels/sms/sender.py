"""Sender del canal `sms` sobre la API de mensajes de Twilio."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from twilio.rest import Client

from concierge.core.logging import get_logger, log_event
from concierge.models.conversation import TurnResponse
from concierge.services import twilio as twilio_service

logger = get_logger("concierge.channels.sms")


class TwilioSmsSender:
    """El cliente de Twilio es síncrono; cada envío corre en un hilo."""

    def __init__(
        self,
        *,
        from_number: str,
        client_factory: Callable[[], Client] = twilio_service.get_twilio_client,
    ) -> None:
        self._from_number = from_number
        self._client_factory = client_factory

    async def send(self, recipient: str, response: TurnResponse) -> None:
        client = self._client_factory()
        message = await asyncio.to_thread(
            client.messages.create,
            to=recipient,
            from_=self._from_number,
            body=response.content,
        )
        log_event(logger, "sms.sent", message_sid=getattr(message, "sid", None))
