"""Servicios específicos para SMS vía Twilio."""

from __future__ import annotations

from concierge.bootstrap import Services
from concierge.core.errors import DEFAULT_APOLOGY, TurnProcessingError
from concierge.core.logging import get_logger, log_event
from concierge.models.conversation import Tenant, TurnResponse

from .schemas import InboundSms

logger = get_logger("concierge.channels.sms")

CHANNEL = "sms"


async def handle_incoming_message(services: Services, tenant: Tenant, inbound: InboundSms) -> str:
    """Procesa el SMS como un turno; la respuesta sale por el sender de `sms`."""
    log_event(
        logger,
        "sms.received",
        tenant_id=tenant.id,
        message_sid=inbound.message_sid,
    )
    try:
        await services.orchestrator.process_turn(
            tenant.id, CHANNEL, inbound.body, customer_id=inbound.from_
        )
    except TurnProcessingError:
        try:
            await services.delivery.send(
                CHANNEL, inbound.from_, TurnResponse(content=DEFAULT_APOLOGY)
            )
        except Exception:
            logger.exception("sms.apology_failed", extra={"tenant_id": tenant.id})
        return "failed"
    return "processed"
