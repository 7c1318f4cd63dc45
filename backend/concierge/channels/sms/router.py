"""Endpoints del canal SMS (Twilio)."""

from fastapi import APIRouter, Depends

from concierge.api.deps import get_services, tenant_from_path
from concierge.bootstrap import Services
from concierge.models.conversation import Tenant

from . import service
from .deps import read_inbound_sms
from .schemas import InboundSms, WebhookAck

router = APIRouter(prefix="/sms", tags=["sms"])


@router.post(
    "/{tenant_identifier}/webhook",
    response_model=WebhookAck,
    summary="Webhook de recepción SMS",
)
async def sms_webhook(
    inbound: InboundSms = Depends(read_inbound_sms),
    tenant: Tenant = Depends(tenant_from_path),
    services: Services = Depends(get_services),
) -> WebhookAck:
    """Procesa un SMS entrante; la respuesta se envía por la API de Twilio."""
    status = await service.handle_incoming_message(services, tenant, inbound)
    return WebhookAck(status=status)
