"""Dependencias reutilizables para el webhook de SMS."""

from fastapi import HTTPException, Request
from pydantic import ValidationError

from concierge.core.config import settings
from concierge.core.logging import get_logger
from concierge.services import twilio as twilio_service

from .schemas import InboundSms

logger = get_logger("concierge.channels.sms")


async def read_inbound_sms(request: Request) -> InboundSms:
    """Lee el formulario de Twilio y, si está habilitado, valida `X-Twilio-Signature`."""
    form = await request.form()
    params = {key: str(value) for key, value in form.items()}

    if settings.twilio_validate_signature:
        signature = request.headers.get("x-twilio-signature", "")
        validator = twilio_service.get_request_validator()
        if not validator.validate(str(request.url), params, signature):
            logger.warning("sms.invalid_signature", extra={"path": request.url.path})
            raise HTTPException(status_code=403, detail="Invalid Twilio signature")

    try:
        return InboundSms.model_validate(params)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail="Missing required fields") from exc
