"""Esquemas Pydantic para payloads de SMS (Twilio)."""

from pydantic import BaseModel, Field


class InboundSms(BaseModel):
    """Campos relevantes del formulario que Twilio envía al webhook."""

    from_: str = Field(..., alias="From")
    to: str | None = Field(default=None, alias="To")
    body: str = Field(..., alias="Body")
    message_sid: str | None = Field(default=None, alias="MessageSid")

    model_config = {"populate_by_name": True}


class WebhookAck(BaseModel):
    status: str
