"""Cliente centralizado para Twilio."""

from functools import lru_cache

from twilio.request_validator import RequestValidator
from twilio.rest import Client

from concierge.core.config import settings


@lru_cache(maxsize=1)
def get_twilio_client() -> Client:
    """Retorna el cliente reutilizable de Twilio."""
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        msg = "Twilio credentials are not configured"
        raise RuntimeError(msg)
    return Client(settings.twilio_account_sid, settings.twilio_auth_token)


def get_request_validator() -> RequestValidator:
    """Validador de firmas `X-Twilio-Signature` para webhooks entrantes."""
    if not settings.twilio_auth_token:
        msg = "TWILIO_AUTH_TOKEN is not configured"
        raise RuntimeError(msg)
    return RequestValidator(settings.twilio_auth_token)
