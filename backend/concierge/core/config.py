"""Configuración central basada en variables de entorno."""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EXACT_PATTERNS: dict[str, str] = {
    "what are your hours": "faq.hours",
    "where are you located": "faq.location",
    "how much does it cost": "faq.pricing",
    "book appointment": "booking.create",
    "cancel appointment": "booking.cancel",
}


class Settings(BaseSettings):
    """Valores globales leídos desde `.env` o el entorno."""

    environment: str = "development"
    log_level: str | None = Field(
        default=None,
        description="Nivel de logging global (ej. debug, info, warning). Cuando no se define, usa un valor por ambiente.",
    )
    log_file_path: str | None = Field(
        default=None,
        description="Archivo principal de logs; sin valor sólo se escribe a stdout.",
    )
    request_log_skip_prefixes: tuple[str, ...] = Field(
        default=("/health", "/favicon", "/docs", "/openapi"),
        description="Prefijos de ruta para los que no se registrarán eventos de request.started/completed.",
    )
    tenant_base_domain: str | None = Field(
        default=None,
        description="Dominio base para resolver el tenant por subdominio (ej. chatbot.com).",
    )

    supabase_url: str | None = None
    supabase_service_role: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "CONCIERGE_SUPABASE_SERVICE_ROLE", "SUPABASE_SERVICE_ROLE_KEY", "SUPABASE_SERVICE_ROLE"
        ),
    )

    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_embedding_model: str = "text-embedding-3-small"
    rasa_url: str | None = None
    rasa_token: str | None = None
    dialogflow_project_id: str | None = None
    dialogflow_access_token: str | None = None
    dialogflow_language_code: str = "en"

    twilio_account_sid: str | None = None
    twilio_auth_token: str | None = None
    twilio_from_number: str | None = None
    twilio_validate_signature: bool = False

    session_ttl_seconds: int = Field(
        default=3600,
        description="Vigencia del puntero de sesión → conversación activa en caché.",
    )
    history_window: int = Field(default=10, description="Mensajes recientes incluidos en el contexto.")
    fast_provider_threshold: float = 0.8
    secondary_provider_threshold: float = 0.7
    clarification_threshold: float = 0.5
    provider_timeout_seconds: float = 8.0
    llm_timeout_seconds: float = 20.0
    knowledge_match_count: int = 3
    booking_slots: tuple[str, ...] = Field(
        default=("09:00", "10:00", "11:00", "12:00", "14:00", "15:00", "16:00", "17:00"),
        description="Horarios del día ofrecidos como alternativas cuando el solicitado está ocupado.",
    )
    booking_suggestion_count: int = 3
    exact_patterns: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_EXACT_PATTERNS))

    model_config = SettingsConfigDict(env_file=".env", env_prefix="CONCIERGE_", extra="allow")


settings = Settings()
