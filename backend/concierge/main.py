"""Punto de entrada principal para la aplicación FastAPI."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from concierge.api.routes.conversations import router as conversations_router
from concierge.api.routes.health import router as health_router
from concierge.bootstrap import Services, build_services
from concierge.channels.sms.router import router as sms_router
from concierge.channels.webchat.router import router as webchat_router
from concierge.core.config import settings
from concierge.core.logging import configure_logging, get_logger, resolve_log_level
from concierge.core.middleware import RequestLoggingMiddleware


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    log = get_logger("concierge")
    if getattr(app.state, "services", None) is None:
        app.state.services = build_services(settings)
    log.info("app.started", extra={"environment": settings.environment})
    yield
    await app.state.services.events.drain()
    log.info("app.stopped")


def create_app(services: Services | None = None) -> FastAPI:
    """Crea y configura la instancia de FastAPI.

    `services` permite inyectar colaboradores ya construidos; si se omite se
    construyen desde la configuración al arrancar.
    """
    default_log_level = logging.DEBUG if settings.environment != "production" else logging.INFO
    log_level = resolve_log_level(settings.log_level, default=default_log_level)
    per_logger_files: dict[str, str] = {}
    if settings.log_file_path:
        log_dir = Path(settings.log_file_path).parent
        per_logger_files = {
            "concierge.request": str(log_dir / "request.log"),
            "concierge.pipeline": str(log_dir / "pipeline.log"),
            "concierge.channels": str(log_dir / "channels.log"),
        }

    configure_logging(
        level=log_level,
        log_file=settings.log_file_path,
        per_logger_files=per_logger_files,
    )

    app = FastAPI(title="Concierge API", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Se ajustará por ambiente
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    app.include_router(health_router)
    app.include_router(conversations_router)
    app.include_router(webchat_router)
    app.include_router(sms_router)

    @app.get("/info", tags=["info"])
    def info() -> dict[str, str | None]:
        return {
            "environment": settings.environment,
            "model": settings.openai_model,
        }

    return app


app = create_app()
