from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from helpdesk.api.routes import direct_messages, realtime
from helpdesk.core.config import get_settings
from helpdesk.core.database import db
from helpdesk.core.logging import configure_logging, log_error, log_info
from helpdesk.security.request_logger import RequestLoggingMiddleware
from helpdesk.services import direct_messages as dm_service
from helpdesk.services.direct_message_hub import build_realtime_services

tags_metadata = [
    {
        "name": "Direct Messages",
        "description": "Staff-to-staff messaging with attachments, read receipts and realtime pushes.",
    },
    {
        "name": "Realtime",
        "description": "Websocket channel for presence, typing indicators and message events.",
    },
]


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        description="Helpdesk direct messaging API with realtime presence and delivery.",
        openapi_tags=tags_metadata,
    )
    # One registry per application; presence is rebuilt as clients reconnect.
    app.state.realtime = build_realtime_services(dm_service.recent_conversations_payload)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[str(origin) for origin in settings.allowed_origins] or ["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware, exempt_paths=("/health",))

    @app.on_event("startup")
    async def on_startup() -> None:
        configure_logging()
        try:
            await db.connect()
            await db.run_migrations()
        except Exception as exc:
            log_error("Database startup failed", error=str(exc))
            raise
        log_info("Application startup complete", environment=settings.environment)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await db.disconnect()
        log_info("Application shutdown")

    @app.get("/health", include_in_schema=False)
    async def health() -> dict[str, object]:
        online = await app.state.realtime.registry.get_online_identities()
        return {
            "status": "ok",
            "database": db.is_connected(),
            "online_users": len(online),
        }

    app.include_router(direct_messages.router)
    app.include_router(realtime.router)
    return app


app = create_app()
