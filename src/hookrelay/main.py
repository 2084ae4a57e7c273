"""HookRelay - FastAPI application.

Webhook dispatch service: owners register HTTP callbacks for platform
events and receive signed JSON deliveries with retries.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .core.logging_config import setup_logging
from .core.settings import DispatchSettings, get_settings
from .webhooks import router as webhooks_router
from .webhooks.service import WebhookService

__version__ = "0.1.0"


def create_app(
    settings: Optional[DispatchSettings] = None,
    service: Optional[WebhookService] = None,
) -> FastAPI:
    """Build the application.

    Args:
        settings: Dispatch settings; read from the environment when omitted.
        service: Pre-built webhook service (tests inject one with a mock
            HTTP transport). Created on startup when omitted.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_file)
        app.state.webhooks = service or WebhookService(settings=settings)
        try:
            yield
        finally:
            await app.state.webhooks.close()

    app = FastAPI(
        title="HookRelay",
        description="Event-driven webhook dispatch with signed deliveries and retries.",
        version=__version__,
        lifespan=lifespan,
    )
    app.include_router(webhooks_router)

    @app.get("/")
    def root() -> dict[str, str]:
        """Root endpoint returning welcome message.

        Returns:
            dict: Status and welcome message.
        """
        return {
            "status": "ok",
            "message": "Welcome to HookRelay",
            "version": __version__,
            "docs": "/docs",
        }

    @app.get("/health")
    def health() -> dict[str, str]:
        """Health check endpoint for monitoring and load balancers.

        Returns:
            dict: Health status indicator.
        """
        return {"status": "healthy"}

    return app


app = create_app()
