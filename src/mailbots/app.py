"""
FastAPI application serving a bot's webhook route.
"""
import json
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from .middleware import LoggingMiddleware
from .shared.config import API_VERSION, get_config_summary, validate_configuration
from .webhooks.dispatcher import GENERIC_ERROR_MESSAGE
from .webhooks.errors import WebhookValidationError
from .webhooks.security import validate_webhook

if TYPE_CHECKING:
    from .mailbots import MailBots

logger = logging.getLogger(__name__)


def _error_body(message: str) -> dict:
    return {"status": "error", "message": message}


def create_app(bot: "MailBots") -> FastAPI:
    """
    Create and configure the FastAPI application for ``bot``.

    Returns:
        Configured FastAPI application instance
    """
    settings = bot.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Log configuration on startup; let in-flight dispatches finish on shutdown."""
        logger.info("Starting MailBot", extra={"config": get_config_summary(settings)})
        for problem in validate_configuration(settings):
            logger.warning(f"Configuration problem: {problem}")

        yield

        logger.info("Shutting down MailBot", extra={"pending_dispatches": bot.dispatcher.pending})
        await bot.dispatcher.drain()
        logger.info("MailBot shutdown completed")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.bot = bot
    app.add_middleware(LoggingMiddleware)

    @app.post(settings.webhook_route)
    async def receive_webhook(request: Request):
        """Validate, parse and dispatch one webhook."""
        raw_body = await request.body()

        if settings.should_verify_signatures():
            try:
                validate_webhook(
                    request.headers,
                    raw_body,
                    settings.client_secret,
                    tolerance=settings.security.webhook_timestamp_tolerance,
                )
            except WebhookValidationError as e:
                logger.warning("Webhook validation failed", extra={"reason": str(e)})
                return JSONResponse(
                    status_code=status.HTTP_403_FORBIDDEN,
                    content=_error_body("Webhook validation failed"),
                )

        try:
            payload = json.loads(raw_body) if raw_body else None
        except ValueError:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=_error_body("Webhook body is not valid JSON"),
            )
        if not isinstance(payload, dict):
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=_error_body("Webhook body must be a JSON object"),
            )

        envelope = await bot.handle_webhook(
            payload,
            request=request,
            request_id=getattr(request.state, "request_id", None),
        )
        return JSONResponse(content=envelope.body, status_code=envelope.response_status)

    @app.get("/health")
    async def health():
        """Liveness plus dispatcher statistics."""
        return {
            "status": "healthy",
            "service": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment.value,
            "listeners": {
                "single_fire": len(bot.registry.single_fire),
                "multi_fire": len(bot.registry.multi_fire),
            },
            "pending_dispatches": bot.dispatcher.pending,
            "dispatcher": bot.dispatcher.stats.to_dict(),
        }

    # A failing error handler is the only thing that escapes dispatch
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler for unhandled errors."""
        logger.error(f"Unhandled exception: {exc}", exc_info=exc)

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "version": API_VERSION,
                "webhook": {"status": "failed", "message": GENERIC_ERROR_MESSAGE},
            },
        )

    return app
