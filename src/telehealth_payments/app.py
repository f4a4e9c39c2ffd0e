"""
FastAPI application factory for the payments service
"""
import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import __version__
from .config import config
from .exceptions import (
    payment_error_handler,
    http_exception_handler,
    validation_exception_handler,
    general_exception_handler,
)
from .logging_config import RequestIDMiddleware, setup_logging
from .payment_errors import PaymentError
from .payment_routes import router as payment_router, subscription_router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the application: logging, middleware, routes and error handlers"""
    setup_logging(env=config.ENV, log_level=config.LOG_LEVEL)

    app = FastAPI(title="Telehealth Payments API", version=__version__)

    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(PaymentError, payment_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.include_router(payment_router)
    app.include_router(subscription_router)

    @app.get("/health")
    async def health():
        """Health check endpoint"""
        return {"status": "healthy", "service": "telehealth-payments", "env": config.ENV}

    if config.test_webhook_enabled:
        logger.warning("Unsigned test webhook is enabled at /api/payments/test-webhook")

    return app
