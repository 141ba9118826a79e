"""Middleware registration."""

from fastapi import FastAPI

from taskbuddy.config import Settings
from taskbuddy.middleware.cors import setup_cors
from taskbuddy.middleware.error_handler import setup_error_handlers
from taskbuddy.middleware.logging import setup_logging
from taskbuddy.middleware.rate_limit import RateLimitMiddleware
from taskbuddy.middleware.request_id import RequestIdMiddleware


def setup_middleware(app: FastAPI, settings: Settings) -> None:
    """Logging and error handlers first, then the middleware stack.

    Starlette runs middleware in reverse-add order: CORS wraps everything
    (including the limiter's 429s), and the request id is bound before the
    limiter logs or rejects anything.
    """
    setup_logging(settings)
    setup_error_handlers(app)
    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            requests_per_window=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window_seconds,
        )
    app.add_middleware(RequestIdMiddleware)
    setup_cors(app, settings)
