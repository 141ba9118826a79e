"""CORS for the parent dashboard and the child app."""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskbuddy.config import Settings

# Headers the web apps read back: request correlation, rate-limit budget
# and the Retry-After hint on 429s.
EXPOSED_HEADERS = ["X-Request-Id", "X-RateLimit-Remaining", "X-RateLimit-Limit", "Retry-After"]


def setup_cors(app: FastAPI, settings: Settings) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=["Content-Type", "Authorization", "X-Request-Id"],
        expose_headers=EXPOSED_HEADERS,
    )
