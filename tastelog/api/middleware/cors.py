"""
CORS for the web client. The session cookie rides on credentialed requests,
so origins come from CORS_ORIGINS and are never "*".
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tastelog.api.config import settings

ALLOWED_METHODS = ["GET", "POST", "PATCH", "DELETE", "OPTIONS"]
ALLOWED_HEADERS = ["Accept", "Content-Type", "X-Request-ID"]


def setup_cors(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=ALLOWED_METHODS,
        allow_headers=ALLOWED_HEADERS,
        expose_headers=["X-Request-ID", "Retry-After"],
        max_age=600,
    )
