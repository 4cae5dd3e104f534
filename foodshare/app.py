"""
FastAPI application entry point for the FoodShare backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from foodshare.config import get_settings
from foodshare.errors import FoodShareError
from foodshare.responses import (
    handle_foodshare_error,
    handle_http_exception,
    handle_validation_error,
)
from foodshare.routes import router


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title="FoodShare Backend (FastAPI)", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Failures outside the routes (unknown paths, websocket setup) share the envelope.
    app.add_exception_handler(FoodShareError, handle_foodshare_error)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.include_router(router, prefix=settings.api_prefix)

    @app.get("/")
    def health():
        return {"success": True, "message": "FoodShare API is running"}

    return app


app = create_app()
