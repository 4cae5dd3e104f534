"""
Uniform JSON envelope for failures and the route class that applies it.
"""

from __future__ import annotations

import logging
from typing import Callable

from fastapi import HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute
from starlette.exceptions import HTTPException as StarletteHTTPException

from foodshare.errors import FoodShareError

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code, content={"success": False, "message": message}
    )


def format_validation_errors(exc: RequestValidationError) -> str:
    messages = []
    for error in exc.errors():
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        prefix = f"{'.'.join(loc)}: " if loc else ""
        messages.append(f"{prefix}{error.get('msg', 'Invalid value')}")
    return "; ".join(messages) or "Invalid request"


def handle_foodshare_error(request: Request, exc: FoodShareError) -> JSONResponse:
    if exc.status_code in (401, 403):
        logger.warning("%s %s denied: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.message)


def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(400, format_validation_errors(exc))


def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail))


class ErrorBoundaryRoute(APIRoute):
    """
    Route class that turns any failure raised while handling a request into the
    ``{"success": false, "message": ...}`` envelope. Unexpected errors are
    reported with status 400 and their message verbatim.
    """

    def get_route_handler(self) -> Callable:
        original_route_handler = super().get_route_handler()

        async def route_handler(request: Request) -> Response:
            try:
                return await original_route_handler(request)
            except FoodShareError as exc:
                return handle_foodshare_error(request, exc)
            except RequestValidationError as exc:
                return handle_validation_error(request, exc)
            except HTTPException as exc:
                return handle_http_exception(request, exc)
            except Exception as exc:
                logger.exception("Unhandled error on %s %s", request.method, request.url.path)
                return error_response(400, str(exc) or exc.__class__.__name__)

        return route_handler
