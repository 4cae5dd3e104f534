"""
Error types raised by the service layer.

Every error is rendered by the handlers registered in ``foodshare.app`` as the
uniform ``{"success": false, "message": ...}`` envelope.
"""

from __future__ import annotations


class FoodShareError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class NotFoundError(FoodShareError):
    status_code = 404


class NotAuthorizedError(FoodShareError):
    status_code = 403


class AuthenticationError(FoodShareError):
    status_code = 401


class ReservationConflictError(FoodShareError):
    # State conflicts share the 400 status with validation failures.
    status_code = 400


class ValidationFailedError(FoodShareError):
    status_code = 400
