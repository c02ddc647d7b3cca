"""Error taxonomy and the JSON handlers that render it.

Every failure is resolved, at the point it is detected, into one of the
classes below and short-circuits the request. Handlers render a
``{"success": false, "message": ...}`` body; internal detail for unexpected
failures is only included when ``DEBUG`` is on.
"""

import logging
import traceback
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from calltracker.core.config import get_settings

log = logging.getLogger("calltracker.errors")


class AppError(Exception):
    """Base class for errors that map to a client response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Internal server error."

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        self.message = message or self.message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def extra(self) -> dict[str, Any]:
        """Additional fields merged into the response body."""
        return {}


class AuthenticationError(AppError):
    """Missing, invalid or expired credential. Never carries internal detail."""

    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Authentication required."


class AuthorizationError(AppError):
    """Valid principal, but insufficient permission/role or cross-tenant access."""

    status_code = status.HTTP_403_FORBIDDEN
    message = "Access denied."

    def __init__(self, message: str | None = None, *, required: str | None = None) -> None:
        self.required = required
        super().__init__(message)

    def extra(self) -> dict[str, Any]:
        return {"required": self.required} if self.required else {}


class LimitExceededError(AppError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(
        self,
        resource: str,
        current: int,
        limit: int,
        subscription_plan: str | None = None,
    ) -> None:
        self.resource = resource
        self.current = current
        self.limit = limit
        self.subscription_plan = subscription_plan
        super().__init__(
            f"{resource} limit exceeded. Current: {current}/{limit}. "
            "Please upgrade your subscription."
        )

    def extra(self) -> dict[str, Any]:
        return {
            "limit_info": {
                "resource": self.resource,
                "current": self.current,
                "limit": self.limit,
                "subscription_plan": self.subscription_plan,
            }
        }


class InvitationStateError(AppError):
    """Invitation operation attempted outside the state it requires."""

    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid or expired invitation."


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Validation failed."

    def __init__(self, message: str | None = None, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)

    def extra(self) -> dict[str, Any]:
        if self.field is None:
            return {}
        return {"errors": [{"field": self.field, "message": self.message}]}


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found."


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    message = "Conflict."


def _payload(message: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message}
    body.update(extra)
    return body


def register_exception_handlers(app: FastAPI) -> None:
    """Install the JSON error handlers on ``app``."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        level = logging.ERROR if exc.status_code >= 500 else logging.INFO
        log.log(
            level,
            "%s %s %s -> %s: %s",
            type(exc).__name__,
            request.method,
            request.url.path,
            exc.status_code,
            exc.message,
        )
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
        return JSONResponse(
            status_code=exc.status_code,
            content=_payload(exc.message, **exc.extra()),
            headers=headers,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        return JSONResponse(
            status_code=exc.status_code,
            content=_payload(message),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        log.info("Validation failed %s %s: %s", request.method, request.url.path, errors)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=_payload("Validation failed.", errors=errors),
        )

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception) -> JSONResponse:
        log.exception("Unhandled exception %s %s -> 500", request.method, request.url.path)
        extra: dict[str, Any] = {}
        if get_settings().debug:
            extra["error"] = repr(exc)
            extra["traceback"] = traceback.format_exception(exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_payload("Internal server error.", **extra),
        )
