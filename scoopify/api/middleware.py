"""
Middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

import structlog

from scoopify.core.config import settings
from scoopify.core.exceptions import (
    AuthenticationError, AuthorizationError, ConflictError, ExternalServiceError,
    InvariantViolation, NotFoundError, ScoopifyException, ValidationError
)
from scoopify.core.logging import bind_context, clear_context
from scoopify.api.schemas.common import create_error_response

logger = structlog.get_logger(__name__)

# Most specific first
STATUS_BY_EXCEPTION = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AuthenticationError, status.HTTP_401_UNAUTHORIZED),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (ExternalServiceError, status.HTTP_502_BAD_GATEWAY),
    (InvariantViolation, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def status_for(exc: ScoopifyException) -> int:
    for exc_type, status_code in STATUS_BY_EXCEPTION:
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        clear_context()
        bind_context(request_id=request.headers.get("x-request-id") or uuid.uuid4().hex)

        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                process_time=time.perf_counter() - start_time,
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content=create_error_response(
                    "INTERNAL_SERVER_ERROR", "An internal server error occurred"
                )
            )

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=process_time,
        )
        return response


async def scoopify_exception_handler(request: Request, exc: ScoopifyException) -> JSONResponse:
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.info
    log("Request rejected", path=request.url.path, code=exc.code, message=exc.message)
    return JSONResponse(
        status_code=status_code,
        content=create_error_response(exc.code, exc.message, exc.details)
    )


def add_middleware(app: FastAPI) -> None:
    """Register middleware and domain exception handlers."""
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ScoopifyException, scoopify_exception_handler)
