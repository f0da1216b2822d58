"""HTTP middleware: request correlation, access logging, error logging and CORS."""

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware

from agent_platform.config import get_settings
from agent_platform.utils.logging import get_logger, log_error, log_request, set_request_id

logger = get_logger("middleware")
settings = get_settings()

REQUEST_ID_HEADER = "X-Request-ID"
USER_ID_HEADER = "X-User-ID"


def _is_event_stream(response: Response) -> bool:
    return response.headers.get("content-type", "").startswith("text/event-stream")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Adopt the gateway's X-Request-ID (or mint one) and echo it back."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        set_request_id(request_id)
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


class TimingMiddleware(BaseHTTPMiddleware):
    """
    Access log with handler time.

    Event streams keep running after their headers are sent, so for them the
    logged time is time-to-first-byte and no X-Process-Time header is added.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        streaming = _is_event_stream(response)
        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            user_id=request.headers.get(USER_ID_HEADER),
            streaming=streaming,
        )
        if not streaming:
            response.headers["X-Process-Time"] = f"{duration_ms:.2f}ms"
        return response


class ErrorLoggingMiddleware(BaseHTTPMiddleware):
    """Log anything that escapes the exception handlers, then re-raise."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as e:
            log_error(
                e,
                context={
                    "method": request.method,
                    "path": request.url.path,
                    "user_id": request.headers.get(USER_ID_HEADER),
                },
            )
            raise


def setup_cors_middleware(app: FastAPI) -> None:
    cors = settings.cors
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors.origins,
        allow_credentials=cors.allow_credentials,
        allow_methods=cors.allow_methods,
        allow_headers=cors.allow_headers,
        # Readable from browser scripts
        expose_headers=[REQUEST_ID_HEADER, "Content-Disposition"],
        max_age=cors.max_age,
    )
    logger.info(f"CORS configured for origins={cors.origins}")


def setup_middleware(app: FastAPI) -> None:
    """
    Register middleware. The last one added runs first on the way in, so the
    order of execution is CORS, RequestID, ErrorLogging, Timing. The request
    id is set before the inner middleware log.
    """
    app.add_middleware(TimingMiddleware)
    app.add_middleware(ErrorLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    setup_cors_middleware(app)
