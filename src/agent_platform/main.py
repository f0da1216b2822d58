"""FastAPI application entry point.

This module creates and configures the FastAPI application instance with:
- Application metadata and OpenAPI documentation
- Middleware (CORS, RequestID, Timing, ErrorLogging)
- Exception handlers (APIException, HTTPException, ValidationError, general)
- API routers (v1)
- Health check endpoints (/health, /ready)
- Startup/shutdown lifecycle management (database, vector store)
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from agent_platform.config import get_settings
from agent_platform.database import check_connection, close_db, init_db
from agent_platform.exceptions import APIException
from agent_platform.middleware import setup_middleware
from agent_platform.services.vector_store_service import get_vector_store
from agent_platform.utils.logging import get_logger, log_error, setup_logging

# Set up logging first
setup_logging()
logger = get_logger("main")

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    The vector store and embedding clients connect lazily on first use, so only
    the database pool is opened here.
    """
    logger.info("Starting agent platform service...")
    try:
        await init_db()
        logger.info("Agent platform service started successfully")
        yield
    except Exception as e:
        logger.error(f"Failed to start agent platform service: {e}", exc_info=True)
        raise
    finally:
        logger.info("Shutting down agent platform service...")
        try:
            await close_db()
            logger.info("Agent platform service shut down successfully")
        except Exception as e:
            logger.error(f"Error during shutdown: {e}", exc_info=True)


app = FastAPI(
    title="Agent Platform API",
    description=(
        "Knowledge bases with hybrid search, and content generation against "
        "Dify and FastGPT agents with live progress streaming."
    ),
    version="0.1.0",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    debug=settings.debug,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "knowledge", "description": "Knowledge bases, documents, chunks and search"},
        {"name": "generation", "description": "Generation jobs and their event stream"},
        {"name": "history", "description": "Generation history, export and cleanup"},
        {"name": "agents", "description": "Agent connectivity checks"},
        {"name": "jobs", "description": "Internal scheduled jobs"},
        {"name": "v1", "description": "API v1 information and metadata"},
    ],
)

setup_middleware(app)

from agent_platform.api.v1.router import router as v1_router

app.include_router(v1_router)


def error_response(
    status_code: int, message: str, code: str, details: Optional[Dict[str, Any]] = None
) -> JSONResponse:
    """JSON error envelope shared by every handler (same shape as `APIException.to_dict`)."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": message,
                "code": code,
                "status_code": status_code,
                "details": details or {},
            }
        },
    )


def _request_context(request: Request, **extra: Any) -> Dict[str, Any]:
    return {
        "method": request.method,
        "path": request.url.path,
        "user_id": request.headers.get("X-User-ID"),
        **extra,
    }


@app.exception_handler(APIException)
async def api_exception_handler(request: Request, exc: APIException) -> JSONResponse:
    """Domain errors: caller mistakes log as warnings, upstream and server faults as errors."""
    context = _request_context(request, status_code=exc.status_code, code=exc.code)
    if exc.status_code < 500:
        logger.warning(f"{exc.code}: {exc.message}", extra={"extra_fields": context})
    else:
        log_error(exc, context=context)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Routing-level errors (unknown path, wrong method)."""
    logger.warning(
        f"HTTP {exc.status_code}: {request.method} {request.url.path}",
        extra={"extra_fields": _request_context(request, status_code=exc.status_code)},
    )
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return error_response(exc.status_code, str(exc.detail), code)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Body/query validation failures, flattened to field paths."""
    errors = [
        {
            "field": ".".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg"),
            "type": error.get("type"),
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"Validation failed: {request.method} {request.url.path}",
        extra={"extra_fields": _request_context(request, validation_errors=errors)},
    )
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        "VALIDATION_ERROR",
        {"validation_errors": errors},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    log_error(exc, context=_request_context(request, unhandled=True))

    if settings.is_production:
        return error_response(500, "An internal server error occurred", "INTERNAL_SERVER_ERROR")
    return error_response(
        500, str(exc), "INTERNAL_SERVER_ERROR", {"exception_type": type(exc).__name__}
    )


@app.get("/health")
async def health_check():
    """Liveness: the process is up. Dependencies are not contacted."""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
        "embedding_fallback_configured": settings.embedding.is_configured,
    }


@app.get("/ready")
async def readiness_check():
    """Readiness: the database and the vector store both answer."""
    checks = {
        "database": "connected" if await check_connection() else "disconnected",
        "vector_store": "connected" if await get_vector_store().ping() else "disconnected",
    }
    ready = all(value == "connected" for value in checks.values())
    body = {
        "status": "ready" if ready else "not_ready",
        "app_name": settings.app_name,
        "environment": settings.environment.value,
        **checks,
    }
    if not ready:
        logger.warning(f"Readiness check failed: {checks}")
        return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content=body)
    return body


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    uvicorn.run(
        "agent_platform.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.server.reload and settings.is_development,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
