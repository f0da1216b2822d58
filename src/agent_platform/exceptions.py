"""
Application errors.

Each error maps to one HTTP status and a stable machine-readable `code`.
Keyword context passed to a constructor (`collection=`, `agent_type=`, ...)
is merged into `details`, skipping values that are None, and the exception
handlers in `main` render everything through `to_dict`.
"""

from typing import Any, Dict, Optional


class APIException(Exception):
    """Base class for every error the API reports to callers."""

    status_code: int = 500
    code: Optional[str] = None
    default_message: str = "Internal error"

    def __init__(
        self,
        message: Optional[str] = None,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        **context: Any,
    ):
        self.message = message or self.default_message
        self.status_code = status_code or type(self).status_code
        self.code = code or type(self).code or type(self).__name__
        self.details = {
            **(details or {}),
            **{key: value for key, value in context.items() if value is not None},
        }
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class AuthenticationError(APIException):
    """Caller identity missing or invalid."""

    status_code = 401
    code = "AUTHENTICATION_ERROR"
    default_message = "Authentication failed"


class ValidationError(APIException):
    """Malformed caller input: empty query, unsupported file type, bad chunk config."""

    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"

    def __init__(self, message: Optional[str] = None, errors: Any = None, **kwargs: Any):
        super().__init__(message, validation_errors=errors, **kwargs)


class ParsingError(APIException):
    """An uploaded document could not be read. Pass `file_type=` for context."""

    status_code = 422
    code = "PARSING_ERROR"
    default_message = "Document parsing failed"


class NotFoundError(APIException):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(
        self, resource: str = "Resource", resource_id: Optional[str] = None, **kwargs: Any
    ):
        message = f"{resource} not found"
        if resource_id:
            message += f" with id: {resource_id}"
        super().__init__(message, resource=resource, resource_id=resource_id, **kwargs)


class DatabaseError(APIException):
    status_code = 500
    code = "DATABASE_ERROR"
    default_message = "Database operation failed"


class ExternalServiceError(APIException):
    """A third-party knowledge base or similar HTTP dependency failed."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, message: Optional[str] = None, **kwargs: Any):
        super().__init__(
            message or f"External service '{service}' unavailable", service=service, **kwargs
        )


class EmbeddingError(APIException):
    """Embedding endpoint unreachable or answered badly. Pass `model=` for context."""

    status_code = 502
    code = "EMBEDDING_ERROR"
    default_message = "Embedding generation failed"


class VectorStoreError(APIException):
    """A Qdrant operation failed. Pass `collection=` for context."""

    status_code = 502
    code = "VECTOR_STORE_ERROR"
    default_message = "Vector store operation failed"


class GenerationError(APIException):
    """An agent call failed. Pass `agent_type=` and `upstream_status=` for context."""

    status_code = 502
    code = "GENERATION_ERROR"
    default_message = "Content generation failed"


class StreamChunkParseError(APIException):
    """One malformed fragment in an upstream stream. Callers skip it and read on."""

    status_code = 502
    code = "STREAM_CHUNK_PARSE_ERROR"
    default_message = "Malformed stream chunk"

    def __init__(
        self, message: Optional[str] = None, raw: Optional[str] = None, **kwargs: Any
    ):
        super().__init__(message, raw=raw[:200] if raw is not None else None, **kwargs)


class RelayConnectionError(APIException):
    """The browser side of a generation stream went away."""

    status_code = 499
    code = "RELAY_CONNECTION_ERROR"
    default_message = "Stream connection closed"
