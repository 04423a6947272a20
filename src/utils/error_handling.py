"""
Centralized Error Handling and Logging System
Structured error logs with trace ids, redaction of sensitive fields and a
single JSON error envelope for every failed request.
"""

import json
import logging
import traceback
import uuid
from datetime import datetime
from typing import Any, Dict, Optional, Union
from contextvars import ContextVar

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from services.base_service import ErrorType, ServiceResult

# Context variables for request tracing
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
endpoint_context_var: ContextVar[str] = ContextVar('endpoint_context', default='')

logger = logging.getLogger(__name__)

# HTTP status for each failed ServiceResult kind
ERROR_STATUS_CODES = {
    ErrorType.NOT_FOUND: 404,
    ErrorType.VALIDATION_ERROR: 400,
    ErrorType.AUTHORIZATION_ERROR: 403,
    ErrorType.CONFLICT_ERROR: 409,
    ErrorType.EXTERNAL_SERVICE_ERROR: 502,
    ErrorType.SERVER_ERROR: 500,
}


class ErrorHandlingConfig:
    """Centralized configuration for error handling behavior"""

    # Security settings
    SANITIZE_SENSITIVE_FIELDS = True
    SENSITIVE_FIELD_PATTERNS = [
        'password', 'token', 'key', 'secret', 'authorization',
        'auth', 'bearer', 'credential', 'bank', 'account_number',
        'routing_number', 'iban', 'signature'
    ]

    # Logging settings
    LOG_REQUEST_BODIES = True
    LOG_HEADERS = True
    MAX_BODY_LOG_SIZE = 5000  # Truncate large bodies

    # Error response settings
    INCLUDE_TRACE_ID = True
    INCLUDE_TIMESTAMP = True

    @classmethod
    def is_sensitive_field(cls, field_name: str) -> bool:
        """Check if a field contains sensitive data"""
        field_lower = field_name.lower()
        return any(pattern in field_lower for pattern in cls.SENSITIVE_FIELD_PATTERNS)

    @classmethod
    def sanitize_data(cls, data: Union[Dict, str, Any]) -> Any:
        """Recursively sanitize sensitive data from logs"""
        if not cls.SANITIZE_SENSITIVE_FIELDS:
            return data

        if isinstance(data, dict):
            return {
                key: "***REDACTED***" if cls.is_sensitive_field(key) else cls.sanitize_data(value)
                for key, value in data.items()
            }
        elif isinstance(data, list):
            return [cls.sanitize_data(item) for item in data]
        elif isinstance(data, str):
            # Request bodies arrive as raw JSON text
            try:
                parsed = json.loads(data)
            except ValueError:
                parsed = None
            if isinstance(parsed, (dict, list)):
                return cls.sanitize_data(parsed)
            if len(data) > cls.MAX_BODY_LOG_SIZE:
                return data[:cls.MAX_BODY_LOG_SIZE] + "...[TRUNCATED]"
            return data
        else:
            return data


class APIError(HTTPException):
    """HTTPException that remembers which ErrorType produced it"""

    def __init__(self, status_code: int, detail: str, error_type: ErrorType):
        super().__init__(status_code=status_code, detail=detail)
        self.error_type = error_type


def raise_for_result(result: ServiceResult) -> ServiceResult:
    """
    Translate a failed ServiceResult into an HTTP error

    Args:
        result: Outcome of a service call

    Returns:
        The same result when it succeeded

    Raises:
        APIError: With the status mapped from the result's error type
    """
    if result.success:
        return result
    error_type = result.error_type or ErrorType.SERVER_ERROR
    raise APIError(ERROR_STATUS_CODES.get(error_type, 500), result.error or "Request failed", error_type)


class StructuredLogger:
    """Structured logging with consistent format and context"""

    @staticmethod
    def log_error(
        error_type: str,
        message: str,
        request: Optional[Request] = None,
        exception: Optional[Exception] = None,
        extra_context: Optional[Dict] = None,
        include_traceback: bool = True
    ) -> str:
        """Log structured error with full context; returns the trace id"""

        # Reuse the request's trace id so the log line matches X-Trace-ID
        trace_id = request_id_var.get('') or str(uuid.uuid4())[:8]

        log_entry = {
            "timestamp": datetime.utcnow().isoformat(),
            "trace_id": trace_id,
            "error_type": error_type,
            "message": message,
            "level": "ERROR"
        }

        if request:
            headers = dict(request.headers)
            log_entry["request"] = {
                "method": request.method,
                "path": request.url.path,
                "query_params": dict(request.query_params),
                "headers": ErrorHandlingConfig.sanitize_data(headers) if ErrorHandlingConfig.LOG_HEADERS else {},
                "client_ip": request.client.host if request.client else None,
                "user_agent": headers.get("user-agent", "unknown")
            }

        if exception:
            log_entry["exception"] = {
                "type": type(exception).__name__,
                "details": str(exception),
                "module": getattr(exception, '__module__', 'unknown')
            }

            if include_traceback:
                log_entry["exception"]["traceback"] = traceback.format_exc()

        if extra_context:
            log_entry["context"] = ErrorHandlingConfig.sanitize_data(extra_context)

        endpoint_context = endpoint_context_var.get('')
        if endpoint_context:
            log_entry["endpoint_context"] = endpoint_context

        logger.error(json.dumps(log_entry, indent=2, default=str))

        return trace_id


def _captured_body(request: Request) -> Optional[str]:
    body = getattr(request.state, 'captured_body', None)
    if not body:
        return None
    try:
        return body.decode('utf-8')
    except UnicodeDecodeError:
        return "DECODE_ERROR"


def error_envelope(message: str, error: str, trace_id: Optional[str], **extra) -> Dict[str, Any]:
    """Body shared by every error response"""
    content = {"success": False, "message": message, "error": error}
    content.update(extra)
    if ErrorHandlingConfig.INCLUDE_TRACE_ID and trace_id:
        content["trace_id"] = trace_id
    if ErrorHandlingConfig.INCLUDE_TIMESTAMP:
        content["timestamp"] = datetime.utcnow().isoformat()
    return content


# Global Exception Handlers
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions with logging"""
    error_type = getattr(exc, "error_type", None)
    error = error_type.value if error_type else f"HTTP {exc.status_code}"

    # Client errors are logged only when request bodies are captured
    should_log = exc.status_code >= 500 or (exc.status_code >= 400 and ErrorHandlingConfig.LOG_REQUEST_BODIES)

    trace_id = request_id_var.get('') or None
    if should_log:
        body_str = _captured_body(request)
        trace_id = StructuredLogger.log_error(
            f"http_{exc.status_code}",
            f"HTTP {exc.status_code}: {exc.detail}",
            request=request,
            exception=exc,
            extra_context={
                "status_code": exc.status_code,
                "request_body": ErrorHandlingConfig.sanitize_data(body_str) if body_str else None
            },
            include_traceback=exc.status_code >= 500
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(str(exc.detail), error, trace_id),
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle FastAPI validation errors (HTTP 422)"""
    body_str = _captured_body(request)

    validation_details = []
    for error in exc.errors():
        validation_details.append({
            "field": " -> ".join(str(loc) for loc in error.get("loc", [])),
            "message": error.get("msg", "Unknown validation error"),
            "type": error.get("type", "unknown")
        })

    trace_id = StructuredLogger.log_error(
        "validation_error_422",
        f"Request validation failed: {len(validation_details)} validation errors",
        request=request,
        exception=exc,
        extra_context={
            "validation_errors": validation_details,
            "request_body": ErrorHandlingConfig.sanitize_data(body_str) if body_str else None
        },
        include_traceback=False
    )

    return JSONResponse(
        status_code=422,
        content=error_envelope(
            "Request validation failed",
            ErrorType.VALIDATION_ERROR.value,
            trace_id,
            detail=validation_details
        )
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle all other exceptions"""
    body_str = _captured_body(request)

    trace_id = StructuredLogger.log_error(
        "internal_server_error",
        f"Unhandled exception: {str(exc)}",
        request=request,
        exception=exc,
        extra_context={
            "request_body": ErrorHandlingConfig.sanitize_data(body_str) if body_str else None
        },
        include_traceback=True
    )

    # Internal details stay in the log
    return JSONResponse(
        status_code=500,
        content=error_envelope("An unexpected error occurred", ErrorType.SERVER_ERROR.value, trace_id)
    )


def setup_error_handling(app):
    """Register the exception handlers on a FastAPI app"""
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    logger.info("Centralized error handling initialized")


def set_endpoint_context(context: str):
    """Set context for current endpoint (call at start of endpoint functions)"""
    endpoint_context_var.set(context)
