"""
Request context middleware: trace ids and request body capture for error logs
"""

import logging
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from utils.error_handling import ErrorHandlingConfig, StructuredLogger, request_id_var

logger = logging.getLogger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns each request a short trace id, echoed back as X-Trace-ID"""

    async def dispatch(self, request: Request, call_next):
        trace_id = str(uuid.uuid4())[:8]
        request_id_var.set(trace_id)

        # Keep the body around for the exception handlers
        body = None
        if ErrorHandlingConfig.LOG_REQUEST_BODIES and request.method in ("POST", "PUT", "PATCH"):
            try:
                body = await request.body()
            except Exception as e:
                StructuredLogger.log_error(
                    "middleware_error",
                    "Failed to capture request body",
                    request=request,
                    exception=e,
                    include_traceback=False
                )

        request.state.captured_body = body
        request.state.trace_id = trace_id

        try:
            response = await call_next(request)
        except Exception as e:
            StructuredLogger.log_error(
                "unhandled_exception",
                f"Unhandled exception in request processing: {str(e)}",
                request=request,
                exception=e,
                extra_context={"body": ErrorHandlingConfig.sanitize_data(body.decode('utf-8', 'replace')) if body else None}
            )
            raise

        response.headers["X-Trace-ID"] = trace_id
        return response
